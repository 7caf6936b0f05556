from decimal import Decimal
from urllib.parse import unquote

from checkout_service.handoff import (
    RecordingNavigator,
    build_cart_message,
    build_order_message,
    format_brl,
    order_detail_url,
    whatsapp_url,
)


def test_format_brl():
    assert format_brl(Decimal("1234.5")) == "R$ 1.234,50"
    assert format_brl(3.5) == "R$ 3,50"
    assert format_brl(None) == "R$ 0,00"
    assert format_brl(Decimal("1000000")) == "R$ 1.000.000,00"


def test_whatsapp_url_keeps_only_digits_and_encodes_text():
    url = whatsapp_url("+55 (11) 99999-0001", "Olá! Pedido #1 & cia")
    assert url.startswith("https://wa.me/5511999990001?text=")
    assert " " not in url
    assert unquote(url.split("text=", 1)[1]) == "Olá! Pedido #1 & cia"


def test_order_message(make_order):
    order = make_order(
        items=[
            {"product_name": "Brigadeiro Gourmet", "product_price": "3.50", "quantity": 10},
            {"product_name": "Bolo de Cenoura", "product_price": "42.00", "quantity": 1, "subtotal": "42.00"},
        ],
        subtotal="77.00",
        shipping_cost="0",
        total="77.00",
        shipping_address="Av. Paulista, 1000 - Apto 12",
        shipping_city="São Paulo",
        shipping_state="SP",
        shipping_zip="01310-100",
        shipping_phone="(11) 98888-7777",
        notes="Sem cobertura",
    )
    message = build_order_message(order)

    assert "*Pedido #3F2A9C1E*" in message
    assert "• Brigadeiro Gourmet x10 - R$ 35,00" in message
    assert "• Bolo de Cenoura x1 - R$ 42,00" in message
    assert "Frete: Grátis" in message
    assert "*Total: R$ 77,00*" in message
    assert "São Paulo, SP - 01310-100" in message
    assert "*Observações:*\nSem cobertura" in message
    assert message.endswith("envie as informações de pagamento.")


def test_order_message_without_address_or_breakdown(make_order):
    message = build_order_message(make_order())
    assert "Endereço de entrega" not in message
    assert "Subtotal" not in message
    assert "*Total: R$ 39,90*" in message


def test_cart_message(make_group):
    message = build_cart_message(make_group())
    assert message == "Olá! Gostaria de fazer um pedido:\n\n• Brigadeiro Gourmet x10 - R$ 35,00\n\nTotal: R$ 35,00"


def test_recording_navigator():
    navigator = RecordingNavigator()
    assert navigator.last_navigation is None
    navigator.open_external("https://wa.me/1")
    navigator.navigate(order_detail_url("o-1"))
    assert navigator.opened == ["https://wa.me/1"]
    assert navigator.last_navigation == "/OrderDetail?id=o-1"
