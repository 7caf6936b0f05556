from decimal import Decimal

import pydantic
import pytest

from checkout_service.models import (
    CartAggregate,
    CartItem,
    Order,
    PaymentPreference,
    PaymentStatus,
    ShippingAddress,
)


def _item(**overrides):
    data = {
        "id": "item-1",
        "product_id": "prod-1",
        "product_name": "Camiseta Básica",
        "product_price": "59.90",
        "quantity": 2,
    }
    data.update(overrides)
    return CartItem.model_validate(data)


def test_cart_item_subtotal_is_computed_from_price_and_quantity():
    item = _item()
    assert item.name == "Camiseta Básica"
    assert item.subtotal == Decimal("119.80")


def test_cart_item_rejects_inconsistent_subtotal():
    with pytest.raises(pydantic.ValidationError):
        _item(subtotal="100.00")


def test_cart_item_requires_positive_quantity():
    with pytest.raises(pydantic.ValidationError):
        _item(quantity=0)


def test_with_quantity_recomputes_subtotal_and_checks_stock():
    item = _item(product_stock=3)
    bigger = item.with_quantity(4)
    assert bigger.subtotal == Decimal("239.60")
    assert bigger.exceeds_stock
    assert not item.exceeds_stock


def test_cart_aggregate_summary():
    cart = CartAggregate.model_validate({
        "cart_id": "cart-1",
        "stores": [
            {"store_id": "a", "items": [_item().model_dump(by_alias=True)]},
            {"store_id": "b", "items": [_item(id="item-2", product_price="10.00", quantity=1).model_dump(by_alias=True)]},
        ],
    })
    assert cart.stores_count == 2
    assert cart.total_items == 2
    assert cart.grand_total == Decimal("129.80")
    assert cart.group("b").total == Decimal("10.00")
    assert cart.group("missing") is None
    assert cart.find_item("item-2").unit_price == Decimal("10.00")


def test_cart_aggregate_rejects_duplicate_store_groups():
    with pytest.raises(pydantic.ValidationError):
        CartAggregate.model_validate({"stores": [{"store_id": "a"}, {"store_id": "a"}]})


def test_empty_cart():
    cart = CartAggregate.model_validate({})
    assert cart.is_empty
    assert cart.grand_total == Decimal("0.00")


def test_order_normalizes_gateway_status(make_order):
    assert make_order(payment_status="approved").payment_status == PaymentStatus.PAID
    assert make_order(payment_status="rejected").payment_status == PaymentStatus.FAILED
    assert make_order(payment_status=None).payment_status == PaymentStatus.PENDING
    assert make_order(payment_status="paid").is_paid


def test_order_short_id_and_total_fallback(make_order):
    order = make_order(total=None, total_amount="12.5")
    assert order.short_id == "3F2A9C1E"
    assert order.grand_total == Decimal("12.50")


def test_order_awaits_confirmation_only_with_inline_instructions(make_order, pix_info):
    assert make_order(payment_info=pix_info).awaits_gateway_confirmation
    assert not make_order(payment_info={"pix_key": "chave@loja.com"}).awaits_gateway_confirmation
    assert not make_order(payment_info=dict(pix_info, mercadopago_payment_id=None)).awaits_gateway_confirmation
    assert make_order(payment_info=dict(pix_info, mercadopago_payment_id=None), payment_id="mp-9").awaits_gateway_confirmation
    assert not make_order().awaits_gateway_confirmation


def test_preference_redirect_prefers_production_url():
    assert PaymentPreference(init_point="https://prod", sandbox_init_point="https://sandbox").redirect_url == "https://prod"
    assert PaymentPreference(sandbox_init_point="https://sandbox").redirect_url == "https://sandbox"
    assert PaymentPreference(preference_id="p1").redirect_url is None


def test_shipping_address_street_line_and_numeric_fields():
    address = ShippingAddress.model_validate({
        "id": "a1", "street": "Rua A", "number": 42, "zip_code": 1310100, "complement": "Casa 2",
    })
    assert address.number == "42"
    assert address.street_line() == "Rua A, 42 - Casa 2"
    assert ShippingAddress(street="Rua B", number="7").street_line() == "Rua B, 7"
