"""
handoff.py — Direct-Message Handoff and Navigation

Builds the WhatsApp messages sent to a seller and the `wa.me` URLs that open
them. Opening the channel is best-effort: the external channel may or may
not open (pop-up blockers, no app installed) and nothing waits for it.

`Navigator` is the seam to the presentation layer: the checkout flow asks it
to open an external URL in a new browsing context or to navigate away.
"""

import os
import re
from decimal import Decimal
from typing import List, Optional
from urllib.parse import quote

from .logging_config import get_logger
from .models import Order, StoreCartGroup, to_cents

ORDER_DETAIL_URL_TEMPLATE = os.environ.get("ORDER_DETAIL_URL_TEMPLATE", "/OrderDetail?id={order_id}")

log = get_logger(__name__)

# characters encodeURIComponent leaves unescaped
_URI_SAFE = "-_.!~*'()"


def format_brl(value) -> str:
    """Formats a value as Brazilian reais: `R$ 1.234,56`."""
    if value is None:
        return "R$ 0,00"
    amount = to_cents(Decimal(str(value)))
    text = f"{abs(amount):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    sign = "-" if amount < 0 else ""
    return f"{sign}R$ {text}"


def order_detail_url(order_id: str) -> str:
    return ORDER_DETAIL_URL_TEMPLATE.format(order_id=order_id)


def whatsapp_url(number: str, text: str) -> str:
    digits = re.sub(r"\D", "", number or "")
    return f"https://wa.me/{digits}?text={quote(text, safe=_URI_SAFE)}"


def build_order_message(order: Order) -> str:
    """
    Formats a created order for the seller: itemized products, subtotal and
    shipping (when known), total, shipping address and notes.
    """
    lines: List[str] = [
        f"• {item.product_name} x{item.quantity} - {format_brl(item.line_total)}"
        for item in order.items
    ]
    items_text = "\n".join(lines) or "Nenhum item"

    message = "Olá! Acabei de fazer um pedido:\n\n"
    message += f"📦 *Pedido #{order.short_id}*\n\n"
    message += f"*Produtos:*\n{items_text}\n\n"

    if order.subtotal is not None and order.shipping_cost is not None:
        message += f"Subtotal: {format_brl(order.subtotal)}\n"
        if order.shipping_cost > 0:
            message += f"Frete: {format_brl(order.shipping_cost)}\n"
        else:
            message += "Frete: Grátis\n"

    message += f"*Total: {format_brl(order.grand_total)}*\n\n"

    if order.shipping_address:
        message += "*Endereço de entrega:*\n"
        message += f"{order.shipping_address}\n"
        if order.shipping_city:
            message += order.shipping_city
            if order.shipping_state:
                message += f", {order.shipping_state}"
            if order.shipping_zip:
                message += f" - {order.shipping_zip}"
            message += "\n"
        if order.shipping_phone:
            message += f"Telefone: {order.shipping_phone}\n"
        message += "\n"

    if order.notes:
        message += f"*Observações:*\n{order.notes}\n\n"

    message += "Por favor, confirme o pedido e envie as informações de pagamento."
    return message


def build_cart_message(group: StoreCartGroup) -> str:
    """Message for contacting a seller about a cart group, without creating an order."""
    items_text = "\n".join(
        f"• {item.name} x{item.quantity} - {format_brl(item.subtotal)}" for item in group.items
    )
    return f"Olá! Gostaria de fazer um pedido:\n\n{items_text}\n\nTotal: {format_brl(group.total)}"


class Navigator:
    """
    Presentation hook. The default implementation only logs; a UI layer
    overrides these methods (or uses `RecordingNavigator` and reads the result).
    """
    def open_external(self, url: str):
        log.info(f"[Navegação] Abrindo em nova aba: {url}")

    def navigate(self, url: str):
        log.info(f"[Navegação] Redirecionando para: {url}")


class RecordingNavigator(Navigator):
    """Keeps the requested navigations so an HTTP surface can hand them to the browser."""
    def __init__(self):
        self.opened: List[str] = []
        self.navigations: List[str] = []

    def open_external(self, url: str):
        super().open_external(url)
        self.opened.append(url)

    def navigate(self, url: str):
        super().navigate(url)
        self.navigations.append(url)

    @property
    def last_navigation(self) -> Optional[str]:
        return self.navigations[-1] if self.navigations else None
