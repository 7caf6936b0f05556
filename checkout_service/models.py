"""
models.py — Data Models for the Multi-Vendor Checkout

This module defines the data structures exchanged with the marketplace API.
It uses Pydantic models to ensure type safety and automatic validation of
incoming data. Field aliases follow the backend's wire names
(e.g. `product_price`, `store_checkout_enabled`).

Models:
    - CartItem, StoreCartGroup, CartAggregate: the shopper's cart, partitioned by store.
    - City: reference record used to normalize the city field.
    - ShippingAddress, AddressDraft: saved and freshly entered addresses.
    - CheckoutPayload: the payload sent when creating an order.
    - Order, OrderItem, PaymentInfo: the persisted order returned by the backend.
    - PaymentPreference: the hosted-payment preference created for an order.
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENT = Decimal("0.01")


def to_cents(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class PaymentMethod(str, Enum):
    """Completion paths a store may accept. Values are the backend's wire strings."""
    DIRECT_MESSAGE = "whatsapp"
    GATEWAY = "mercadopago"


class PaymentStatus(str, Enum):
    """Order payment status as owned by the order service."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# Mercado Pago payment statuses that leak into order responses
PROVIDER_STATUS_ALIASES = {
    "approved": PaymentStatus.PAID,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "in_process": PaymentStatus.PENDING,
}


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CartItem(WireModel):
    """
    Represents a single product line in a store's cart group.

    Attributes:
        id (str): Cart item id (used for quantity updates and removal).
        product_id (str): Product identifier.
        name (str): Product name.
        unit_price (Decimal): Already-resolved price (promotions applied by the backend).
        quantity (int): Must be at least 1.
        subtotal (Decimal): Always `unit_price * quantity`, rounded to cents.
        stock_limit (int, optional): Available stock, when the product tracks it.
    """
    id: str
    product_id: str
    name: str = Field(alias="product_name")
    unit_price: Decimal = Field(alias="product_price")
    quantity: int = Field(..., ge=1)
    subtotal: Optional[Decimal] = None
    stock_limit: Optional[int] = Field(default=None, alias="product_stock")

    @model_validator(mode="after")
    def _check_subtotal(self):
        expected = to_cents(self.unit_price * self.quantity)
        if self.subtotal is not None and to_cents(self.subtotal) != expected:
            raise ValueError(
                f"subtotal {self.subtotal} does not match {self.unit_price} x {self.quantity}"
            )
        self.subtotal = expected
        return self

    @property
    def exceeds_stock(self) -> bool:
        return self.stock_limit is not None and self.quantity > self.stock_limit

    def with_quantity(self, quantity: int) -> "CartItem":
        """Returns a copy with the new quantity and a recomputed subtotal."""
        return CartItem(
            id=self.id,
            product_id=self.product_id,
            name=self.name,
            unit_price=self.unit_price,
            quantity=quantity,
            stock_limit=self.stock_limit,
        )


class StoreCartGroup(WireModel):
    """
    The subset of the cart belonging to one store (a seller-group).

    `checkout_enabled=False` means the only valid completion path is the
    direct-message handoff.
    """
    store_id: str
    store_name: str = ""
    store_whatsapp: Optional[str] = None
    store_logo: Optional[str] = None
    checkout_enabled: bool = Field(default=False, alias="store_checkout_enabled")
    items: List[CartItem] = Field(default_factory=list)
    total: Optional[Decimal] = None

    @model_validator(mode="after")
    def _fill_total(self):
        if self.total is None:
            self.total = to_cents(sum((item.subtotal for item in self.items), Decimal("0")))
        return self

    @property
    def is_empty(self) -> bool:
        return not self.items


class CartAggregate(WireModel):
    """
    Ordered set of store groups. Every `store_id` is unique; zero groups is an empty cart.
    """
    cart_id: Optional[str] = None
    stores: List[StoreCartGroup] = Field(default_factory=list)

    @field_validator("stores")
    @classmethod
    def _unique_stores(cls, stores):
        seen = set()
        for group in stores:
            if group.store_id in seen:
                raise ValueError(f"duplicate store group {group.store_id}")
            seen.add(group.store_id)
        return stores

    @property
    def is_empty(self) -> bool:
        return not self.stores

    @property
    def stores_count(self) -> int:
        return len(self.stores)

    @property
    def total_items(self) -> int:
        return sum(len(group.items) for group in self.stores)

    @property
    def grand_total(self) -> Decimal:
        return to_cents(sum((group.total for group in self.stores), Decimal("0")))

    def group(self, store_id: str) -> Optional[StoreCartGroup]:
        for group in self.stores:
            if group.store_id == store_id:
                return group
        return None

    def find_item(self, item_id: str) -> Optional[CartItem]:
        for group in self.stores:
            for item in group.items:
                if item.id == item_id:
                    return item
        return None


class City(WireModel):
    id: str
    name: str
    state: str
    active: bool = True


class ShippingAddress(WireModel):
    """
    A saved shipping address. At most one address per shopper has `is_default=True`
    (enforced by the address service).
    """
    id: Optional[str] = None
    label: Optional[str] = None
    recipient_name: str = ""
    street: str = ""
    number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: Optional[str] = None
    is_default: bool = False

    @field_validator("number", "zip_code", mode="before")
    @classmethod
    def _as_text(cls, value):
        return "" if value is None else str(value)

    def street_line(self) -> str:
        line = f"{self.street or ''}, {self.number or ''}"
        if self.complement:
            line += f" - {self.complement}"
        return line.strip()


class AddressDraft(WireModel):
    """Address fields entered by the shopper before the address service persists them."""
    label: Optional[str] = None
    recipient_name: str = ""
    street: str = ""
    number: str = ""
    complement: Optional[str] = None
    neighborhood: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    phone: Optional[str] = None
    reference: Optional[str] = None
    is_default: bool = False


class CheckoutPayload(WireModel):
    """
    Payload of `POST /cart/checkout/{store_id}`.

    `shipping_city` carries the city *name* (never the reference id).
    """
    shipping_address: str
    shipping_city: str
    shipping_state: str
    shipping_zip: str
    shipping_phone: str
    notes: Optional[str] = None
    payment_method: PaymentMethod


class OrderItem(WireModel):
    product_id: Optional[str] = None
    product_name: str = ""
    product_price: Decimal = Decimal("0")
    quantity: int = 1
    subtotal: Optional[Decimal] = None

    @property
    def line_total(self) -> Decimal:
        if self.subtotal is not None:
            return to_cents(self.subtotal)
        return to_cents(self.product_price * self.quantity)


class PaymentInfo(WireModel):
    """
    Payment instructions attached to an order.

    Attributes:
        pix_key (str): Store's static PIX key.
        pix_qr_code (str): Scannable PIX image (data URL).
        pix_qr_code_text (str): PIX copy-and-paste code.
        mercadopago_payment_id (str): Gateway payment id, when the gateway issued the PIX.
        payment_link (str): External payment link.
        payment_instructions (str): Free-text instructions from the store.
    """
    pix_key: Optional[str] = None
    pix_qr_code: Optional[str] = None
    pix_qr_code_text: Optional[str] = None
    mercadopago_payment_id: Optional[str] = None
    payment_link: Optional[str] = None
    payment_instructions: Optional[str] = None

    @property
    def has_inline_instructions(self) -> bool:
        return bool(self.pix_qr_code or self.pix_qr_code_text)


class Order(WireModel):
    """
    An order as persisted by the order service.

    `payment_status` transitions are owned by the order service; this side only
    observes them.
    """
    id: str
    store_id: str
    store_name: Optional[str] = None
    status: str = "pending"
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    subtotal: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    total: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    payment_info: Optional[PaymentInfo] = None
    shipping_address: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_zip: Optional[str] = None
    shipping_phone: Optional[str] = None
    notes: Optional[str] = None
    store_whatsapp: Optional[str] = None

    @field_validator("payment_status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if value is None:
            return PaymentStatus.PENDING
        if isinstance(value, str) and value in PROVIDER_STATUS_ALIASES:
            return PROVIDER_STATUS_ALIASES[value]
        return value

    @property
    def short_id(self) -> str:
        return self.id[:8].upper()

    @property
    def grand_total(self) -> Decimal:
        value = self.total if self.total is not None else self.total_amount
        return to_cents(value or 0)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

    @property
    def awaits_gateway_confirmation(self) -> bool:
        """Gateway-backed order that came back with inline instructions (e.g. a PIX code)."""
        info = self.payment_info
        if info is None or not info.has_inline_instructions:
            return False
        return bool(info.mercadopago_payment_id or self.payment_id)


class PaymentPreference(WireModel):
    preference_id: Optional[str] = None
    init_point: Optional[str] = None
    sandbox_init_point: Optional[str] = None
    payment_id: Optional[str] = None

    @property
    def redirect_url(self) -> Optional[str]:
        return self.init_point or self.sandbox_init_point


# --- Request bodies of the checkout API (main.py) ---

class OpenCheckoutRequest(BaseModel):
    store_id: str
    shopper_name: Optional[str] = None
    shopper_phone: Optional[str] = None


class FieldUpdate(BaseModel):
    name: str
    value: str = ""


class AddressSelection(BaseModel):
    address_id: str


class CitySelection(BaseModel):
    city_id: str


class PaymentMethodSelection(BaseModel):
    method: PaymentMethod


class NotesUpdate(BaseModel):
    notes: str = ""


class QuantityUpdate(BaseModel):
    quantity: int
