"""
session.py — Session Context and Checkout Session State

`SessionContext` replaces ambient browser storage: it carries the shopper's
token and profile, owns the HTTP clients and caches the city reference list.
It is created when the shopper's session starts and closed when it ends.

`CheckoutSession` is the ephemeral state of one checkout dialog for one
store group. It is discarded when the dialog closes; the cart is not.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import httpx

from .addresses import AddressForm, CityDirectory
from .clients import (
    MARKETPLACE_API_URL,
    AddressClient,
    ApiClient,
    CartClient,
    CityClient,
    OrderClient,
    PaymentClient,
    StoreClient,
    ZipCodeClient,
)
from .errors import CheckoutError
from .logging_config import get_logger
from .models import Order, PaymentMethod, ShippingAddress, StoreCartGroup

log = get_logger(__name__)


class SessionContext:
    """
    Explicit per-shopper context handed to the orchestrator.

    Args:
        auth_token (str, optional): Shopper's bearer token.
        shopper_name (str, optional): Default recipient name for new addresses.
        shopper_phone (str, optional): Fallback phone when a saved address has none.
        base_url (str): Marketplace API base URL.
        transport (httpx.AsyncBaseTransport, optional): Transport for the marketplace API.
        zip_transport (httpx.AsyncBaseTransport, optional): Transport for the zip-code lookup.
    """
    def __init__(
            self,
            auth_token: Optional[str] = None,
            shopper_name: Optional[str] = None,
            shopper_phone: Optional[str] = None,
            base_url: str = MARKETPLACE_API_URL,
            transport: Optional[httpx.AsyncBaseTransport] = None,
            zip_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shopper_name = shopper_name
        self.shopper_phone = shopper_phone
        self.api = ApiClient(base_url=base_url, auth_token=auth_token, transport=transport)
        self.carts = CartClient(self.api)
        self.addresses = AddressClient(self.api)
        self.cities = CityClient(self.api)
        self.stores = StoreClient(self.api)
        self.orders = OrderClient(self.api)
        self.payments = PaymentClient(self.api)
        self.zip_codes = ZipCodeClient(transport=zip_transport)
        self.city_cache: Optional[List] = None
        self.closed = False

    async def load_cities(self) -> CityDirectory:
        """Loads the city list once per session. A failed load is retried on the next call."""
        if self.city_cache is None:
            try:
                self.city_cache = await self.cities.list_cities()
            except CheckoutError as e:
                log.error(f"[Sessão] Erro ao carregar cidades: {e}")
                return CityDirectory()
        return CityDirectory(self.city_cache)

    def city_directory(self) -> CityDirectory:
        return CityDirectory(self.city_cache)

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self.api.close()
        await self.zip_codes.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


class CheckoutState(str, Enum):
    IDLE = "idle"
    ADDRESS_PENDING = "address_pending"
    METHOD_READY = "method_ready"
    SUBMITTING = "submitting"
    HANDOFF_READY = "handoff_ready"
    PAYMENT_PENDING = "payment_pending"
    FAILED = "failed"


@dataclass
class CheckoutSession:
    """State of one checkout dialog, scoped to one store group."""
    store_group: StoreCartGroup
    form: AddressForm = field(default_factory=AddressForm)
    saved_addresses: List[ShippingAddress] = field(default_factory=list)
    selected_address_id: Optional[str] = None
    editing_address_id: Optional[str] = None
    show_address_form: bool = False
    addresses_loaded: bool = False
    available_payment_methods: List[PaymentMethod] = field(
        default_factory=lambda: [PaymentMethod.DIRECT_MESSAGE]
    )
    selected_payment_method: PaymentMethod = PaymentMethod.DIRECT_MESSAGE
    methods_loaded: bool = False
    notes: str = ""
    validation_errors: Dict[str, str] = field(default_factory=dict)
    last_error: Optional[CheckoutError] = None
    created_order: Optional[Order] = None

    @property
    def store_id(self) -> str:
        return self.store_group.store_id

    @property
    def address_resolved(self) -> bool:
        return bool(self.selected_address_id) or bool(self.form.shipping_address.strip())

    def snapshot(self) -> dict:
        return {
            "store_id": self.store_id,
            "store_name": self.store_group.store_name,
            "form": self.form.values(),
            "saved_addresses": [a.model_dump(mode="json") for a in self.saved_addresses],
            "selected_address_id": self.selected_address_id,
            "show_address_form": self.show_address_form,
            "available_payment_methods": [m.value for m in self.available_payment_methods],
            "selected_payment_method": self.selected_payment_method.value,
            "notes": self.notes,
            "validation_errors": dict(self.validation_errors),
            "last_error": self.last_error.to_dict() if self.last_error else None,
            "created_order_id": self.created_order.id if self.created_order else None,
        }
