"""
addresses.py — Address Resolution and Local Validation

Loads the shopper's saved addresses, picks the one pre-selected at checkout,
keeps the checkout address form in sync with the city reference list and
validates the form locally before anything reaches the network.

Selection policy:
    1. the default address, if any
    2. otherwise the first listed address
    3. otherwise no address: the address-creation form is shown directly
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .clients import AddressClient, ZipCodeClient
from .errors import NetworkError, ValidationError
from .logging_config import get_logger
from .models import AddressDraft, City, ShippingAddress

log = get_logger(__name__)

FIELD_ADDRESS = "shipping_address"
FIELD_CITY = "shipping_city"
FIELD_STATE = "shipping_state"
FIELD_ZIP = "shipping_zip"
FIELD_PHONE = "shipping_phone"
FORM_FIELDS = (FIELD_ADDRESS, FIELD_CITY, FIELD_STATE, FIELD_ZIP, FIELD_PHONE)

FIELD_LABELS = {
    FIELD_ADDRESS: "Endereço",
    FIELD_CITY: "Cidade",
    FIELD_STATE: "Estado",
    FIELD_ZIP: "CEP",
    FIELD_PHONE: "Telefone",
}

_NON_DIGITS = re.compile(r"\D")


def normalize_zip(value: Optional[str]) -> str:
    """Strips every non-digit character. Idempotent."""
    return _NON_DIGITS.sub("", value or "")


def format_zip(value: Optional[str]) -> str:
    """Formats a zip code as typed: `00000-000`, dropping digits beyond the eighth."""
    digits = normalize_zip(value)[:8]
    if len(digits) > 5:
        return f"{digits[:5]}-{digits[5:]}"
    return digits


def zip_error(value: Optional[str]) -> Optional[str]:
    if len(normalize_zip(value)) != 8:
        return "CEP deve ter 8 dígitos"
    return None


class CityDirectory:
    """Read-only view over the city reference list, filtered client-side by state."""

    def __init__(self, cities: Optional[List[City]] = None):
        self.cities = list(cities or [])

    @property
    def loaded(self) -> bool:
        return bool(self.cities)

    def by_id(self, city_id: Optional[str]) -> Optional[City]:
        if not city_id:
            return None
        for city in self.cities:
            if city.id == city_id:
                return city
        return None

    def for_state(self, state: Optional[str]) -> List[City]:
        """Active cities of one state, sorted by name."""
        uf = (state or "").strip().upper()
        if not uf:
            return []
        matches = [c for c in self.cities if c.active and (c.state or "").strip().upper() == uf]
        return sorted(matches, key=lambda c: (c.name or "").lower())

    def match(self, name: Optional[str], state: Optional[str]) -> Optional[City]:
        """
        Resolves free text to a city record: exact `(name, state)` first, then a
        substring match within the same state. Returns None when neither matches.
        """
        needle = (name or "").strip().lower()
        uf = (state or "").strip().upper()
        if not needle:
            return None
        for city in self.cities:
            if (city.name or "").strip().lower() == needle and (city.state or "").upper() == uf:
                return city
        for city in self.cities:
            if needle in (city.name or "").lower() and (city.state or "").upper() == uf:
                return city
        return None

    def display_name(self, value: Optional[str]) -> str:
        """The form stores either a city id or raw text; the backend wants the name."""
        city = self.by_id(value)
        return city.name if city else (value or "")


@dataclass
class AddressForm:
    """
    Checkout address fields. `shipping_city` holds a city id once resolved
    against the reference list, otherwise the raw text.
    """
    shipping_address: str = ""
    shipping_city: str = ""
    shipping_state: str = ""
    shipping_zip: str = ""
    shipping_phone: str = ""
    state_manually_set: bool = False
    # address whose city could not be resolved yet because the city list was still loading
    pending_address: Optional[ShippingAddress] = None

    def clear(self):
        for name in FORM_FIELDS:
            setattr(self, name, "")
        self.state_manually_set = False
        self.pending_address = None

    def set_field(self, name: str, value: str):
        if name not in FORM_FIELDS:
            raise KeyError(name)
        value = value or ""
        if name == FIELD_STATE:
            # city list is filtered by state
            self.shipping_state = value.strip().upper()[:2]
            self.shipping_city = ""
            self.state_manually_set = True
            return
        if name == FIELD_ZIP:
            if len(normalize_zip(value)) > 8:
                # a ninth digit is ignored, the previous value stays
                return
            value = format_zip(value)
        setattr(self, name, value)

    def select_city(self, city: City):
        """
        Selects a city from the region-filtered list. The state field follows the
        city, unless the shopper typed a different state by hand.
        """
        self.shipping_city = city.id
        typed = (self.shipping_state or "").upper()
        if not (self.state_manually_set and typed and typed != city.state.upper()):
            self.shipping_state = city.state.upper()

    def fill_from(self, address: ShippingAddress, directory: CityDirectory, fallback_phone: Optional[str] = None):
        city = directory.match(address.city, address.state) if directory.loaded else None
        self.shipping_address = address.street_line()
        self.shipping_city = city.id if city else (address.city or "")
        self.shipping_state = (address.state or "").upper()
        self.shipping_zip = address.zip_code or ""
        self.shipping_phone = address.phone or fallback_phone or ""
        self.state_manually_set = False
        self.pending_address = None if directory.loaded else address

    def values(self) -> Dict[str, str]:
        return {name: getattr(self, name) for name in FORM_FIELDS}


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def validate_checkout_form(form: AddressForm, directory: CityDirectory) -> Dict[str, str]:
    """
    Validates the checkout address form.
    Returns:
        dict: field -> message; empty when the form is valid.
    """
    errors = {}
    if _blank(form.shipping_address):
        errors[FIELD_ADDRESS] = "Endereço é obrigatório"

    if _blank(form.shipping_city):
        errors[FIELD_CITY] = "Cidade é obrigatória"
    else:
        city = directory.by_id(form.shipping_city)
        if city and city.state.upper() != (form.shipping_state or "").upper():
            errors[FIELD_CITY] = "A cidade selecionada não pertence ao estado informado"

    if _blank(form.shipping_state):
        errors[FIELD_STATE] = "Estado é obrigatório"

    if _blank(form.shipping_zip):
        errors[FIELD_ZIP] = "CEP é obrigatório"
    else:
        message = zip_error(form.shipping_zip)
        if message:
            errors[FIELD_ZIP] = message

    if _blank(form.shipping_phone):
        errors[FIELD_PHONE] = "Telefone é obrigatório"
    return errors


def validation_summary(errors: Dict[str, str]) -> str:
    missing = [FIELD_LABELS[name] for name in FORM_FIELDS if name in errors]
    if missing:
        return f"Campos obrigatórios não preenchidos: {', '.join(missing)}"
    return "Por favor, preencha todos os campos obrigatórios corretamente"


_DRAFT_REQUIRED = (
    ("recipient_name", "Nome do destinatário é obrigatório"),
    ("zip_code", "CEP é obrigatório"),
    ("street", "Rua é obrigatória"),
    ("number", "Número é obrigatório"),
    ("neighborhood", "Bairro é obrigatório"),
    ("city", "Cidade é obrigatória"),
    ("state", "Estado é obrigatório"),
)


def validate_address_draft(draft: AddressDraft) -> Dict[str, str]:
    errors = {}
    for name, message in _DRAFT_REQUIRED:
        if _blank(getattr(draft, name)):
            errors[name] = message
    if "zip_code" not in errors:
        message = zip_error(draft.zip_code)
        if message:
            errors["zip_code"] = message
    return errors


class AddressResolver:
    """
    Address Resolver: wraps the address service and the zip-code lookup.
    """
    def __init__(self, addresses: AddressClient, zip_codes: Optional[ZipCodeClient] = None):
        self.addresses = addresses
        self.zip_codes = zip_codes

    @staticmethod
    def pick_default(addresses: List[ShippingAddress]) -> Optional[ShippingAddress]:
        for address in addresses:
            if address.is_default:
                return address
        return addresses[0] if addresses else None

    async def list(self) -> List[ShippingAddress]:
        return await self.addresses.list_addresses()

    async def create(self, draft: AddressDraft) -> ShippingAddress:
        self._check(draft)
        address = await self.addresses.create_address(draft)
        log.info(f"[Endereço: {address.id}] Endereço criado.")
        return address

    async def update(self, address_id: str, draft: AddressDraft) -> ShippingAddress:
        self._check(draft)
        address = await self.addresses.update_address(address_id, draft)
        log.info(f"[Endereço: {address_id}] Endereço atualizado.")
        return address

    async def set_default(self, address_id: str):
        await self.addresses.set_default_address(address_id)

    async def lookup_zip(self, draft: AddressDraft, directory: CityDirectory) -> AddressDraft:
        """
        Pre-fills street, neighborhood, city and state from the zip code.
        A failed lookup leaves the draft untouched.
        Raises:
            NotFoundError: If the zip code does not exist.
        """
        digits = normalize_zip(draft.zip_code)
        if self.zip_codes is None or len(digits) != 8:
            return draft
        try:
            data = await self.zip_codes.lookup(digits)
        except NetworkError:
            return draft
        city_name = data.get("localidade") or draft.city
        state = (data.get("uf") or draft.state or "").upper()
        city = directory.match(city_name, state)
        return draft.model_copy(update={
            "street": data.get("logradouro") or draft.street,
            "neighborhood": data.get("bairro") or draft.neighborhood,
            "city": city.name if city else city_name,
            "state": state,
            "zip_code": format_zip(digits),
        })

    @staticmethod
    def _check(draft: AddressDraft):
        errors = validate_address_draft(draft)
        if errors:
            raise ValidationError(next(iter(errors.values())), field_errors=errors)
