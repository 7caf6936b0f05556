"""
This module provides communication clients for the external systems the checkout flow consumes:
- Marketplace REST API (cart, addresses, cities, stores, orders, payments)
- ViaCEP zip-code lookup
All clients are asynchronous (httpx.AsyncClient). Each class encapsulates one collaborator's
endpoints; `ApiClient` owns the connection, the bearer token and the mapping of HTTP failures
onto the error taxonomy in `errors.py`.
"""

import os
from typing import Any, List, Optional

import httpx
import pydantic

from .errors import (
    CheckoutError,
    ConflictError,
    NetworkError,
    NotFoundError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from .logging_config import get_logger
from .models import (
    AddressDraft,
    CartAggregate,
    CheckoutPayload,
    City,
    Order,
    PaymentPreference,
    ShippingAddress,
)

# Service addresses (normally from env vars)
MARKETPLACE_API_URL = os.environ.get("MARKETPLACE_API_URL", "http://localhost:3001/api")
VIACEP_URL = os.environ.get("VIACEP_URL", "https://viacep.com.br/ws")
HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "8.0"))
HTTP_CONNECT_TIMEOUT_SECONDS = float(os.environ.get("HTTP_CONNECT_TIMEOUT_SECONDS", "5.0"))

log = get_logger(__name__)


def _error_message(response: httpx.Response) -> tuple:
    """Extracts the backend's error text and raw payload from a failed response."""
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.reason_phrase}", {}
    if not isinstance(data, dict):
        return f"HTTP {response.status_code}", {"body": data}
    message = data.get("error") or data.get("message") or data.get("details") or data.get("detail") or f"HTTP {response.status_code}"
    return str(message), data


def _validated(model, data):
    """Validates a backend payload. A malformed one is reported as a server error."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        log.error(f"[API] Resposta inválida para {model.__name__}: {e.error_count()} erro(s)")
        raise NetworkError("Resposta inválida do servidor") from e


# --- Shared HTTP client ---
class ApiClient:
    """
    Thin wrapper around `httpx.AsyncClient` for the marketplace API.
    Adds the bearer token, the timeout configuration and error mapping.
    """
    def __init__(
            self,
            base_url: str = MARKETPLACE_API_URL,
            auth_token: Optional[str] = None,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url (str): Marketplace API base URL.
            auth_token (str, optional): Shopper's bearer token.
            transport (httpx.AsyncBaseTransport, optional): Custom transport (e.g. ASGI for tests).
        """
        headers = {"Content-Type": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        timeout_config = httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS)
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout_config,
            transport=transport,
        )

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    async def request(self, method: str, path: str, *, not_found=NotFoundError, **kwargs) -> Any:
        """
        Performs a request and returns the decoded JSON body.
        Raises:
            NetworkError: On transport failures, timeouts, 5xx and malformed responses.
            ValidationError: On 400/422.
            UnauthorizedError: On 401/403.
            ConflictError: On 409.
            NotFoundError (or `not_found`): On 404.
        """
        try:
            response = await self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            log.error(f"[API] Timeout em {method} {path}: {e!r}")
            raise NetworkError("Tempo esgotado ao comunicar com o servidor. Tente novamente.") from e
        except httpx.TransportError as e:
            log.error(f"[API] Falha de conexão em {method} {path}: {e!r}")
            raise NetworkError("Erro de conexão com o servidor") from e
        except httpx.HTTPStatusError as e:
            raise self._map_status_error(method, path, e.response, not_found) from e
        except httpx.HTTPError as e:
            log.error(f"[API] Falha na requisição {method} {path}: {e!r}")
            raise NetworkError("Erro de conexão com o servidor") from e

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            log.error(f"[API] Resposta não-JSON em {method} {path}")
            raise NetworkError("Resposta inválida do servidor") from e

    @staticmethod
    def _map_status_error(method: str, path: str, response: httpx.Response, not_found) -> CheckoutError:
        status = response.status_code
        message, details = _error_message(response)
        if status >= 500:
            log.error(f"[API] HTTP {status} em {method} {path}: {message}")
        else:
            log.warning(f"[API] HTTP {status} em {method} {path}: {message}")

        if status in (400, 422):
            return ValidationError(message, details=details)
        if status in (401, 403):
            return UnauthorizedError(message, details=details)
        if status == 404:
            return not_found(message, details=details)
        if status == 409:
            return ConflictError(message, details=details)
        return NetworkError(message, details=details)


# --- Cart Client ---
class CartClient:
    """Cart service: the shopper's cart, grouped by store."""
    def __init__(self, api: ApiClient):
        self.api = api

    async def get_cart(self) -> CartAggregate:
        data = await self.api.request("GET", "/cart")
        return _validated(CartAggregate, data or {})

    async def update_item_quantity(self, item_id: str, quantity: int):
        await self.api.request("PUT", f"/cart/items/{item_id}", json={"quantity": quantity})

    async def remove_item(self, item_id: str):
        await self.api.request("DELETE", f"/cart/items/{item_id}")


# --- Address Client ---
class AddressClient:
    """Address service: the shopper's saved shipping addresses."""
    def __init__(self, api: ApiClient):
        self.api = api

    async def list_addresses(self) -> List[ShippingAddress]:
        data = await self.api.request("GET", "/user-addresses")
        return [_validated(ShippingAddress, item) for item in data or []]

    async def create_address(self, draft: AddressDraft) -> ShippingAddress:
        data = await self.api.request("POST", "/user-addresses", json=draft.model_dump(mode="json"))
        return _validated(ShippingAddress, data)

    async def update_address(self, address_id: str, draft: AddressDraft) -> ShippingAddress:
        data = await self.api.request("PUT", f"/user-addresses/{address_id}", json=draft.model_dump(mode="json"))
        return _validated(ShippingAddress, data)

    async def set_default_address(self, address_id: str):
        await self.api.request("PATCH", f"/user-addresses/{address_id}/set-default")


# --- City Client ---
class CityClient:
    """City reference service, used only to normalize the city field."""
    def __init__(self, api: ApiClient):
        self.api = api

    async def list_cities(self) -> List[City]:
        data = await self.api.request("GET", "/cities")
        return [_validated(City, item) for item in data or []]


# --- Store Client ---
class StoreClient:
    def __init__(self, api: ApiClient):
        self.api = api

    async def get_payment_methods(self, store_id: str) -> List[str]:
        """
        Calls `GET /stores/{store_id}/payment-methods`.
        Returns:
            list[str]: Raw method names as configured by the store (e.g. 'whatsapp', 'mercadopago').
        """
        data = await self.api.request("GET", f"/stores/{store_id}/payment-methods")
        methods = data.get("payment_methods") if isinstance(data, dict) else None
        methods = methods or []
        return [str(m) for m in methods]


# --- Order Client ---
class OrderClient:
    """
    Order service. `create_order` converts a validated checkout payload into a persisted order
    for one store's items.
    """
    def __init__(self, api: ApiClient):
        self.api = api

    async def create_order(self, store_id: str, payload: CheckoutPayload) -> Order:
        """
        Creates an order from the cart items of one store.
        Raises:
            ValidationError: If the backend rejects the payload (e.g. stock, inactive product).
            ConflictError: If the store's items are no longer in the cart.
        """
        data = await self.api.request(
            "POST",
            f"/cart/checkout/{store_id}",
            json=payload.model_dump(mode="json"),
            not_found=ConflictError,
        )
        return _validated(Order, data)

    async def get_order(self, order_id: str) -> Order:
        data = await self.api.request("GET", f"/orders/{order_id}")
        return _validated(Order, data)

    async def list_orders(self) -> List[Order]:
        data = await self.api.request("GET", "/orders", params={"page": 1, "limit": 50})
        # Paginated envelope on newer routes, bare list on older ones
        if isinstance(data, dict) and "data" in data and "pagination" in data:
            data = data["data"]
        return [_validated(Order, item) for item in data or []]


# --- Payment Client ---
class PaymentClient:
    """Hosted-payment gateway (Mercado Pago) preferences, created by the marketplace backend."""
    def __init__(self, api: ApiClient):
        self.api = api

    async def create_payment_preference(self, order_id: str, store_id: str) -> PaymentPreference:
        """
        Calls `POST /payments/create-preference`.
        Raises:
            ProviderError: For any failure; the order already exists at this point.
        """
        try:
            data = await self.api.request(
                "POST",
                "/payments/create-preference",
                json={"order_id": order_id, "store_id": store_id},
            )
            return _validated(PaymentPreference, data or {})
        except CheckoutError as e:
            detail = e.details.get("message") or e.details.get("details") or e.message
            log.error(f"[Pedido: {order_id}] Falha ao criar preferência de pagamento: {detail}")
            raise ProviderError(str(detail), order_id=order_id, details=e.details) from e


# --- ViaCEP Client ---
class ZipCodeClient:
    """Looks up street data by zip code (CEP) on ViaCEP."""
    def __init__(self, base_url: str = VIACEP_URL, transport: Optional[httpx.AsyncBaseTransport] = None):
        timeout_config = httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=HTTP_CONNECT_TIMEOUT_SECONDS)
        self.client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout_config, transport=transport)

    async def close(self):
        await self.client.aclose()

    async def lookup(self, zip_code: str) -> dict:
        """
        Args:
            zip_code (str): Eight-digit zip code (already normalized).
        Returns:
            dict: ViaCEP payload (`logradouro`, `bairro`, `localidade`, `uf`, ...).
        Raises:
            NotFoundError: If ViaCEP does not know the zip code.
            NetworkError: If the lookup fails.
        """
        try:
            response = await self.client.get(f"/{zip_code}/json/")
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning(f"[CEP: {zip_code}] Falha ao buscar CEP: {e!r}")
            raise NetworkError("Não foi possível buscar o endereço pelo CEP") from e
        if data.get("erro"):
            raise NotFoundError("CEP não encontrado")
        return data
