import json

import httpx
import pytest
import respx

from checkout_service.clients import (
    AddressClient,
    ApiClient,
    CartClient,
    OrderClient,
    PaymentClient,
)
from checkout_service.errors import (
    ConflictError,
    NetworkError,
    NotFoundError,
    ProviderError,
    UnauthorizedError,
    ValidationError,
)
from checkout_service.models import CheckoutPayload, PaymentMethod

API = "http://api.test/api"


@pytest.fixture
def payload():
    return CheckoutPayload(
        shipping_address="Av. Paulista, 1000",
        shipping_city="São Paulo",
        shipping_state="SP",
        shipping_zip="01310-100",
        shipping_phone="(11) 98888-7777",
        payment_method=PaymentMethod.GATEWAY,
    )


@pytest.mark.asyncio
@respx.mock
async def test_bearer_token_is_sent():
    route = respx.get(f"{API}/cart").mock(return_value=httpx.Response(200, json={"stores": []}))
    async with ApiClient(base_url=API, auth_token="abc") as api:
        cart = await CartClient(api).get_cart()
    assert cart.is_empty
    assert route.calls.last.request.headers["Authorization"] == "Bearer abc"


@pytest.mark.asyncio
@respx.mock
async def test_backend_error_text_becomes_the_message(payload):
    respx.post(f"{API}/cart/checkout/store-1").mock(
        return_value=httpx.Response(400, json={"error": "Estoque insuficiente para Camiseta"})
    )
    async with ApiClient(base_url=API) as api:
        with pytest.raises(ValidationError) as exc_info:
            await OrderClient(api).create_order("store-1", payload)
    assert exc_info.value.message == "Estoque insuficiente para Camiseta"


@pytest.mark.asyncio
@respx.mock
async def test_checkout_404_means_items_left_the_cart(payload):
    respx.post(f"{API}/cart/checkout/store-1").mock(return_value=httpx.Response(404, json={"error": "Carrinho vazio"}))
    async with ApiClient(base_url=API) as api:
        with pytest.raises(ConflictError):
            await OrderClient(api).create_order("store-1", payload)


@pytest.mark.asyncio
@respx.mock
async def test_status_mapping():
    respx.get(f"{API}/orders/missing").mock(return_value=httpx.Response(404, json={"error": "Pedido não encontrado"}))
    respx.get(f"{API}/orders/broken").mock(return_value=httpx.Response(502, text="Bad Gateway"))
    respx.get(f"{API}/orders/locked").mock(return_value=httpx.Response(409, json={"message": "Em uso"}))
    respx.get(f"{API}/user-addresses").mock(return_value=httpx.Response(401, json={"error": "Token inválido"}))

    async with ApiClient(base_url=API) as api:
        orders = OrderClient(api)
        with pytest.raises(NotFoundError):
            await orders.get_order("missing")
        with pytest.raises(NetworkError):
            await orders.get_order("broken")
        with pytest.raises(ConflictError):
            await orders.get_order("locked")
        with pytest.raises(UnauthorizedError):
            await AddressClient(api).list_addresses()


@pytest.mark.asyncio
@respx.mock
async def test_transport_failures_are_network_errors():
    respx.get(f"{API}/cart").mock(side_effect=httpx.ConnectError("refused"))
    respx.get(f"{API}/orders/slow").mock(side_effect=httpx.ReadTimeout("slow"))
    async with ApiClient(base_url=API) as api:
        with pytest.raises(NetworkError):
            await CartClient(api).get_cart()
        with pytest.raises(NetworkError) as exc_info:
            await OrderClient(api).get_order("slow")
    assert "Tempo esgotado" in exc_info.value.message


@pytest.mark.asyncio
@respx.mock
async def test_remove_item_accepts_empty_response():
    respx.delete(f"{API}/cart/items/item-1").mock(return_value=httpx.Response(204))
    async with ApiClient(base_url=API) as api:
        assert await CartClient(api).remove_item("item-1") is None


@pytest.mark.asyncio
@respx.mock
async def test_preference_failure_is_a_provider_error_with_order_id():
    route = respx.post(f"{API}/payments/create-preference").mock(return_value=httpx.Response(
        400, json={"error": "Erro ao criar preferência", "details": "Credenciais inválidas"}
    ))
    async with ApiClient(base_url=API) as api:
        with pytest.raises(ProviderError) as exc_info:
            await PaymentClient(api).create_payment_preference("order-1", "store-1")
    assert exc_info.value.order_id == "order-1"
    assert exc_info.value.message == "Credenciais inválidas"
    assert json.loads(route.calls.last.request.content) == {"order_id": "order-1", "store_id": "store-1"}


@pytest.mark.asyncio
@respx.mock
async def test_list_orders_unwraps_pagination_envelope():
    order = {"id": "o1", "store_id": "s1", "payment_status": "paid"}
    route = respx.get(f"{API}/orders").mock(side_effect=[
        httpx.Response(200, json={"data": [order], "pagination": {"page": 1}}),
        httpx.Response(200, json=[order]),
    ])
    async with ApiClient(base_url=API) as api:
        orders = OrderClient(api)
        assert [o.id for o in await orders.list_orders()] == ["o1"]
        assert (await orders.list_orders())[0].is_paid
    assert route.calls.last.request.url.params["limit"] == "50"


@pytest.mark.asyncio
@respx.mock
async def test_undecodable_body_is_a_network_error():
    respx.get(f"{API}/orders/o1").mock(side_effect=httpx.DecodingError("bad gzip"))
    async with ApiClient(base_url=API) as api:
        with pytest.raises(NetworkError):
            await OrderClient(api).get_order("o1")


@pytest.mark.asyncio
@respx.mock
async def test_malformed_payload_is_a_network_error():
    respx.get(f"{API}/cart").mock(return_value=httpx.Response(200, json={"stores": [{
        "store_id": "s1",
        "store_name": "Loja",
        "items": [{"id": "i1", "product_id": "p1", "product_name": None, "product_price": "10.00", "quantity": 1}],
    }]}))
    respx.post(f"{API}/payments/create-preference").mock(return_value=httpx.Response(200, json=["unexpected"]))
    async with ApiClient(base_url=API) as api:
        with pytest.raises(NetworkError) as exc_info:
            await CartClient(api).get_cart()
        with pytest.raises(ProviderError) as provider_error:
            await PaymentClient(api).create_payment_preference("order-1", "s1")
    assert exc_info.value.message == "Resposta inválida do servidor"
    assert provider_error.value.order_id == "order-1"
