import httpx
import pytest
from fastapi.testclient import TestClient

from checkout_service import main
from checkout_service.session import SessionContext
from mock_services import mock_marketplace_api as mock_api

API_URL = "http://marketplace.test/api"
AUTH = {"Authorization": "Bearer token-ana"}


@pytest.fixture
def client():
    def context_factory(**kwargs):
        return SessionContext(base_url=API_URL, transport=httpx.ASGITransport(app=mock_api.app), **kwargs)

    main.app.dependency_overrides[main.get_context_factory] = lambda: context_factory
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()
    main.sessions.clear()


def _open(client, store_id):
    response = client.post(
        "/v1/checkout-sessions",
        json={"store_id": store_id, "shopper_name": "Ana Souza"},
        headers=AUTH,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check(client):
    assert client.get("/health").json() == {"status": "ok", "open_sessions": 0}


def test_direct_message_checkout_over_http(client):
    opened = _open(client, "store-whats")
    session_id = opened["session_id"]
    assert opened["state"] == "method_ready"
    assert opened["checkout"]["available_payment_methods"] == ["whatsapp"]

    response = client.put(f"/v1/checkout-sessions/{session_id}/notes", json={"notes": "Sem cobertura"})
    assert response.json()["checkout"]["notes"] == "Sem cobertura"

    submitted = client.post(f"/v1/checkout-sessions/{session_id}/submit").json()
    assert submitted["result"]["state"] == "handoff_ready"
    assert submitted["open_external"][0].startswith("https://wa.me/11999990001?text=")
    assert submitted["navigate_to"] == f"/OrderDetail?id={submitted['result']['order']['id']}"
    assert client.get("/health").json()["open_sessions"] == 0


def test_gateway_checkout_over_http(client):
    session_id = _open(client, "store-mp")["session_id"]

    submitted = client.post(f"/v1/checkout-sessions/{session_id}/submit").json()

    assert submitted["state"] == "handoff_ready"
    assert submitted["navigate_to"] == submitted["result"]["redirect_url"]
    assert submitted["open_external"] == []
    assert client.get("/health").json()["open_sessions"] == 0
    assert client.get(f"/v1/checkout-sessions/{session_id}").status_code == 404


def test_validation_errors_are_part_of_the_result(client):
    session_id = _open(client, "store-mp")["session_id"]
    response = client.patch(
        f"/v1/checkout-sessions/{session_id}/fields",
        json={"name": "shipping_zip", "value": "1234-567"},
    )
    assert response.json()["checkout"]["form"]["shipping_zip"] == "12345-67"

    submitted = client.post(f"/v1/checkout-sessions/{session_id}/submit")

    assert submitted.status_code == 200
    error = submitted.json()["result"]["error"]
    assert error["kind"] == "validation"
    assert error["field_errors"] == {"shipping_zip": "CEP deve ter 8 dígitos"}


def test_unknown_field_is_rejected(client):
    session_id = _open(client, "store-mp")["session_id"]
    response = client.patch(f"/v1/checkout-sessions/{session_id}/fields", json={"name": "cpf", "value": "1"})
    assert response.status_code == 422


def test_region_filtered_cities(client):
    session_id = _open(client, "store-mp")["session_id"]
    cities = client.get(f"/v1/checkout-sessions/{session_id}/cities", params={"state": "SP"}).json()
    assert [c["name"] for c in cities] == ["Campinas", "São Paulo"]

    response = client.put(f"/v1/checkout-sessions/{session_id}/city", json={"city_id": "city-campinas"})
    assert response.json()["checkout"]["form"]["shipping_city"] == "city-campinas"


def test_unsupported_method_maps_to_422(client):
    session_id = _open(client, "store-whats")["session_id"]
    response = client.put(f"/v1/checkout-sessions/{session_id}/payment-method", json={"method": "mercadopago"})
    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "validation"


def test_store_not_in_cart_is_404(client):
    response = client.post("/v1/checkout-sessions", json={"store_id": "store-nowhere"}, headers=AUTH)
    assert response.status_code == 404


def test_missing_token_is_401(client):
    response = client.post("/v1/checkout-sessions", json={"store_id": "store-mp"})
    assert response.status_code == 401
    assert response.json()["error"]["kind"] == "unauthorized"


def test_closing_discards_the_session(client):
    session_id = _open(client, "store-mp")["session_id"]
    assert client.delete(f"/v1/checkout-sessions/{session_id}").status_code == 204
    assert client.delete(f"/v1/checkout-sessions/{session_id}").status_code == 204
    assert client.get(f"/v1/checkout-sessions/{session_id}").status_code == 404


def test_cart_endpoints(client):
    cart = client.get("/v1/cart", headers=AUTH).json()
    assert cart["stores_count"] == 4
    assert cart["total_items"] == 5

    response = client.put("/v1/cart/items/item-2", json={"quantity": 6}, headers=AUTH)
    assert response.status_code == 422
    assert response.json()["error"]["message"] == "Estoque insuficiente"

    cart = client.put("/v1/cart/items/item-2", json={"quantity": 0}, headers=AUTH).json()
    assert cart["total_items"] == 4

    cart = client.delete("/v1/cart/items/item-3", headers=AUTH).json()
    assert cart["stores_count"] == 3


def test_contact_store_builds_whatsapp_link(client):
    response = client.post("/v1/cart/stores/store-whats/contact", headers=AUTH)
    assert response.json()["open_external"].startswith("https://wa.me/11999990001?text=")
