import os

os.environ.setdefault("LOG_FILE", "")

import httpx
import pytest
import pytest_asyncio

from checkout_service.handoff import RecordingNavigator
from checkout_service.models import Order, StoreCartGroup
from checkout_service.session import SessionContext
from checkout_service.workflow import CheckoutOrchestrator
from mock_services import mock_marketplace_api as mock_api

API_URL = "http://marketplace.test/api"


@pytest.fixture(autouse=True)
def fresh_marketplace():
    mock_api.reset_state()
    yield mock_api.db


@pytest.fixture
def marketplace_transport():
    return httpx.ASGITransport(app=mock_api.app)


@pytest_asyncio.fixture
async def context(marketplace_transport):
    ctx = SessionContext(
        auth_token="token-ana",
        shopper_name="Ana Souza",
        shopper_phone="(11) 98888-7777",
        base_url=API_URL,
        transport=marketplace_transport,
    )
    yield ctx
    await ctx.close()


@pytest_asyncio.fixture
async def orchestrator(context):
    orch = CheckoutOrchestrator(
        context,
        navigator=RecordingNavigator(),
        watcher_options={"interval": 0.01, "max_attempts": 50, "success_delay": 0},
    )
    yield orch
    orch.close()


@pytest.fixture
def open_store(orchestrator):
    """Opens checkout the way the storefront does: cart and cities first, then the dialog."""
    async def _open(store_id, load_cities=True):
        cart = await orchestrator.cart.refresh()
        if load_cities:
            await orchestrator.load_cities()
        return await orchestrator.open_checkout(cart.group(store_id))
    return _open


@pytest.fixture
def make_order():
    def _make(**overrides):
        data = {
            "id": "3f2a9c1e-0000-4000-8000-000000000001",
            "store_id": "store-pix",
            "store_name": "Loja PIX",
            "payment_status": "pending",
            "items": [{"product_name": "Café Especial 250g", "product_price": "39.90", "quantity": 1}],
            "total": "39.90",
        }
        data.update(overrides)
        return Order.model_validate(data)
    return _make


@pytest.fixture
def pix_info():
    return {
        "pix_qr_code": "data:image/png;base64,AAAA",
        "pix_qr_code_text": "00020126580014br.gov.bcb.pix",
        "mercadopago_payment_id": "mp-123",
    }


@pytest.fixture
def make_group():
    def _make(**overrides):
        data = {
            "store_id": "store-whats",
            "store_name": "Doces da Maria",
            "store_whatsapp": "(11) 99999-0001",
            "store_checkout_enabled": False,
            "items": [
                {
                    "id": "item-1",
                    "product_id": "prod-brigadeiro",
                    "product_name": "Brigadeiro Gourmet",
                    "product_price": "3.50",
                    "quantity": 10,
                    "product_stock": 100,
                },
            ],
        }
        data.update(overrides)
        return StoreCartGroup.model_validate(data)
    return _make
