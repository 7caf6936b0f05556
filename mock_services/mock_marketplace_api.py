"""
mock_marketplace_api.py — Mock Implementation of the Marketplace API (REST)

This module provides a simulated marketplace backend for local development and
the end-to-end checkout tests. It keeps everything in memory and exposes the
same routes and JSON shapes the checkout clients consume.

Simulation Scenarios (by store id keyword):
    • "store-mp-fail" → preference creation fails (invalid gateway credentials)
    • "store-pix"     → gateway orders come back with inline PIX instructions
                        and no redirect URL
    • any other store → preference with a hosted-checkout redirect URL

Endpoints:
    GET    /api/cart                              — cart grouped by store
    PUT    /api/cart/items/{id}                   — change quantity
    DELETE /api/cart/items/{id}                   — remove item
    POST   /api/cart/checkout/{store_id}          — create an order from one store's items
    GET    /api/user-addresses                    — saved addresses (+ POST, PUT, PATCH set-default)
    GET    /api/cities                            — city reference list
    GET    /api/stores/{store_id}/payment-methods — accepted payment methods
    POST   /api/payments/create-preference       — hosted-payment preference
    GET    /api/orders/{id}, GET /api/orders      — orders
    POST   /api/__mock/orders/{id}/payment-status — simulates the gateway webhook

Port:
    Default: 3001 (HTTP)
"""

import copy
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response

app = FastAPI(title="Mock Marketplace API")
router = APIRouter(prefix="/api")
logging.basicConfig(level=logging.INFO)

SEED_STORES = {
    "store-whats": {
        "name": "Doces da Maria",
        "whatsapp": "(11) 99999-0001",
        "checkout_enabled": False,
        "payment_methods": ["whatsapp"],
    },
    "store-mp": {
        "name": "Loja Mercado",
        "whatsapp": "5511999990002",
        "checkout_enabled": True,
        "payment_methods": ["mercadopago", "whatsapp"],
    },
    "store-mp-fail": {
        "name": "Loja Sem Credenciais",
        "whatsapp": "5511999990003",
        "checkout_enabled": True,
        "payment_methods": ["mercadopago", "whatsapp"],
    },
    "store-pix": {
        "name": "Loja PIX",
        "whatsapp": "5511999990004",
        "checkout_enabled": True,
        "payment_methods": ["mercadopago"],
    },
}

SEED_PRODUCTS = {
    "prod-brigadeiro": {"store_id": "store-whats", "name": "Brigadeiro Gourmet", "price": 3.5, "stock": 100},
    "prod-bolo": {"store_id": "store-whats", "name": "Bolo de Cenoura", "price": 42.0, "stock": 5},
    "prod-camiseta": {"store_id": "store-mp", "name": "Camiseta Básica", "price": 59.9, "stock": 20},
    "prod-caneca": {"store_id": "store-mp-fail", "name": "Caneca", "price": 35.0, "stock": 10},
    "prod-cafe": {"store_id": "store-pix", "name": "Café Especial 250g", "price": 39.9, "stock": 8},
}

SEED_CART = [
    {"id": "item-1", "product_id": "prod-brigadeiro", "quantity": 10},
    {"id": "item-2", "product_id": "prod-bolo", "quantity": 1},
    {"id": "item-3", "product_id": "prod-camiseta", "quantity": 2},
    {"id": "item-4", "product_id": "prod-caneca", "quantity": 1},
    {"id": "item-5", "product_id": "prod-cafe", "quantity": 1},
]

SEED_CITIES = [
    {"id": "city-sp", "name": "São Paulo", "state": "SP", "active": True},
    {"id": "city-campinas", "name": "Campinas", "state": "SP", "active": True},
    {"id": "city-santos", "name": "Santos", "state": "SP", "active": False},
    {"id": "city-rj", "name": "Rio de Janeiro", "state": "RJ", "active": True},
    {"id": "city-niteroi", "name": "Niterói", "state": "RJ", "active": True},
]

SEED_ADDRESSES = [
    {
        "id": "addr-casa",
        "label": "Casa",
        "recipient_name": "Ana Souza",
        "street": "Av. Paulista",
        "number": "1000",
        "complement": "Apto 12",
        "neighborhood": "Bela Vista",
        "city": "São Paulo",
        "state": "SP",
        "zip_code": "01310-100",
        "phone": "(11) 98888-7777",
        "is_default": True,
    },
]

db = {}


def reset_state(cart=None, addresses=None):
    """
    Restores the seed data. Tests call this before each scenario.

    Args:
        cart (list, optional): Cart items to start with instead of the seed cart.
        addresses (list, optional): Saved addresses to start with instead of the seed addresses.
    """
    db.clear()
    db.update({
        "stores": copy.deepcopy(SEED_STORES),
        "products": copy.deepcopy(SEED_PRODUCTS),
        "cart": copy.deepcopy(SEED_CART if cart is None else cart),
        "cities": copy.deepcopy(SEED_CITIES),
        "addresses": copy.deepcopy(SEED_ADDRESSES if addresses is None else addresses),
        "orders": {},
        "preference_calls": [],
    })


reset_state()


def set_payment_status(order_id: str, status: str):
    """Simulates the gateway webhook updating an order's payment status."""
    db["orders"][order_id]["payment_status"] = status
    logging.info(f"[MP] Webhook: pedido {order_id} -> {status}")


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    body = {"error": error}
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def _unauthorized(authorization: Optional[str]) -> Optional[JSONResponse]:
    if not authorization or not authorization.startswith("Bearer "):
        return _error(401, "Token não fornecido")
    return None


def _cart_line(item: dict) -> dict:
    product = db["products"][item["product_id"]]
    return {
        "id": item["id"],
        "product_id": item["product_id"],
        "product_name": product["name"],
        "product_price": product["price"],
        "product_stock": product["stock"],
        "quantity": item["quantity"],
        "subtotal": round(product["price"] * item["quantity"], 2),
    }


def _items_of(store_id: str) -> list:
    return [i for i in db["cart"] if db["products"][i["product_id"]]["store_id"] == store_id]


# --- Cart ---

@router.get("/cart")
def get_cart(authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied

    groups = []
    for store_id, store in db["stores"].items():
        lines = [_cart_line(i) for i in _items_of(store_id)]
        if not lines:
            continue
        groups.append({
            "store_id": store_id,
            "store_name": store["name"],
            "store_whatsapp": store["whatsapp"],
            "store_logo": None,
            "store_checkout_enabled": store["checkout_enabled"],
            "items": lines,
            "total": round(sum(line["subtotal"] for line in lines), 2),
        })
    return {"cart_id": "cart-1", "stores": groups}


@router.put("/cart/items/{item_id}")
async def update_cart_item(item_id: str, request: Request, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    body = await request.json()
    item = next((i for i in db["cart"] if i["id"] == item_id), None)
    if item is None:
        return _error(404, "Item não encontrado")
    quantity = int(body.get("quantity", 0))
    if quantity < 1:
        return _error(400, "Quantidade inválida")
    if quantity > db["products"][item["product_id"]]["stock"]:
        return _error(400, "Estoque insuficiente")
    item["quantity"] = quantity
    return _cart_line(item)


@router.delete("/cart/items/{item_id}")
def remove_cart_item(item_id: str, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    before = len(db["cart"])
    db["cart"] = [i for i in db["cart"] if i["id"] != item_id]
    if len(db["cart"]) == before:
        return _error(404, "Item não encontrado")
    return Response(status_code=204)


@router.post("/cart/checkout/{store_id}", status_code=201)
async def checkout_store(store_id: str, request: Request, authorization: Optional[str] = Header(None)):
    """
    Creates an order from the cart items of one store and removes them from the cart.

    Returns:
        dict: The created order. For "store-pix" gateway orders it carries inline
        PIX instructions (`payment_info`) and a gateway payment id.
    """
    denied = _unauthorized(authorization)
    if denied:
        return denied
    body = await request.json()
    lines = [_cart_line(i) for i in _items_of(store_id)]
    if not lines:
        return _error(404, "Nenhum item desta loja no carrinho")

    required = ("shipping_address", "shipping_city", "shipping_state", "shipping_zip", "shipping_phone")
    missing = [name for name in required if not body.get(name)]
    if missing:
        return _error(400, "Dados de entrega incompletos", ", ".join(missing))

    store = db["stores"][store_id]
    method = body.get("payment_method") or "whatsapp"
    if method not in store["payment_methods"]:
        return _error(400, "Método de pagamento não aceito pela loja")

    order_id = str(uuid.uuid4())
    subtotal = round(sum(line["subtotal"] for line in lines), 2)
    order = {
        "id": order_id,
        "store_id": store_id,
        "store_name": store["name"],
        "store_whatsapp": store["whatsapp"],
        "status": "pending",
        "payment_status": "pending",
        "payment_method": method,
        "items": [
            {
                "product_id": line["product_id"],
                "product_name": line["product_name"],
                "product_price": line["product_price"],
                "quantity": line["quantity"],
                "subtotal": line["subtotal"],
            }
            for line in lines
        ],
        "subtotal": subtotal,
        "shipping_cost": 0,
        "total": subtotal,
        "shipping_address": body["shipping_address"],
        "shipping_city": body["shipping_city"],
        "shipping_state": body["shipping_state"],
        "shipping_zip": body["shipping_zip"],
        "shipping_phone": body["shipping_phone"],
        "notes": body.get("notes"),
        "payment_info": None,
    }
    if method == "mercadopago" and "store-pix" in store_id:
        payment_id = f"mp-{uuid.uuid4().hex[:10]}"
        order["payment_id"] = payment_id
        order["payment_info"] = {
            "pix_qr_code": "data:image/png;base64,iVBORw0KGgo=",
            "pix_qr_code_text": f"00020126580014br.gov.bcb.pix0136{order_id}5204000053039865802BR",
            "mercadopago_payment_id": payment_id,
        }

    db["orders"][order_id] = order
    db["cart"] = [i for i in db["cart"] if db["products"][i["product_id"]]["store_id"] != store_id]
    logging.info(f"[API] Pedido {order_id} criado para {store_id} ({method}).")
    return order


# --- Addresses ---

@router.get("/user-addresses")
def list_addresses(authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    return db["addresses"]


def _make_default(address_id: str):
    for address in db["addresses"]:
        address["is_default"] = address["id"] == address_id


@router.post("/user-addresses", status_code=201)
async def create_address(request: Request, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    body = await request.json()
    if not body.get("street") or not body.get("zip_code"):
        return _error(400, "Endereço incompleto")
    address = dict(body, id=f"addr-{uuid.uuid4().hex[:8]}")
    address.pop("reference", None)
    db["addresses"].append(address)
    if address.get("is_default") or len(db["addresses"]) == 1:
        _make_default(address["id"])
    return address


@router.put("/user-addresses/{address_id}")
async def update_address(address_id: str, request: Request, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    body = await request.json()
    address = next((a for a in db["addresses"] if a["id"] == address_id), None)
    if address is None:
        return _error(404, "Endereço não encontrado")
    body.pop("reference", None)
    address.update(body, id=address_id)
    if body.get("is_default"):
        _make_default(address_id)
    return address


@router.patch("/user-addresses/{address_id}/set-default")
def set_default_address(address_id: str, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    if not any(a["id"] == address_id for a in db["addresses"]):
        return _error(404, "Endereço não encontrado")
    _make_default(address_id)
    return {"message": "Endereço padrão atualizado"}


# --- Reference data ---

@router.get("/cities")
def list_cities():
    return db["cities"]


@router.get("/stores/{store_id}/payment-methods")
def get_payment_methods(store_id: str):
    store = db["stores"].get(store_id)
    if store is None:
        return _error(404, "Loja não encontrada")
    return {"payment_methods": store["payment_methods"]}


# --- Payments ---

@router.post("/payments/create-preference")
async def create_preference(request: Request, authorization: Optional[str] = Header(None)):
    """
    Creates a hosted-payment preference for an order.

    Scenario simulation:
        - store id contains "store-mp-fail" → HTTP 400 (invalid gateway credentials)
        - store id contains "store-pix"     → no redirect URL (payment via inline PIX)
        - otherwise                         → preference with `init_point`
    """
    denied = _unauthorized(authorization)
    if denied:
        return denied
    body = await request.json()
    order_id = body.get("order_id")
    store_id = body.get("store_id") or ""
    db["preference_calls"].append({"order_id": order_id, "store_id": store_id})
    logging.info(f"[MP] Preferência solicitada para o pedido {order_id} ({store_id})")

    order = db["orders"].get(order_id)
    if order is None:
        return _error(404, "Pedido não encontrado")

    if "store-mp-fail" in store_id:
        logging.warning(f"[MP] Credenciais inválidas para {store_id}.")
        return _error(400, "Erro ao criar preferência de pagamento", "Credenciais do Mercado Pago inválidas")

    preference_id = f"pref-{uuid.uuid4().hex[:10]}"
    if "store-pix" in store_id:
        return {"preference_id": preference_id, "payment_id": order.get("payment_id")}

    return {
        "preference_id": preference_id,
        "init_point": f"https://www.mercadopago.com.br/checkout/v1/redirect?pref_id={preference_id}",
        "sandbox_init_point": f"https://sandbox.mercadopago.com.br/checkout/v1/redirect?pref_id={preference_id}",
    }


# --- Orders ---

@router.get("/orders/{order_id}")
def get_order(order_id: str, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    order = db["orders"].get(order_id)
    if order is None:
        return _error(404, "Pedido não encontrado")
    return order


@router.get("/orders")
def list_orders(page: int = 1, limit: int = 50, authorization: Optional[str] = Header(None)):
    denied = _unauthorized(authorization)
    if denied:
        return denied
    orders = list(db["orders"].values())
    start = (page - 1) * limit
    return {
        "data": orders[start:start + limit],
        "pagination": {"page": page, "limit": limit, "total": len(orders)},
    }


@router.post("/__mock/orders/{order_id}/payment-status")
async def mock_payment_webhook(order_id: str, request: Request):
    body = await request.json()
    if order_id not in db["orders"]:
        return _error(404, "Pedido não encontrado")
    set_payment_status(order_id, body.get("status", "paid"))
    return db["orders"][order_id]


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3001)
