"""
main.py — FastAPI Entry Point for the Checkout Service

This module exposes the checkout flow over HTTP for the storefront UI. Each
checkout dialog the shopper opens becomes a checkout session with its own
orchestrator; UI events (field edits, address and method choices, submit,
close) map onto orchestrator calls.

Responsibilities:
    • Open and close checkout sessions, one per store group dialog
    • Forward UI events to the `CheckoutOrchestrator`
    • Report the navigations the browser must perform (redirect, new tab)
    • Cart-level operations (quantities, removal, WhatsApp contact)
    • Provide system health information
"""

import asyncio
import os
import uuid
from typing import Callable, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from .errors import CheckoutError, CheckoutStateError, ErrorKind
from .handoff import RecordingNavigator
from .logging_config import get_logger, setup_logging
from .models import (
    AddressDraft,
    AddressSelection,
    CitySelection,
    FieldUpdate,
    NotesUpdate,
    OpenCheckoutRequest,
    PaymentMethodSelection,
    QuantityUpdate,
)
from .session import CheckoutState, SessionContext
from .workflow import CheckoutOrchestrator

# Initialization
setup_logging()
log = get_logger(__name__)
app = FastAPI(title="Checkout Multi-Loja")

# checkout session id -> orchestrator
sessions: Dict[str, CheckoutOrchestrator] = {}
# a session waiting on a PIX payment stays readable this long after the watch ends
FINISHED_SESSION_TTL_SECONDS = float(os.environ.get("FINISHED_SESSION_TTL_SECONDS", "60"))
_reapers = set()

ERROR_STATUS = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.CONFLICT: 409,
    ErrorKind.PROVIDER: 502,
    ErrorKind.NETWORK: 503,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.UNEXPECTED: 500,
}


def get_context_factory() -> Callable[..., SessionContext]:
    """Dependency returning the `SessionContext` constructor (overridden in tests)."""
    return SessionContext


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    return token if scheme.lower() == "bearer" and token else None


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(status_code=ERROR_STATUS[exc.kind], content={"error": exc.to_dict()})


@app.exception_handler(CheckoutStateError)
async def state_error_handler(request: Request, exc: CheckoutStateError):
    return JSONResponse(status_code=409, content={"error": {"kind": "state", "message": str(exc)}})


@app.on_event("shutdown")
async def on_shutdown():
    """Closes every open checkout session and its HTTP clients."""
    log.info(f"Encerrando {len(sessions)} sessão(ões) de checkout...")
    for task in list(_reapers):
        task.cancel()
    for session_id in list(sessions):
        await _discard(session_id)


def _get(session_id: str) -> CheckoutOrchestrator:
    orchestrator = sessions.get(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Sessão de checkout não encontrada")
    return orchestrator


async def _discard(session_id: str):
    orchestrator = sessions.pop(session_id, None)
    if orchestrator is not None:
        orchestrator.close()
        await orchestrator.context.close()


async def _discard_after_watch(session_id: str, orchestrator: CheckoutOrchestrator):
    if orchestrator.watcher is not None:
        await orchestrator.watcher.wait()
    await asyncio.sleep(FINISHED_SESSION_TTL_SECONDS)
    if sessions.get(session_id) is orchestrator:
        log.info(f"Sessão de checkout {session_id} encerrada após a verificação do pagamento.")
        await _discard(session_id)


def _snapshot(session_id: str, orchestrator: CheckoutOrchestrator) -> dict:
    navigator = orchestrator.navigator
    return {
        "session_id": session_id,
        "state": orchestrator.state.value,
        "checkout": orchestrator.session.snapshot() if orchestrator.session else None,
        "notice": orchestrator.notice,
        "payment_watch": orchestrator.watcher.snapshot() if orchestrator.watcher else None,
        "open_external": list(getattr(navigator, "opened", [])),
        "navigate_to": getattr(navigator, "last_navigation", None),
    }


# --- Checkout sessions ---

@app.post("/v1/checkout-sessions", status_code=201)
async def open_checkout(
        body: OpenCheckoutRequest,
        token: Optional[str] = Depends(bearer_token),
        context_factory=Depends(get_context_factory),
):
    """
    Opens the checkout dialog for one store group of the shopper's cart.

    Args:
        body (OpenCheckoutRequest): Store id and the shopper's profile data.
        token (str, optional): Bearer token from the `Authorization` header.

    Returns:
        dict: The session snapshot, including its `session_id`.

    Raises:
        HTTPException(404): If the cart has no items for the store.
    """
    context = context_factory(
        auth_token=token,
        shopper_name=body.shopper_name,
        shopper_phone=body.shopper_phone,
    )
    orchestrator = CheckoutOrchestrator(context, navigator=RecordingNavigator())
    try:
        await orchestrator.cart.refresh()
        group = orchestrator.cart.find_group(body.store_id)
        if group is None or group.is_empty:
            raise HTTPException(status_code=404, detail="Nenhum item desta loja no carrinho")
        await orchestrator.load_cities()
        await orchestrator.open_checkout(group)
    except Exception:
        await context.close()
        raise

    session_id = uuid.uuid4().hex
    sessions[session_id] = orchestrator
    log.info(f"[Loja: {body.store_id}] Sessão de checkout {session_id} aberta.")
    return _snapshot(session_id, orchestrator)


@app.get("/v1/checkout-sessions/{session_id}")
async def get_checkout(session_id: str):
    return _snapshot(session_id, _get(session_id))


@app.delete("/v1/checkout-sessions/{session_id}", status_code=204)
async def close_checkout(session_id: str):
    """Closes the dialog: stops any payment watch and discards the session. Idempotent."""
    await _discard(session_id)
    return Response(status_code=204)


@app.patch("/v1/checkout-sessions/{session_id}/fields")
async def set_field(session_id: str, body: FieldUpdate):
    orchestrator = _get(session_id)
    try:
        orchestrator.set_field(body.name, body.value)
    except KeyError:
        raise HTTPException(status_code=422, detail=f"Campo desconhecido: {body.name}")
    return _snapshot(session_id, orchestrator)


@app.get("/v1/checkout-sessions/{session_id}/cities")
async def list_cities(session_id: str, state: str):
    orchestrator = _get(session_id)
    cities = orchestrator.context.city_directory().for_state(state)
    return [city.model_dump() for city in cities]


@app.put("/v1/checkout-sessions/{session_id}/city")
async def select_city(session_id: str, body: CitySelection):
    orchestrator = _get(session_id)
    orchestrator.select_city(body.city_id)
    return _snapshot(session_id, orchestrator)


@app.post("/v1/checkout-sessions/{session_id}/address/select")
async def select_address(session_id: str, body: AddressSelection):
    orchestrator = _get(session_id)
    orchestrator.select_address(body.address_id)
    return _snapshot(session_id, orchestrator)


@app.post("/v1/checkout-sessions/{session_id}/address/new")
async def start_new_address(session_id: str):
    orchestrator = _get(session_id)
    orchestrator.start_new_address()
    return _snapshot(session_id, orchestrator)


@app.post("/v1/checkout-sessions/{session_id}/addresses")
async def save_address(session_id: str, draft: AddressDraft, editing_id: Optional[str] = None):
    orchestrator = _get(session_id)
    await orchestrator.save_address(draft, editing_id=editing_id)
    return _snapshot(session_id, orchestrator)


@app.post("/v1/checkout-sessions/{session_id}/addresses/zip-lookup")
async def lookup_zip(session_id: str, draft: AddressDraft):
    orchestrator = _get(session_id)
    return (await orchestrator.lookup_zip(draft)).model_dump(mode="json")


@app.put("/v1/checkout-sessions/{session_id}/payment-method")
async def choose_payment_method(session_id: str, body: PaymentMethodSelection):
    orchestrator = _get(session_id)
    orchestrator.choose_payment_method(body.method)
    return _snapshot(session_id, orchestrator)


@app.put("/v1/checkout-sessions/{session_id}/notes")
async def set_notes(session_id: str, body: NotesUpdate):
    orchestrator = _get(session_id)
    orchestrator.set_notes(body.notes)
    return _snapshot(session_id, orchestrator)


@app.post("/v1/checkout-sessions/{session_id}/submit")
async def submit(session_id: str):
    """
    Finishes the order. Failures are part of the result (HTTP 200), since the
    session stays open for correction and resubmission.
    A session that handed off is discarded right away, the browser navigates
    away. A session watching a PIX payment is discarded once the watch ends.

    Returns:
        dict: The submission result plus the session snapshot.
    """
    orchestrator = _get(session_id)
    result = await orchestrator.submit()
    response = _snapshot(session_id, orchestrator)
    response["result"] = result.to_dict()
    if orchestrator.state == CheckoutState.HANDOFF_READY:
        await _discard(session_id)
    elif orchestrator.state == CheckoutState.PAYMENT_PENDING:
        task = asyncio.create_task(_discard_after_watch(session_id, orchestrator))
        _reapers.add(task)
        task.add_done_callback(_reapers.discard)
    return response


# --- Cart ---

@app.get("/v1/cart")
async def get_cart(token: Optional[str] = Depends(bearer_token), context_factory=Depends(get_context_factory)):
    async with context_factory(auth_token=token) as context:
        cart = await context.carts.get_cart()
    return _cart_view(cart)


@app.put("/v1/cart/items/{item_id}")
async def update_cart_item(
        item_id: str,
        body: QuantityUpdate,
        token: Optional[str] = Depends(bearer_token),
        context_factory=Depends(get_context_factory),
):
    async with context_factory(auth_token=token) as context:
        orchestrator = CheckoutOrchestrator(context)
        await orchestrator.cart.refresh()
        cart = await orchestrator.cart.update_quantity(item_id, body.quantity)
    return _cart_view(cart)


@app.delete("/v1/cart/items/{item_id}")
async def remove_cart_item(
        item_id: str,
        token: Optional[str] = Depends(bearer_token),
        context_factory=Depends(get_context_factory),
):
    async with context_factory(auth_token=token) as context:
        cart = await CheckoutOrchestrator(context).cart.remove_item(item_id)
    return _cart_view(cart)


@app.post("/v1/cart/stores/{store_id}/contact")
async def contact_store(
        store_id: str,
        token: Optional[str] = Depends(bearer_token),
        context_factory=Depends(get_context_factory),
):
    """Builds the WhatsApp link for talking to a seller about its cart group, without an order."""
    async with context_factory(auth_token=token) as context:
        orchestrator = CheckoutOrchestrator(context, navigator=RecordingNavigator())
        await orchestrator.cart.refresh()
        group = orchestrator.cart.find_group(store_id)
        if group is None:
            raise HTTPException(status_code=404, detail="Nenhum item desta loja no carrinho")
        url = orchestrator.contact_store(group)
    return {"open_external": url}


def _cart_view(cart) -> dict:
    data = cart.model_dump(mode="json")
    data.update({
        "stores_count": cart.stores_count,
        "total_items": cart.total_items,
        "grand_total": str(cart.grand_total),
    })
    return data


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container orchestrators.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok", "open_sessions": len(sessions)}
