"""
workflow.py — Core Orchestration Logic for Store Checkout

This module contains the state machine that drives checkout for one store
group (seller-group) at a time. It coordinates the cart, address, payment
method, order and payment services in the correct sequence.

Workflow Overview:
1. Open checkout: load accepted payment methods and saved addresses concurrently
2. Resolve the address (saved, edited or freshly entered) and the payment method
3. Submit: re-read the cart, create the order, then either
   a) gateway: create a hosted-payment preference and hand off to its URL, or
      watch the order until the inline payment (PIX) settles
   b) direct message: open a pre-filled WhatsApp message to the seller
4. Failures keep the entered data so the shopper can correct and resubmit

States:
    Idle → AddressPending → MethodReady → Submitting → {HandoffReady | PaymentPending | Failed}
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from .addresses import (
    FIELD_CITY,
    AddressResolver,
    CityDirectory,
    format_zip,
    validate_checkout_form,
    validation_summary,
)
from .cart import CartStore
from .errors import CheckoutError, CheckoutStateError, ConflictError, ProviderError, ValidationError
from .handoff import (
    Navigator,
    build_cart_message,
    build_order_message,
    order_detail_url,
    whatsapp_url,
)
from .logging_config import get_logger
from .models import AddressDraft, CheckoutPayload, Order, PaymentMethod, StoreCartGroup
from .payment_methods import PaymentMethodNegotiator
from .payment_watcher import PaymentConfirmationWatcher
from .session import CheckoutSession, CheckoutState, SessionContext

log = get_logger(__name__)

S = CheckoutState
ALLOWED_TRANSITIONS = {
    S.IDLE: {S.ADDRESS_PENDING},
    S.ADDRESS_PENDING: {S.METHOD_READY, S.IDLE},
    S.METHOD_READY: {S.ADDRESS_PENDING, S.SUBMITTING, S.IDLE},
    S.SUBMITTING: {S.METHOD_READY, S.HANDOFF_READY, S.PAYMENT_PENDING, S.FAILED, S.IDLE},
    S.HANDOFF_READY: {S.IDLE},
    S.PAYMENT_PENDING: {S.IDLE},
    S.FAILED: {S.ADDRESS_PENDING, S.METHOD_READY, S.SUBMITTING, S.IDLE},
}
EDITABLE_STATES = (S.ADDRESS_PENDING, S.METHOD_READY, S.FAILED)

STALE_CART_MESSAGE = "Os itens desta loja não estão mais no carrinho. Por favor, recarregue a página."


@dataclass
class SubmissionResult:
    """
    Outcome of one `submit()` call.

    Attributes:
        state (CheckoutState): State after the call.
        order (Order, optional): The created order, if any.
        redirect_url (str, optional): Hosted-payment URL the shopper was sent to.
        handoff_url (str, optional): WhatsApp URL opened for the seller.
        watcher (PaymentConfirmationWatcher, optional): Running payment watch.
        error (CheckoutError, optional): What went wrong, ready for display.
    """
    state: CheckoutState
    order: Optional[Order] = None
    redirect_url: Optional[str] = None
    handoff_url: Optional[str] = None
    watcher: Optional[PaymentConfirmationWatcher] = None
    error: Optional[CheckoutError] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "order": self.order.model_dump(mode="json") if self.order else None,
            "redirect_url": self.redirect_url,
            "handoff_url": self.handoff_url,
            "payment_watch": self.watcher is not None,
            "error": self.error.to_dict() if self.error else None,
        }


class CheckoutOrchestrator:
    """
    Drives checkout for one store group at a time. Sessions for different
    store groups are independent: each orchestrator owns at most one.

    Args:
        context (SessionContext): Shopper context and service clients.
        navigator (Navigator, optional): Presentation hook for redirects and new tabs.
        watcher_options (dict, optional): Overrides for `PaymentConfirmationWatcher`
            (interval, max_attempts, success_delay).
    """
    def __init__(self, context: SessionContext, navigator: Optional[Navigator] = None, watcher_options: Optional[dict] = None):
        self.context = context
        self.navigator = navigator or Navigator()
        self.cart = CartStore(context.carts)
        self.addresses = AddressResolver(context.addresses, context.zip_codes)
        self.negotiator = PaymentMethodNegotiator(context.stores)
        self.watcher_options = dict(watcher_options or {})

        self.state = CheckoutState.IDLE
        self.session: Optional[CheckoutSession] = None
        self.watcher: Optional[PaymentConfirmationWatcher] = None
        self.notice: Optional[str] = None

    # --- State handling ---

    def _transition(self, new_state: CheckoutState):
        if new_state == self.state:
            return
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise CheckoutStateError(f"Transição inválida: {self.state.value} -> {new_state.value}")
        log.info(f"{self._log_prefix} Estado: {self.state.value} -> {new_state.value}")
        self.state = new_state

    @property
    def _log_prefix(self) -> str:
        store_id = self.session.store_id if self.session else "-"
        return f"[Loja: {store_id}]"

    def _require_session(self) -> CheckoutSession:
        if self.session is None:
            raise CheckoutStateError("Nenhum checkout aberto")
        return self.session

    def _require_editable(self) -> CheckoutSession:
        session = self._require_session()
        if self.state not in EDITABLE_STATES:
            raise CheckoutStateError(f"Checkout não pode ser alterado no estado {self.state.value}")
        return session

    def _refresh_readiness(self):
        """AddressPending ⇄ MethodReady, depending on what the session has resolved."""
        session = self.session
        if session is None or self.state not in EDITABLE_STATES:
            return
        ready = session.address_resolved and session.selected_payment_method in session.available_payment_methods
        if ready and session.addresses_loaded and session.methods_loaded:
            self._transition(CheckoutState.METHOD_READY)
        elif self.state != CheckoutState.FAILED:
            self._transition(CheckoutState.ADDRESS_PENDING)

    # --- Opening the dialog ---

    async def open_checkout(self, group: StoreCartGroup) -> CheckoutSession:
        """
        Opens the checkout dialog for one store group. Payment methods and saved
        addresses load concurrently; failure of one does not affect the other.
        """
        if self.session is not None:
            self.close()
        session = CheckoutSession(store_group=group)
        self.session = session
        self.notice = None
        self._transition(CheckoutState.ADDRESS_PENDING)

        await asyncio.gather(
            self._load_payment_methods(session),
            self._load_addresses(session),
        )
        if self.session is session:
            self._refresh_readiness()
        return session

    async def _load_payment_methods(self, session: CheckoutSession):
        methods = await self.negotiator.fetch_accepted_methods(session.store_id)
        if not session.store_group.checkout_enabled:
            # store without platform checkout: WhatsApp only
            methods = [PaymentMethod.DIRECT_MESSAGE]
        session.available_payment_methods = methods
        session.selected_payment_method = methods[0]
        session.methods_loaded = True

    async def _load_addresses(self, session: CheckoutSession):
        try:
            addresses = await self.addresses.list()
        except CheckoutError as e:
            log.error(f"[Loja: {session.store_id}] Erro ao carregar endereços: {e}")
            addresses = []
        session.saved_addresses = addresses
        session.addresses_loaded = True

        chosen = AddressResolver.pick_default(addresses)
        if chosen is not None:
            self._fill_from_address(session, chosen)
        else:
            session.selected_address_id = None
            session.editing_address_id = None
            session.show_address_form = True

    def _fill_from_address(self, session: CheckoutSession, address):
        session.form.fill_from(address, self.context.city_directory(), fallback_phone=self.context.shopper_phone)
        session.selected_address_id = address.id
        session.show_address_form = False
        session.validation_errors = {}

    # --- City list ---

    async def load_cities(self) -> CityDirectory:
        directory = await self.context.load_cities()
        self.on_cities_loaded()
        return directory

    def on_cities_loaded(self, cities=None):
        """
        Re-resolves the pre-filled city once the city list is available, when the
        address was pre-filled before the list finished loading.
        """
        if cities is not None:
            self.context.city_cache = list(cities)
        session = self.session
        if session is None or session.form.pending_address is None:
            return
        directory = self.context.city_directory()
        if not directory.loaded:
            return
        pending = session.form.pending_address
        city = directory.match(pending.city, pending.state)
        # only if the shopper has not touched the city meanwhile
        if city is not None and session.form.shipping_city == (pending.city or ""):
            session.form.shipping_city = city.id
            log.info(f"{self._log_prefix} Cidade '{pending.city}' resolvida para {city.id}.")
        session.form.pending_address = None

    # --- Address selection and editing ---

    def select_address(self, address_id: str):
        session = self._require_editable()
        address = next((a for a in session.saved_addresses if a.id == address_id), None)
        if address is None:
            raise ValidationError("Endereço não encontrado", field_errors={"address": "Endereço não encontrado"})
        self._fill_from_address(session, address)
        self._refresh_readiness()

    def start_new_address(self):
        session = self._require_editable()
        session.editing_address_id = None
        session.selected_address_id = None
        session.show_address_form = True
        session.form.clear()
        self._refresh_readiness()

    async def save_address(self, draft: AddressDraft, editing_id: Optional[str] = None):
        """
        Creates (or updates, when editing) an address from inside checkout, then
        re-lists the saved addresses and selects the saved one.
        Raises:
            ValidationError: If the draft is incomplete (no network call is made).
        """
        session = self._require_editable()
        editing_id = editing_id or session.editing_address_id
        if not draft.recipient_name:
            draft = draft.model_copy(update={"recipient_name": self.context.shopper_name or ""})

        if editing_id:
            saved = await self.addresses.update(editing_id, draft)
        else:
            saved = await self.addresses.create(draft)

        try:
            session.saved_addresses = await self.addresses.list()
        except CheckoutError as e:
            log.warning(f"{self._log_prefix} Não foi possível recarregar endereços: {e}")
            session.saved_addresses = [a for a in session.saved_addresses if a.id != saved.id] + [saved]

        if self.session is not session:
            return saved
        session.editing_address_id = None
        self._fill_from_address(session, saved)
        self._refresh_readiness()
        return saved

    async def set_default_address(self, address_id: str):
        session = self._require_session()
        await self.addresses.set_default(address_id)
        session.saved_addresses = await self.addresses.list()

    async def lookup_zip(self, draft: AddressDraft) -> AddressDraft:
        return await self.addresses.lookup_zip(draft, self.context.city_directory())

    def set_field(self, name: str, value: str):
        """Edits one form field. Errors clear only for fields whose value changed."""
        session = self._require_editable()
        before = session.form.values()
        session.form.set_field(name, value)
        for field_name, current in session.form.values().items():
            if current != before[field_name]:
                session.validation_errors.pop(field_name, None)
        self._refresh_readiness()

    def select_city(self, city_id: str):
        session = self._require_editable()
        city = self.context.city_directory().by_id(city_id)
        if city is None:
            raise ValidationError("Cidade não encontrada", field_errors={FIELD_CITY: "Cidade não encontrada"})
        session.form.select_city(city)
        session.validation_errors.pop(FIELD_CITY, None)
        self._refresh_readiness()

    def choose_payment_method(self, method: PaymentMethod):
        session = self._require_editable()
        method = PaymentMethod(method)
        if method not in session.available_payment_methods:
            raise ValidationError(
                "Método de pagamento não aceito por esta loja",
                field_errors={"payment_method": "Método de pagamento não aceito por esta loja"},
            )
        session.selected_payment_method = method
        self._refresh_readiness()

    def set_notes(self, notes: str):
        session = self._require_editable()
        session.notes = notes or ""

    # --- Submission ---

    def _build_payload(self, session: CheckoutSession) -> CheckoutPayload:
        form = session.form
        return CheckoutPayload(
            shipping_address=form.shipping_address.strip(),
            shipping_city=self.context.city_directory().display_name(form.shipping_city),
            shipping_state=form.shipping_state.strip().upper(),
            shipping_zip=format_zip(form.shipping_zip),
            shipping_phone=form.shipping_phone.strip(),
            notes=session.notes or None,
            payment_method=session.selected_payment_method,
        )

    async def _confirm_group_still_in_cart(self, session: CheckoutSession) -> StoreCartGroup:
        cart = await self.cart.refresh()
        group = cart.group(session.store_id)
        if group is None or group.is_empty:
            raise ConflictError(STALE_CART_MESSAGE)
        return group

    async def submit(self) -> SubmissionResult:
        """
        Finishes the order for the open store group.

        Validation is local and never reaches the network. An order is created at most
        once per checkout session: after a payment-setup failure, resubmitting reuses the
        existing order instead of creating another one.
        """
        session = self._require_session()
        if self.state not in EDITABLE_STATES:
            raise CheckoutStateError(f"Não é possível finalizar no estado {self.state.value}")

        errors = validate_checkout_form(session.form, self.context.city_directory())
        if errors:
            session.validation_errors = errors
            error = ValidationError(validation_summary(errors), field_errors=errors)
            session.last_error = error
            log.info(f"{self._log_prefix} Validação falhou: {sorted(errors)}")
            return SubmissionResult(state=self.state, error=error)

        self._refresh_readiness()
        if self.state == CheckoutState.ADDRESS_PENDING:
            error = ValidationError("Selecione um endereço e um método de pagamento")
            session.last_error = error
            return SubmissionResult(state=self.state, error=error)

        payload = self._build_payload(session)
        self._transition(CheckoutState.SUBMITTING)
        session.validation_errors = {}
        session.last_error = None

        try:
            order = session.created_order
            if order is None:
                group = await self._confirm_group_still_in_cart(session)
                if self.session is not session:
                    return SubmissionResult(state=self.state)
                session.store_group = group
                log.info(f"{self._log_prefix} Criando pedido ({payload.payment_method.value}).")
                order = await self.context.orders.create_order(session.store_id, payload)
                session.created_order = order
                log.info(f"[Pedido: {order.id}] Pedido #{order.short_id} criado.")
                if self.session is not session:
                    return SubmissionResult(state=self.state, order=order)
            else:
                log.info(f"[Pedido: {order.id}] Reutilizando pedido já criado nesta sessão.")

            if session.selected_payment_method == PaymentMethod.GATEWAY:
                return await self._start_gateway_payment(session, order)
            return self._finish_direct_message(session, order)

        except ConflictError as e:
            log.warning(f"{self._log_prefix} Conflito no carrinho: {e.message}")
            session.last_error = e
            if self.session is session:
                self._transition(CheckoutState.METHOD_READY)
            return SubmissionResult(state=self.state, error=e)

        except CheckoutError as e:
            log.error(f"{self._log_prefix} Falha ao finalizar pedido ({e.kind.value}): {e.message}")
            session.last_error = e
            if self.session is session:
                self._transition(CheckoutState.FAILED)
            return SubmissionResult(state=self.state, order=session.created_order, error=e)

        except Exception as e:
            log.critical(f"{self._log_prefix} Erro inesperado ao finalizar pedido: {e!r}")
            error = CheckoutError("Erro inesperado ao finalizar o pedido. Tente novamente.")
            session.last_error = error
            if self.session is session:
                self._transition(CheckoutState.FAILED)
            return SubmissionResult(state=self.state, order=session.created_order, error=error)

    async def _start_gateway_payment(self, session: CheckoutSession, order: Order) -> SubmissionResult:
        log_prefix = f"[Pedido: {order.id}]"
        try:
            preference = await self.context.payments.create_payment_preference(order.id, session.store_id)
        except ProviderError as e:
            log.critical(f"{log_prefix} Pedido criado, mas a configuração do pagamento falhou: {e.message}")
            raise ProviderError(
                f"O pedido #{order.short_id} foi criado, mas não foi possível configurar o pagamento "
                f"({e.message}). Tente novamente ou pague pelo detalhe do pedido.",
                order_id=order.id,
                details=e.details,
            ) from e

        if self.session is not session:
            return SubmissionResult(state=self.state, order=order)

        redirect_url = preference.redirect_url
        if redirect_url:
            self._transition(CheckoutState.HANDOFF_READY)
            log.info(f"{log_prefix} Redirecionando para o Mercado Pago.")
            self.navigator.navigate(redirect_url)
            return SubmissionResult(state=self.state, order=order, redirect_url=redirect_url)

        if order.awaits_gateway_confirmation:
            return self._start_payment_watch(order)

        log.critical(f"{log_prefix} Preferência criada sem link de pagamento.")
        raise ProviderError(
            f"O pedido #{order.short_id} foi criado, mas o link de pagamento não está disponível.",
            order_id=order.id,
        )

    def _finish_direct_message(self, session: CheckoutSession, order: Order) -> SubmissionResult:
        if order.awaits_gateway_confirmation:
            return self._start_payment_watch(order)

        self._transition(CheckoutState.HANDOFF_READY)
        self.notice = f"Pedido #{order.short_id} criado com sucesso"

        handoff_url = None
        number = order.store_whatsapp or session.store_group.store_whatsapp
        if number:
            message_order = order if order.notes else order.model_copy(update={"notes": session.notes or None})
            handoff_url = whatsapp_url(number, build_order_message(message_order))
            self._open_best_effort(handoff_url)
        else:
            log.warning(f"[Pedido: {order.id}] Loja sem WhatsApp; mensagem não enviada.")

        self.navigator.navigate(order_detail_url(order.id))
        return SubmissionResult(state=self.state, order=order, handoff_url=handoff_url)

    def _start_payment_watch(self, order: Order) -> SubmissionResult:
        self._transition(CheckoutState.PAYMENT_PENDING)
        self.notice = f"Pedido #{order.short_id} criado com sucesso"
        self.watcher = PaymentConfirmationWatcher(
            self.context.orders,
            order,
            navigator=self.navigator,
            on_settled=self._on_payment_settled,
            **self.watcher_options,
        )
        self.watcher.start()
        return SubmissionResult(state=self.state, order=order, watcher=self.watcher)

    def _on_payment_settled(self, order: Order):
        self.notice = "Pagamento confirmado! Seu pagamento foi processado com sucesso."

    def _open_best_effort(self, url: str):
        # the external channel may be blocked; that is never an error for the order
        try:
            self.navigator.open_external(url)
        except Exception as e:
            log.warning(f"{self._log_prefix} Não foi possível abrir o WhatsApp: {e!r}")

    # --- Closing ---

    def close_payment_dialog(self):
        """Stops the payment watch, if any. Idempotent."""
        if self.watcher is not None:
            self.watcher.stop()

    def close(self):
        """Closes the checkout dialog from any state. Discards the session, never the cart."""
        self.close_payment_dialog()
        self.watcher = None
        if self.session is not None:
            log.info(f"{self._log_prefix} Checkout fechado.")
        self.session = None
        self.state = CheckoutState.IDLE

    # --- Cart-level handoff ---

    def contact_store(self, group: StoreCartGroup) -> str:
        """
        Opens a WhatsApp conversation with the seller about a cart group, without creating an order.
        Raises:
            ValidationError: If the store has no WhatsApp number.
        """
        if not group.store_whatsapp:
            raise ValidationError("WhatsApp da loja não disponível")
        url = whatsapp_url(group.store_whatsapp, build_cart_message(group))
        self._open_best_effort(url)
        return url
