"""
payment_methods.py — Payment Method Negotiation

Discovers which completion paths a store accepts. The direct-message handoff
must always remain available, so any failure falls back to it instead of
blocking checkout.
"""

from typing import List

from .clients import StoreClient
from .errors import CheckoutError
from .logging_config import get_logger
from .models import PaymentMethod

log = get_logger(__name__)

FALLBACK_METHODS = [PaymentMethod.DIRECT_MESSAGE]


class PaymentMethodNegotiator:
    def __init__(self, stores: StoreClient):
        self.stores = stores

    async def fetch_accepted_methods(self, store_id: str) -> List[PaymentMethod]:
        """
        Returns the store's accepted methods in the store's order. The first element is the
        default selection. Unknown method names are ignored.
        """
        try:
            raw = await self.stores.get_payment_methods(store_id)
        except CheckoutError as e:
            log.warning(f"[Loja: {store_id}] Métodos de pagamento indisponíveis ({e.kind.value}). Usando WhatsApp.")
            return list(FALLBACK_METHODS)

        methods = []
        for name in raw:
            try:
                method = PaymentMethod(name)
            except ValueError:
                log.warning(f"[Loja: {store_id}] Método de pagamento desconhecido ignorado: {name}")
                continue
            if method not in methods:
                methods.append(method)

        if not methods:
            return list(FALLBACK_METHODS)
        log.info(f"[Loja: {store_id}] Métodos aceitos: {[m.value for m in methods]}")
        return methods
