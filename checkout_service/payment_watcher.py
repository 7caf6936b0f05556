"""
payment_watcher.py — Payment Confirmation Watcher

After an order is created with gateway-backed payment and inline instructions
(e.g. a PIX code), the shopper pays outside the platform and the order service
learns about it through the gateway's webhook. The watcher polls the order
until its payment settles, the attempt budget runs out, or the owning dialog
goes away.

Rules:
    • one tick per interval; each tick re-fetches the order and replaces the snapshot
    • paid → stop, report success, navigate to the order after a short delay
    • failed/refunded → stop without navigating
    • attempt budget exhausted → stop silently (the payment may still complete later)
    • errors on a single tick are logged and the loop goes on
    • stop() is immediate and idempotent; no tick runs after it
"""

import asyncio
import os
from enum import Enum
from typing import Callable, Optional

from .clients import OrderClient
from .handoff import Navigator, order_detail_url
from .logging_config import get_logger
from .models import Order, PaymentStatus

PAYMENT_POLL_INTERVAL_SECONDS = float(os.environ.get("PAYMENT_POLL_INTERVAL_SECONDS", "5"))
PAYMENT_POLL_MAX_ATTEMPTS = int(os.environ.get("PAYMENT_POLL_MAX_ATTEMPTS", "60"))
PAYMENT_SUCCESS_REDIRECT_DELAY_SECONDS = float(os.environ.get("PAYMENT_SUCCESS_REDIRECT_DELAY_SECONDS", "2"))

log = get_logger(__name__)


class WatchOutcome(str, Enum):
    SETTLED = "settled"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class PaymentConfirmationWatcher:
    """
    Polls one order's payment status as a cancellable asyncio task.

    Args:
        orders (OrderClient): Order service client.
        order (Order): The freshly created order (initial snapshot).
        navigator (Navigator, optional): Receives the terminal navigation to the order detail.
        interval (float): Seconds between ticks.
        max_attempts (int): Tick budget before giving up silently.
        success_delay (float): Seconds between the success notice and the navigation.
        on_update (callable, optional): Called with every fetched order snapshot.
        on_settled (callable, optional): Called once with the paid order (success notice).
    """
    def __init__(
            self,
            orders: OrderClient,
            order: Order,
            navigator: Optional[Navigator] = None,
            interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
            max_attempts: int = PAYMENT_POLL_MAX_ATTEMPTS,
            success_delay: float = PAYMENT_SUCCESS_REDIRECT_DELAY_SECONDS,
            on_update: Optional[Callable[[Order], None]] = None,
            on_settled: Optional[Callable[[Order], None]] = None,
    ):
        self.orders = orders
        self.order = order
        self.navigator = navigator or Navigator()
        self.interval = interval
        self.max_attempts = max_attempts
        self.success_delay = success_delay
        self.on_update = on_update
        self.on_settled = on_settled

        self.attempts = 0
        self.outcome: Optional[WatchOutcome] = None
        self._task: Optional[asyncio.Task] = None
        self._log_prefix = f"[Pedido: {order.id}]"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Starts polling on the running event loop. No-op if already started or stopped."""
        if self._task is not None or self.outcome is not None:
            return
        log.info(f"{self._log_prefix} Iniciando verificação automática do pagamento.")
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self):
        """Stops polling immediately. Safe to call any number of times, before or after start()."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            log.info(f"{self._log_prefix} Verificação de pagamento interrompida.")
        if self.outcome is None:
            self.outcome = WatchOutcome.CANCELLED

    cancel = stop

    def snapshot(self) -> dict:
        return {
            "order_id": self.order.id,
            "payment_status": self.order.payment_status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "running": self.running,
            "outcome": self.outcome.value if self.outcome else None,
        }

    async def wait(self) -> Optional[WatchOutcome]:
        """Waits for the watcher to finish and returns its outcome."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self.outcome

    async def _run(self):
        try:
            while self.attempts < self.max_attempts:
                await asyncio.sleep(self.interval)
                self.attempts += 1

                try:
                    order = await self.orders.get_order(self.order.id)
                except Exception as e:
                    log.warning(
                        f"{self._log_prefix} Erro ao verificar pagamento "
                        f"(tentativa {self.attempts}/{self.max_attempts}): {e}"
                    )
                    continue

                self.order = order
                if self.on_update:
                    self.on_update(order)

                if order.is_paid:
                    await self._settle(order)
                    return
                if order.payment_status in (PaymentStatus.FAILED, PaymentStatus.REFUNDED):
                    log.warning(f"{self._log_prefix} Pagamento não aprovado ({order.payment_status.value}).")
                    self.outcome = WatchOutcome.FAILED
                    return

            log.info(f"{self._log_prefix} Limite de tentativas atingido. Parando verificação automática.")
            self.outcome = WatchOutcome.TIMED_OUT
        except asyncio.CancelledError:
            if self.outcome is None:
                self.outcome = WatchOutcome.CANCELLED
            raise

    async def _settle(self, order: Order):
        log.info(f"{self._log_prefix} Pagamento confirmado!")
        self.outcome = WatchOutcome.SETTLED
        if self.on_settled:
            self.on_settled(order)
        await asyncio.sleep(self.success_delay)
        self.navigator.navigate(order_detail_url(order.id))
