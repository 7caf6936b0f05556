import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from checkout_service.errors import NetworkError
from checkout_service.handoff import RecordingNavigator
from checkout_service.payment_watcher import PaymentConfirmationWatcher, WatchOutcome


@pytest.fixture
def pending_order(make_order, pix_info):
    return make_order(payment_info=pix_info)


def _with_status(order, status):
    return type(order).model_validate(dict(order.model_dump(), payment_status=status))


def _watcher(orders, order, **kwargs):
    options = {"interval": 0.01, "max_attempts": 10, "success_delay": 0, "navigator": RecordingNavigator()}
    options.update(kwargs)
    return PaymentConfirmationWatcher(orders, order, **options)


@pytest.mark.asyncio
async def test_settles_and_navigates_to_order(pending_order):
    paid = _with_status(pending_order, "paid")
    orders = AsyncMock()
    orders.get_order.side_effect = [pending_order, pending_order, paid]
    on_settled = MagicMock()
    watcher = _watcher(orders, pending_order, on_settled=on_settled)

    watcher.start()
    assert await asyncio.wait_for(watcher.wait(), timeout=2) == WatchOutcome.SETTLED

    assert watcher.attempts == 3
    assert watcher.order.is_paid
    on_settled.assert_called_once_with(paid)
    assert watcher.navigator.navigations == [f"/OrderDetail?id={pending_order.id}"]
    assert not watcher.running


@pytest.mark.asyncio
async def test_tick_errors_are_swallowed(pending_order):
    paid = _with_status(pending_order, "paid")
    orders = AsyncMock()
    orders.get_order.side_effect = [NetworkError("offline"), NetworkError("offline"), paid]
    watcher = _watcher(orders, pending_order)

    watcher.start()
    assert await asyncio.wait_for(watcher.wait(), timeout=2) == WatchOutcome.SETTLED
    assert orders.get_order.await_count == 3


@pytest.mark.asyncio
async def test_unexpected_tick_errors_do_not_stop_the_watch(pending_order):
    paid = _with_status(pending_order, "paid")
    orders = AsyncMock()
    orders.get_order.side_effect = [httpx.DecodingError("bad gzip"), RuntimeError("boom"), paid]
    watcher = _watcher(orders, pending_order)

    watcher.start()
    assert await asyncio.wait_for(watcher.wait(), timeout=2) == WatchOutcome.SETTLED
    assert watcher.attempts == 3


@pytest.mark.asyncio
async def test_gives_up_silently_after_max_attempts(pending_order):
    orders = AsyncMock()
    orders.get_order.return_value = pending_order
    watcher = _watcher(orders, pending_order, max_attempts=4)

    watcher.start()
    assert await asyncio.wait_for(watcher.wait(), timeout=2) == WatchOutcome.TIMED_OUT
    assert watcher.attempts == 4
    assert orders.get_order.await_count == 4
    assert watcher.navigator.navigations == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["failed", "refunded", "rejected"])
async def test_rejected_payment_stops_without_navigation(pending_order, status):
    orders = AsyncMock()
    orders.get_order.return_value = _with_status(pending_order, status)
    watcher = _watcher(orders, pending_order)

    watcher.start()
    assert await asyncio.wait_for(watcher.wait(), timeout=2) == WatchOutcome.FAILED
    assert watcher.attempts == 1
    assert watcher.navigator.navigations == []


@pytest.mark.asyncio
async def test_stop_before_first_tick_never_polls(pending_order):
    orders = AsyncMock()
    watcher = _watcher(orders, pending_order, interval=0.05)

    watcher.start()
    watcher.stop()
    assert await watcher.wait() == WatchOutcome.CANCELLED
    await asyncio.sleep(0.1)
    orders.get_order.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_tick_runs_after_stop(pending_order):
    orders = AsyncMock()
    orders.get_order.return_value = pending_order
    watcher = _watcher(orders, pending_order, max_attempts=1000)

    watcher.start()
    await asyncio.sleep(0.05)
    watcher.stop()
    await watcher.wait()
    ticks = orders.get_order.await_count
    await asyncio.sleep(0.05)

    assert orders.get_order.await_count == ticks
    assert watcher.attempts == ticks
    assert watcher.outcome == WatchOutcome.CANCELLED


@pytest.mark.asyncio
async def test_stop_is_idempotent_and_blocks_restart(pending_order):
    orders = AsyncMock()
    watcher = _watcher(orders, pending_order)

    watcher.stop()
    watcher.cancel()
    watcher.start()
    assert not watcher.running
    assert await watcher.wait() == WatchOutcome.CANCELLED
    assert watcher.snapshot()["outcome"] == "cancelled"
