"""Unit tests for background payment monitoring."""

import asyncio

import pytest

from conftest import make_record
from paylock.core.exceptions import RequestError, RequestErrorKind
from paylock.core.types import PaymentRequest, PaymentState, Signal


def resolve_by_id(states: dict, failing: set = frozenset()):
    """side_effect for settlement.post that answers per blockchain identifier."""

    async def post(path, payload):
        pid = payload["blockchainIdentifier"]
        if pid in failing:
            raise RequestError(f"{pid} unavailable", kind=RequestErrorKind.SERVER, attempts=3)
        return make_record(pid, states[pid])

    return post


class TestMonitorPass:
    """Tests for a single monitoring pass."""

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, coordinator, settlement, recorder) -> None:
        for pid in ("bc-a", "bc-b", "bc-c"):
            await coordinator.track(PaymentRequest(pid, "buyer-123"))
        settlement.post.side_effect = resolve_by_id(
            {"bc-a": "FundsLocked", "bc-c": "FundsLocked"}, failing={"bc-b"}
        )

        refreshed = await coordinator.run_monitor_pass()

        assert refreshed == 2
        assert coordinator.get("bc-a").state == PaymentState.FUNDS_LOCKED
        assert coordinator.get("bc-b").state == PaymentState.CREATED
        assert coordinator.get("bc-c").state == PaymentState.FUNDS_LOCKED

        errors = [e for e in recorder if e.signal == Signal.MONITOR_ERROR]
        assert len(errors) == 1
        assert errors[0].blockchain_identifier == "bc-b"
        assert isinstance(errors[0].error, RequestError)
        assert errors[0].previous_state == PaymentState.CREATED

        locked = [e.blockchain_identifier for e in recorder if e.signal == Signal.FUNDS_LOCKED]
        assert locked == ["bc-a", "bc-c"]

    @pytest.mark.asyncio
    async def test_terminal_payments_are_skipped(self, coordinator, settlement) -> None:
        await coordinator.track(PaymentRequest("bc-done", "p", state=PaymentState.WITHDRAWN))
        await coordinator.track(PaymentRequest("bc-open", "p", state=PaymentState.FUNDS_LOCKED))
        settlement.post.side_effect = resolve_by_id({"bc-open": "FundsLocked"})

        refreshed = await coordinator.run_monitor_pass()

        assert refreshed == 1
        polled = [c.args[1]["blockchainIdentifier"] for c in settlement.post.call_args_list]
        assert polled == ["bc-open"]

    @pytest.mark.asyncio
    async def test_unknown_state_reported_as_monitor_error(self, coordinator, settlement, recorder) -> None:
        await coordinator.track(PaymentRequest("bc-1", "p", state=PaymentState.FUNDS_LOCKED))
        settlement.post.return_value = make_record("bc-1", "SomethingNew")

        refreshed = await coordinator.run_monitor_pass()

        assert refreshed == 0
        assert [e.signal for e in recorder] == [Signal.MONITOR_ERROR]
        assert coordinator.get("bc-1").state == PaymentState.FUNDS_LOCKED

    @pytest.mark.asyncio
    async def test_empty_index(self, coordinator, settlement) -> None:
        assert await coordinator.run_monitor_pass() == 0
        settlement.post.assert_not_called()


class TestMonitorLifecycle:
    """Tests for starting and stopping the monitor task."""

    @pytest.mark.asyncio
    async def test_start_polls_until_stopped(self, coordinator, settlement, recorder) -> None:
        await coordinator.track(PaymentRequest("bc-1", "buyer-123"))
        settlement.post.return_value = make_record("bc-1", "FundsLocked")

        coordinator.start_monitoring(0.01)
        assert coordinator.is_monitoring
        await asyncio.sleep(0.1)
        coordinator.stop_monitoring()
        await coordinator.wait_stopped()

        assert not coordinator.is_monitoring
        assert settlement.post.await_count >= 1
        # Signals fire on change only, however many passes ran
        assert [e.signal for e in recorder] == [Signal.STATE_CHANGED, Signal.FUNDS_LOCKED]

    @pytest.mark.asyncio
    async def test_second_start_is_ignored(self, coordinator) -> None:
        coordinator.start_monitoring(10)
        first_task = coordinator._monitor_task

        coordinator.start_monitoring(10)

        assert coordinator._monitor_task is first_task
        coordinator.stop_monitoring()
        await coordinator.wait_stopped()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, coordinator) -> None:
        coordinator.stop_monitoring()

        coordinator.start_monitoring(10)
        coordinator.stop_monitoring()
        coordinator.stop_monitoring()
        await coordinator.wait_stopped()

        assert not coordinator.is_monitoring

    @pytest.mark.asyncio
    async def test_stop_does_not_interrupt_inflight_pass(self, coordinator, settlement) -> None:
        await coordinator.track(PaymentRequest("bc-1", "buyer-123"))
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_resolve(path, payload):
            started.set()
            await release.wait()
            return make_record("bc-1", "FundsLocked")

        settlement.post.side_effect = slow_resolve

        coordinator.start_monitoring(0.01)
        await asyncio.wait_for(started.wait(), timeout=1)
        coordinator.stop_monitoring()
        release.set()
        await coordinator.wait_stopped()

        assert coordinator.get("bc-1").state == PaymentState.FUNDS_LOCKED
        assert settlement.post.await_count == 1

    @pytest.mark.asyncio
    async def test_invalid_interval(self, coordinator) -> None:
        from paylock.core.exceptions import ValidationError

        with pytest.raises(ValidationError):
            coordinator.start_monitoring(0)
        assert not coordinator.is_monitoring

    @pytest.mark.asyncio
    async def test_close_stops_monitor_and_drops_handlers(self, coordinator, settlement, recorder) -> None:
        coordinator.start_monitoring(10)

        await coordinator.close()

        assert not coordinator.is_monitoring
        settlement.post.return_value = make_record("bc-1", "FundsLocked")
        await coordinator.refresh("bc-1")
        assert recorder == []
