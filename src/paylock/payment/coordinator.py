"""
PaymentCoordinator - Owns and advances the lifecycle of tracked payments.

The coordinator is the only writer of its payment index. Every mutation,
including the settlement-service call that produces it, runs under a single
asyncio lock, so two callers can never advance the same payment at once.
Lifecycle events are queued while the lock is held and delivered after it
is released, which keeps each payment's event sequence in the order its
state changed while still letting handlers call back into the coordinator.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from paylock.core.api_client import SettlementClient
from paylock.core.config import Config
from paylock.core.exceptions import (
    ConfigurationError,
    NotTrackedError,
    PaymentTimeoutError,
    ValidationError,
)
from paylock.core.logging import get_logger
from paylock.core.types import (
    CreatePaymentParams,
    LifecycleEvent,
    PaymentPage,
    PaymentRequest,
    PaymentState,
    Signal,
    format_timestamp,
)
from paylock.hashing import decision_hash, hash_input, hash_output
from paylock.payment.state_machine import Transition, next_state

EventHandler = Callable[[LifecycleEvent], Awaitable[None] | None]

PAYMENT_PATH = "/payment"
RESOLVE_PATH = "/payment/resolve-blockchain-identifier"
SUBMIT_RESULT_PATH = "/payment/submit-result"
AUTHORIZE_REFUND_PATH = "/payment/authorize-refund"

PAYMENT_TYPE = "Web3CardanoV1"


class PaymentCoordinator:
    """
    Tracks escrow payments and turns polled reports into lifecycle events.

    Example:
        >>> coordinator = PaymentCoordinator(config, client)
        >>> coordinator.subscribe(Signal.FUNDS_LOCKED, start_work)
        >>> payment = await coordinator.create(
        ...     CreatePaymentParams(purchaser_identifier="buyer-123", input_data={"q": "x"})
        ... )
        >>> coordinator.start_monitoring(30)
    """

    def __init__(
        self,
        config: Config,
        client: SettlementClient,
        handlers: Mapping[Signal, Iterable[EventHandler]] | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._logger = get_logger("coordinator")

        self._payments: dict[str, PaymentRequest] = {}
        self._lock = asyncio.Lock()

        self._subscribers: dict[Signal, list[EventHandler]] = {signal: [] for signal in Signal}
        for signal, signal_handlers in (handlers or {}).items():
            for handler in signal_handlers:
                self.subscribe(signal, handler)

        self._pending_events: deque[LifecycleEvent] = deque()
        self._dispatching = False

        self._monitor_task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    def update_config(self, config: Config) -> None:
        """Swap configuration, e.g. after registration assigned an agent identifier."""
        if config.network != self._config.network:
            raise ConfigurationError("Coordinator network cannot change after construction")
        self._config = config

    # ==================== Subscription ====================

    def subscribe(self, signal: Signal, handler: EventHandler) -> None:
        """Register a sync or async handler for one signal."""
        self._subscribers[Signal(signal)].append(handler)

    def unsubscribe(self, signal: Signal, handler: EventHandler) -> bool:
        handlers = self._subscribers[Signal(signal)]
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def _queue(self, event: LifecycleEvent) -> None:
        self._pending_events.append(event)

    def _queue_transition(
        self,
        payment: PaymentRequest,
        transition: Transition,
        skip: Iterable[Signal] = (),
    ) -> None:
        skipped = set(skip)
        for signal in transition.signals:
            if signal in skipped:
                continue
            self._queue(
                LifecycleEvent(
                    signal=signal,
                    blockchain_identifier=payment.blockchain_identifier,
                    previous_state=transition.previous_state,
                    new_state=transition.new_state,
                    payment=payment,
                )
            )

    async def _dispatch_pending(self) -> None:
        """Deliver queued events in FIFO order; re-entrant calls leave it to the active drain."""
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending_events:
                event = self._pending_events.popleft()
                for handler in list(self._subscribers[event.signal]):
                    try:
                        result = handler(event)
                        if inspect.isawaitable(result):
                            await result
                    except Exception:
                        self._logger.exception(
                            f"Handler for {event.signal.value} failed "
                            f"(payment {event.blockchain_identifier})"
                        )
        finally:
            self._dispatching = False

    # ==================== Index access ====================

    def get(self, blockchain_identifier: str) -> PaymentRequest | None:
        """Get a tracked payment. Records are immutable, so no copy is needed."""
        return self._payments.get(blockchain_identifier)

    def snapshot(self) -> dict[str, PaymentRequest]:
        """Point-in-time copy of the index."""
        return dict(self._payments)

    def __len__(self) -> int:
        return len(self._payments)

    def __contains__(self, blockchain_identifier: object) -> bool:
        return blockchain_identifier in self._payments

    async def track(self, payment: PaymentRequest) -> None:
        """Adopt a payment created elsewhere (e.g. restored by the caller after a restart)."""
        async with self._lock:
            self._payments[payment.blockchain_identifier] = payment

    async def evict_completed(self) -> int:
        """
        Drop payments in a terminal state from the index.

        Returns:
            Number of payments removed
        """
        async with self._lock:
            finished = [pid for pid, p in self._payments.items() if p.is_terminal]
            for pid in finished:
                del self._payments[pid]
        if finished:
            self._logger.info(f"Evicted {len(finished)} completed payment(s)")
        return len(finished)

    # ==================== Lifecycle operations ====================

    @staticmethod
    def _merge(existing: PaymentRequest | None, reported: PaymentRequest) -> PaymentRequest:
        """Fold a fresh report into what we already know; local digests are never overwritten."""
        if existing is None:
            return reported
        return replace(
            reported,
            purchaser_identifier=existing.purchaser_identifier or reported.purchaser_identifier,
            input_digest=existing.input_digest or reported.input_digest,
            result_digest=existing.result_digest,
        )

    def _apply_report(
        self,
        data: Any,
        already_announced: Iterable[Signal] = (),
    ) -> tuple[PaymentRequest, Transition]:
        """Run a settlement record through the state machine and store the result. Lock must be held."""
        reported = PaymentRequest.from_api_response(data)
        existing = self._payments.get(reported.blockchain_identifier)
        transition = next_state(existing.state if existing else None, reported.state)

        payment = replace(self._merge(existing, reported), state=transition.new_state)
        self._payments[payment.blockchain_identifier] = payment

        skip = set(already_announced)
        if existing is not None and existing.result_digest is not None:
            # submit_result() already announced the result
            skip.add(Signal.RESULT_SUBMITTED)
        self._queue_transition(payment, transition, skip=skip)

        if transition.changed:
            self._logger.info(
                f"Payment {payment.blockchain_identifier}: "
                f"{transition.previous_state.value if transition.previous_state else 'untracked'}"
                f" -> {transition.new_state.value}"
            )
        return payment, transition

    async def create(self, params: CreatePaymentParams) -> PaymentRequest:
        """
        Create a payment request on the settlement service and start tracking it.

        Args:
            params: Purchaser identifier, optional input data, deadlines, metadata

        Returns:
            The tracked PaymentRequest

        Raises:
            ConfigurationError: If no agent identifier is configured
            ValidationError: If the input data cannot be canonically hashed
            RequestError: If the settlement service call fails
        """
        if not self._config.agent_identifier:
            raise ConfigurationError(
                "agent_identifier not configured. Register the agent first or "
                "set agent_identifier in config."
            )

        input_digest = None
        if params.input_data is not None:
            input_digest = hash_input(params.purchaser_identifier, params.input_data)

        now = datetime.now(timezone.utc)
        pay_by = params.pay_by_time or now + timedelta(seconds=self._config.pay_by_window)
        submit_by = params.submit_result_time or now + timedelta(
            seconds=self._config.submit_result_window
        )

        payload: dict[str, Any] = {
            "agentIdentifier": self._config.agent_identifier,
            "network": self._config.network.value,
            "paymentType": PAYMENT_TYPE,
            "payByTime": format_timestamp(pay_by),
            "submitResultTime": format_timestamp(submit_by),
            "identifierFromPurchaser": params.purchaser_identifier,
        }
        if input_digest:
            payload["inputHash"] = input_digest
        if params.metadata:
            payload["metadata"] = params.metadata

        self._logger.info(
            f"Creating payment request (agent={self._config.agent_identifier}, "
            f"network={self._config.network.value}, purchaser={params.purchaser_identifier})"
        )

        async with self._lock:
            data = await self._client.post(PAYMENT_PATH, payload)
            reported = PaymentRequest.from_api_response(data)
            payment = replace(
                reported,
                purchaser_identifier=params.purchaser_identifier,
                input_digest=input_digest or reported.input_digest,
            )
            self._payments[payment.blockchain_identifier] = payment
            self._queue(
                LifecycleEvent(
                    signal=Signal.CREATED,
                    blockchain_identifier=payment.blockchain_identifier,
                    previous_state=None,
                    new_state=payment.state,
                    payment=payment,
                )
            )

        self._logger.info(f"Payment request created: {payment.blockchain_identifier}")
        await self._dispatch_pending()
        return payment

    async def refresh(self, blockchain_identifier: str, strict: bool = False) -> PaymentRequest:
        """
        Resolve the current remote state of a payment and advance it.

        Untracked identifiers are resolved blindly and adopted into the index
        unless ``strict`` is set.

        Raises:
            NotTrackedError: If ``strict`` and the payment is not tracked
            ValidationError: If the service reports an unknown state
            RequestError: If the settlement service call fails
        """
        async with self._lock:
            if strict and blockchain_identifier not in self._payments:
                raise NotTrackedError(blockchain_identifier)
            data = await self._client.post(
                RESOLVE_PATH,
                {
                    "blockchainIdentifier": blockchain_identifier,
                    "network": self._config.network.value,
                },
            )
            payment, _ = self._apply_report(data)

        await self._dispatch_pending()
        return payment

    async def submit_result(self, blockchain_identifier: str, output_payload: str) -> PaymentRequest:
        """
        Bind the work output to the payment and submit the decision hash.

        Args:
            blockchain_identifier: Tracked payment
            output_payload: Serialized work output, hashed byte-for-byte

        Raises:
            NotTrackedError: If the payment is not tracked (purchaser id unknown)
            ValidationError: If a different result was already bound
            RequestError: If the settlement service call fails
        """
        async with self._lock:
            existing = self._payments.get(blockchain_identifier)
            if existing is None:
                raise NotTrackedError(blockchain_identifier)

            output_digest = hash_output(existing.purchaser_identifier, output_payload)
            if existing.result_digest is not None and existing.result_digest != output_digest:
                raise ValidationError(
                    "A different result is already bound to this payment",
                    details={
                        "blockchain_identifier": blockchain_identifier,
                        "result_digest": existing.result_digest,
                    },
                )
            submit_hash = decision_hash(existing.input_digest, output_digest)

            self._logger.info(f"Submitting result for {blockchain_identifier}")
            data = await self._client.post(
                SUBMIT_RESULT_PATH,
                {
                    "blockchainIdentifier": blockchain_identifier,
                    "network": self._config.network.value,
                    "submitResultHash": submit_hash,
                },
            )

            reported = PaymentRequest.from_api_response(data)
            transition = next_state(existing.state, reported.state)
            payment = replace(
                self._merge(existing, reported),
                state=transition.new_state,
                result_digest=output_digest,
            )
            self._payments[blockchain_identifier] = payment
            self._queue_transition(payment, transition, skip=(Signal.RESULT_SUBMITTED,))
            self._queue(
                LifecycleEvent(
                    signal=Signal.RESULT_SUBMITTED,
                    blockchain_identifier=blockchain_identifier,
                    previous_state=existing.state,
                    new_state=payment.state,
                    payment=payment,
                    result_hash=submit_hash,
                )
            )

        next_action = payment.next_action.requested_action if payment.next_action else None
        self._logger.info(f"Result submitted for {blockchain_identifier} (next action: {next_action})")
        await self._dispatch_pending()
        return payment

    async def authorize_refund(self, blockchain_identifier: str) -> PaymentRequest:
        """
        Authorize a refund, e.g. when the work cannot be completed.

        Raises:
            RequestError: If the settlement service call fails
        """
        self._logger.info(f"Authorizing refund for {blockchain_identifier}")
        async with self._lock:
            data = await self._client.post(
                AUTHORIZE_REFUND_PATH,
                {
                    "blockchainIdentifier": blockchain_identifier,
                    "network": self._config.network.value,
                },
            )
            payment, transition = self._apply_report(data, already_announced=(Signal.REFUND_AUTHORIZED,))
            self._queue(
                LifecycleEvent(
                    signal=Signal.REFUND_AUTHORIZED,
                    blockchain_identifier=blockchain_identifier,
                    previous_state=transition.previous_state,
                    new_state=payment.state,
                    payment=payment,
                )
            )

        await self._dispatch_pending()
        return payment

    async def list_payments(
        self,
        limit: int = 10,
        cursor_id: str | None = None,
        filter_smart_contract_address: str | None = None,
    ) -> PaymentPage:
        """
        List payments known to the settlement service. Does not touch the index.

        Args:
            limit: Page size
            cursor_id: Cursor returned by a previous page
            filter_smart_contract_address: Only payments held by this escrow contract
        """
        if limit < 1:
            raise ValidationError("limit must be positive")
        data = await self._client.get(
            PAYMENT_PATH,
            params={
                "network": self._config.network.value,
                "limit": limit,
                "cursorId": cursor_id,
                "filterSmartContractAddress": filter_smart_contract_address,
            },
        )
        records = data.get("Payments", []) if isinstance(data, dict) else list(data or [])
        payments = [PaymentRequest.from_api_response(record) for record in records]

        next_cursor = data.get("nextCursorId") if isinstance(data, dict) else None
        if next_cursor is None and len(payments) == limit:
            next_cursor = payments[-1].id
        return PaymentPage(payments=payments, next_cursor_id=next_cursor)

    async def wait_for_state(
        self,
        blockchain_identifier: str,
        targets: Iterable[PaymentState],
        timeout: float = 300.0,
        interval: float = 5.0,
    ) -> PaymentRequest:
        """
        Poll until a payment reaches one of ``targets`` or any terminal state.

        Refund and dispute outcomes are returned like any other terminal state;
        inspect ``payment.state`` to tell them apart.

        Raises:
            PaymentTimeoutError: If neither happens within ``timeout`` seconds
        """
        wanted = frozenset(targets)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            payment = await self.refresh(blockchain_identifier)
            if payment.state in wanted or payment.is_terminal:
                return payment
            if loop.time() + interval > deadline:
                raise PaymentTimeoutError(
                    f"Payment {blockchain_identifier} did not reach "
                    f"{sorted(s.value for s in wanted)} within {timeout}s",
                    blockchain_identifier=blockchain_identifier,
                    last_state=payment.state.value,
                    timeout_seconds=timeout,
                )
            await asyncio.sleep(interval)

    # ==================== Monitoring ====================

    @property
    def is_monitoring(self) -> bool:
        return (
            self._monitor_task is not None
            and not self._monitor_task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    def start_monitoring(self, interval: float | None = None) -> None:
        """
        Poll every non-terminal payment each ``interval`` seconds.

        Must be called from within a running event loop. A pass always
        completes before the next one is scheduled.
        """
        if self.is_monitoring:
            self._logger.warning("Payment monitoring already running")
            return

        interval = interval if interval is not None else self._config.monitor_interval
        if interval <= 0:
            raise ValidationError("Monitoring interval must be positive")

        self._stop_event = asyncio.Event()
        self._monitor_task = asyncio.create_task(self._monitor_loop(interval, self._stop_event))
        self._logger.info(f"Payment monitoring started (interval={interval}s)")

    def stop_monitoring(self) -> None:
        """Cancel future ticks. An in-flight pass runs to completion. Safe to call repeatedly."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        self._stop_event.set()
        self._logger.info("Payment monitoring stopped")

    async def wait_stopped(self) -> None:
        """Wait for the monitor task to finish after stop_monitoring()."""
        if self._monitor_task is not None:
            await self._monitor_task
            self._monitor_task = None

    async def _monitor_loop(self, interval: float, stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self.run_monitor_pass()

    async def run_monitor_pass(self) -> int:
        """
        Refresh every non-terminal payment once.

        A failure on one payment is reported as a MONITOR_ERROR event and
        the pass continues with the rest.

        Returns:
            Number of payments refreshed successfully
        """
        pending = [pid for pid, p in self._payments.items() if not p.is_terminal]
        refreshed = 0
        for pid in pending:
            try:
                await self.refresh(pid)
                refreshed += 1
            except Exception as e:
                self._logger.error(f"Payment status check failed for {pid}: {e}")
                payment = self._payments.get(pid)
                self._queue(
                    LifecycleEvent(
                        signal=Signal.MONITOR_ERROR,
                        blockchain_identifier=pid,
                        previous_state=payment.state if payment else None,
                        new_state=payment.state if payment else None,
                        payment=payment,
                        error=e,
                    )
                )
                await self._dispatch_pending()
        return refreshed

    async def close(self) -> None:
        """Stop monitoring and drop all subscribers. Tracked payments are kept."""
        self.stop_monitoring()
        await self.wait_stopped()
        for handlers in self._subscribers.values():
            handlers.clear()
        self._logger.info("PaymentCoordinator closed")
