"""
Payment state machine.

Translates the settlement service's self-reported on-chain state into a
typed PaymentState and decides which lifecycle signals a change produces.
The service is the source of truth: the machine never invents or rejects a
transition, it only detects change.
"""

from __future__ import annotations

from dataclasses import dataclass

from paylock.core.logging import get_logger
from paylock.core.types import PaymentState, Signal

logger = get_logger("state_machine")

# Forward edges of the escrow lifecycle. Anything else is a correction.
_FORWARD: dict[PaymentState, frozenset[PaymentState]] = {
    PaymentState.CREATED: frozenset(
        {PaymentState.AWAITING_EXTERNAL_ACTION, PaymentState.FUNDS_LOCKED}
    ),
    PaymentState.AWAITING_EXTERNAL_ACTION: frozenset(
        {PaymentState.FUNDS_LOCKED, PaymentState.FUNDS_OR_DATUM_INVALID}
    ),
    PaymentState.FUNDS_LOCKED: frozenset(
        {
            PaymentState.RESULT_SUBMITTED,
            PaymentState.REFUND_REQUESTED,
            PaymentState.FUNDS_OR_DATUM_INVALID,
        }
    ),
    PaymentState.RESULT_SUBMITTED: frozenset(
        {PaymentState.WITHDRAWN, PaymentState.REFUND_REQUESTED}
    ),
    PaymentState.REFUND_REQUESTED: frozenset(
        {PaymentState.REFUND_AUTHORIZED, PaymentState.DISPUTED, PaymentState.RESULT_SUBMITTED}
    ),
    PaymentState.REFUND_AUTHORIZED: frozenset({PaymentState.REFUND_WITHDRAWN}),
    PaymentState.DISPUTED: frozenset({PaymentState.DISPUTED_WITHDRAWN}),
    PaymentState.FUNDS_OR_DATUM_INVALID: frozenset(),
    PaymentState.WITHDRAWN: frozenset(),
    PaymentState.REFUND_WITHDRAWN: frozenset(),
    PaymentState.DISPUTED_WITHDRAWN: frozenset(),
}

# Signal emitted on entry into a state, on top of STATE_CHANGED
_ENTRY_SIGNALS: dict[PaymentState, Signal] = {
    PaymentState.FUNDS_LOCKED: Signal.FUNDS_LOCKED,
    PaymentState.RESULT_SUBMITTED: Signal.RESULT_SUBMITTED,
    PaymentState.WITHDRAWN: Signal.COMPLETED,
    PaymentState.REFUND_AUTHORIZED: Signal.REFUND_AUTHORIZED,
    PaymentState.REFUND_WITHDRAWN: Signal.REFUNDED,
    PaymentState.DISPUTED_WITHDRAWN: Signal.REFUNDED,
}


@dataclass(frozen=True)
class Transition:
    """Outcome of feeding one report through the machine."""

    previous_state: PaymentState | None
    new_state: PaymentState
    signals: tuple[Signal, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.signals)


def is_legal(current: PaymentState, new: PaymentState) -> bool:
    """True if ``current -> new`` follows the forward escrow graph."""
    if current == new:
        return True
    # Created and awaiting-external-action are the same no-funds phase
    if {current, new} <= {PaymentState.CREATED, PaymentState.AWAITING_EXTERNAL_ACTION}:
        return True
    return new in _FORWARD[current]


def signals_for(new_state: PaymentState) -> tuple[Signal, ...]:
    """Signals produced when a payment enters ``new_state``."""
    entry = _ENTRY_SIGNALS.get(new_state)
    if entry is None:
        return (Signal.STATE_CHANGED,)
    return (Signal.STATE_CHANGED, entry)


def next_state(current: PaymentState | None, reported: str | PaymentState | None) -> Transition:
    """
    Compute the transition for a reported on-chain state.

    Args:
        current: State we last observed, or None for a payment we never tracked
        reported: Raw ``onChainState`` string (or an already mapped state)

    Returns:
        Transition whose new_state is always the mapped report. Signals are
        produced if and only if the report differs from ``current``.

    Raises:
        ValidationError: If ``reported`` is not a known state name
    """
    new = reported if isinstance(reported, PaymentState) else PaymentState.from_remote(reported)

    if current is not None and new == current:
        return Transition(previous_state=current, new_state=new)

    if current is not None and not is_legal(current, new):
        # Trust the latest report, e.g. Withdrawn corrected to RefundWithdrawn
        logger.warning(f"Out-of-order report adopted: {current.value} -> {new.value}")

    return Transition(previous_state=current, new_state=new, signals=signals_for(new))
