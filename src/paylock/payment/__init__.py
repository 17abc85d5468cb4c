"""
Payment lifecycle: the state machine and the coordinator that drives it.
"""

from paylock.payment.coordinator import EventHandler, PaymentCoordinator
from paylock.payment.state_machine import Transition, is_legal, next_state, signals_for

__all__ = [
    "EventHandler",
    "PaymentCoordinator",
    "Transition",
    "is_legal",
    "next_state",
    "signals_for",
]
