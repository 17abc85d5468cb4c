"""
Type definitions for Paylock.

This module contains the enums, data classes and type definitions shared by
the request client, the state machine and the lifecycle coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from paylock.core.exceptions import ValidationError


class Network(str, Enum):
    """Cardano networks served by a settlement node."""

    PREPROD = "Preprod"
    MAINNET = "Mainnet"

    @classmethod
    def from_string(cls, value: str) -> Network:
        for member in cls:
            if member.value.lower() == value.strip().lower():
                return member
        raise ValueError(f"Unknown network: {value}. Supported: {[n.value for n in cls]}")

    def is_testnet(self) -> bool:
        return self == Network.PREPROD


class PaymentState(str, Enum):
    """Lifecycle state of an escrow payment, as reported by the settlement service."""

    CREATED = "Created"  # onChainState is null, nothing observed on-chain yet
    AWAITING_EXTERNAL_ACTION = "WaitingForExternalAction"
    FUNDS_LOCKED = "FundsLocked"
    RESULT_SUBMITTED = "ResultSubmitted"
    WITHDRAWN = "Withdrawn"
    REFUND_REQUESTED = "RefundRequested"
    REFUND_AUTHORIZED = "RefundAuthorized"
    REFUND_WITHDRAWN = "RefundWithdrawn"
    DISPUTED = "Disputed"
    DISPUTED_WITHDRAWN = "DisputedWithdrawn"
    FUNDS_OR_DATUM_INVALID = "FundsOrDatumInvalid"

    @classmethod
    def from_remote(cls, value: str | None) -> PaymentState:
        """
        Map a reported ``onChainState`` onto a PaymentState.

        Raises:
            ValidationError: If the service reports a state name we do not know
        """
        if value is None:
            return cls.CREATED
        state = _REMOTE_ALIASES.get(value)
        if state is None:
            raise ValidationError(
                f"Unknown on-chain state: {value!r}",
                details={"supported": sorted(_REMOTE_ALIASES)},
            )
        return state

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def has_funds(self) -> bool:
        """False while the purchaser has not paid yet."""
        return self not in (PaymentState.CREATED, PaymentState.AWAITING_EXTERNAL_ACTION)


TERMINAL_STATES = frozenset(
    {
        PaymentState.WITHDRAWN,
        PaymentState.REFUND_WITHDRAWN,
        PaymentState.DISPUTED_WITHDRAWN,
    }
)

_REMOTE_ALIASES: dict[str, PaymentState] = {state.value: state for state in PaymentState}
_REMOTE_ALIASES["AwaitingExternalAction"] = PaymentState.AWAITING_EXTERNAL_ACTION


class Signal(str, Enum):
    """Lifecycle signals delivered to subscribers."""

    CREATED = "created"
    STATE_CHANGED = "state_changed"
    FUNDS_LOCKED = "funds_locked"
    RESULT_SUBMITTED = "result_submitted"
    COMPLETED = "completed"
    REFUND_AUTHORIZED = "refund_authorized"
    REFUNDED = "refunded"
    MONITOR_ERROR = "monitor_error"


def parse_timestamp(value: str | int | float | datetime | None) -> datetime | None:
    """Parse an ISO-8601 string or a unix-millisecond value into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if value.isdigit():
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way the settlement service expects (UTC, Z suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class PaymentAmount:
    """An (amount, unit) pair. Amounts stay strings, the service owns their precision."""

    amount: str
    unit: str

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> PaymentAmount:
        return cls(amount=str(data.get("amount", "0")), unit=data.get("unit", ""))


@dataclass(frozen=True)
class NextAction:
    """Action the settlement service is waiting on for a payment."""

    requested_action: str
    error_type: str | None = None
    error_note: str | None = None
    result_hash: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> NextAction:
        return cls(
            requested_action=data.get("requestedAction", "None"),
            error_type=data.get("errorType"),
            error_note=data.get("errorNote"),
            result_hash=data.get("resultHash"),
        )


@dataclass(frozen=True)
class PaymentRequest:
    """
    One escrow payment tracked by the coordinator.

    Instances are immutable. The coordinator replaces the whole record on
    every observed change, so readers never see a half-updated payment.
    """

    blockchain_identifier: str
    purchaser_identifier: str
    state: PaymentState = PaymentState.CREATED
    agent_identifier: str | None = None
    id: str | None = None
    input_digest: str | None = None
    result_digest: str | None = None
    pay_by_deadline: datetime | None = None
    submit_by_deadline: datetime | None = None
    unlock_time: datetime | None = None
    external_dispute_unlock_time: datetime | None = None
    requested_funds: tuple[PaymentAmount, ...] = ()
    next_action: NextAction | None = None
    metadata: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def decision_hash(self) -> str | None:
        """input digest + result digest, once a result has been bound."""
        if self.result_digest is None:
            return None
        return (self.input_digest or "") + self.result_digest

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> PaymentRequest:
        """Build from the settlement service's camelCase payment record."""
        if not isinstance(data, dict) or not data.get("blockchainIdentifier"):
            raise ValidationError(
                "Payment record is missing blockchainIdentifier",
                details={"record": data if isinstance(data, dict) else repr(data)},
            )

        funds = data.get("RequestedFunds") or data.get("requestedFunds") or []
        next_action = data.get("NextAction")
        state = PaymentState.from_remote(data.get("onChainState"))

        try:
            return cls(
                blockchain_identifier=data["blockchainIdentifier"],
                purchaser_identifier=data.get("identifierFromPurchaser", ""),
                state=state,
                agent_identifier=data.get("agentIdentifier"),
                id=data.get("id"),
                input_digest=data.get("inputHash"),
                pay_by_deadline=parse_timestamp(data.get("payByTime")),
                submit_by_deadline=parse_timestamp(data.get("submitResultTime")),
                unlock_time=parse_timestamp(data.get("unlockTime")),
                external_dispute_unlock_time=parse_timestamp(data.get("externalDisputeUnlockTime")),
                requested_funds=tuple(PaymentAmount.from_api_response(f) for f in funds),
                next_action=NextAction.from_api_response(next_action) if next_action else None,
                metadata=data.get("metadata"),
                raw=dict(data),
            )
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(
                f"Malformed payment record {data['blockchainIdentifier']}: {e}",
                details={"record": data},
            ) from e

    def to_dict(self) -> dict[str, Any]:
        def iso(val: datetime | None) -> str | None:
            return val.isoformat() if val else None

        return {
            "blockchain_identifier": self.blockchain_identifier,
            "purchaser_identifier": self.purchaser_identifier,
            "state": self.state.value,
            "agent_identifier": self.agent_identifier,
            "id": self.id,
            "input_digest": self.input_digest,
            "result_digest": self.result_digest,
            "pay_by_deadline": iso(self.pay_by_deadline),
            "submit_by_deadline": iso(self.submit_by_deadline),
            "unlock_time": iso(self.unlock_time),
            "external_dispute_unlock_time": iso(self.external_dispute_unlock_time),
            "requested_funds": [
                {"amount": f.amount, "unit": f.unit} for f in self.requested_funds
            ],
            "next_action": self.next_action.requested_action if self.next_action else None,
            "metadata": self.metadata,
        }


@dataclass
class CreatePaymentParams:
    """Parameters for creating a payment request."""

    purchaser_identifier: str
    input_data: Any = None
    pay_by_time: datetime | None = None
    submit_result_time: datetime | None = None
    metadata: str | None = None

    def __post_init__(self) -> None:
        if not self.purchaser_identifier:
            raise ValidationError("purchaser_identifier is required")
        if (
            self.pay_by_time is not None
            and self.submit_result_time is not None
            and self.submit_result_time <= self.pay_by_time
        ):
            raise ValidationError(
                "submit_result_time must be later than pay_by_time",
                details={
                    "pay_by_time": self.pay_by_time.isoformat(),
                    "submit_result_time": self.submit_result_time.isoformat(),
                },
            )


@dataclass
class PaymentPage:
    """One page of the settlement service's payment listing."""

    payments: list[PaymentRequest]
    next_cursor_id: str | None = None


@dataclass(frozen=True)
class LifecycleEvent:
    """An observed lifecycle transition, delivered to subscribers and never persisted."""

    signal: Signal
    blockchain_identifier: str
    previous_state: PaymentState | None
    new_state: PaymentState | None
    payment: PaymentRequest | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result_hash: str | None = None
    error: BaseException | None = None
