"""
Exception hierarchy for Paylock.

All package-specific exceptions inherit from PaylockError for easy catching.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class PaylockError(Exception):
    """
    Base exception for all Paylock errors.

    Catch this to handle any payment-lifecycle exception.

    Example:
        >>> try:
        ...     await coordinator.submit_result(blockchain_id, output)
        ... except PaylockError as e:
        ...     print(f"Payment lifecycle error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(PaylockError):
    """
    Configuration is missing or invalid.

    Raised when:
    - The payment service URL or API key is not provided
    - No agent identifier is configured when creating a payment
    - The vault encryption key is missing or insecure
    """

    pass


class ValidationError(PaylockError):
    """
    Input validation error.

    Raised when:
    - An input payload cannot be canonically serialized
    - The settlement service reports an unknown on-chain state
    - A response body does not match the {status, data} envelope
    """

    pass


class RequestErrorKind(str, Enum):
    """Classification of a failed settlement-service call."""

    CLIENT = "client"  # 4xx, never retried
    SERVER = "server"  # 5xx
    TRANSPORT = "transport"  # connection refused, reset, DNS
    TIMEOUT = "timeout"  # local deadline exceeded


class RequestError(PaylockError):
    """
    Settlement service call failed.

    Raised by the request client only after its retry budget is exhausted,
    or immediately for client errors.
    """

    def __init__(
        self,
        message: str,
        kind: RequestErrorKind,
        status_code: int | None = None,
        url: str | None = None,
        attempts: int = 1,
        response_body: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.kind = kind
        self.status_code = status_code
        self.url = url
        self.attempts = attempts
        self.response_body = response_body

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"

    def is_retryable(self) -> bool:
        """Client errors are final, everything else may succeed on retry."""
        return self.kind != RequestErrorKind.CLIENT

    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class NotTrackedError(PaylockError):
    """An operation referenced a payment the coordinator does not track."""

    def __init__(self, blockchain_identifier: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            f"Payment not tracked: {blockchain_identifier}. "
            "Create it through this coordinator or refresh it first.",
            details,
        )
        self.blockchain_identifier = blockchain_identifier


class PaymentTimeoutError(PaylockError):
    """
    Timed out waiting for a payment to reach a target state.

    Raised when:
    - wait_for_state() polling exceeds its timeout
    """

    def __init__(
        self,
        message: str,
        blockchain_identifier: str,
        last_state: str,
        timeout_seconds: float,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.blockchain_identifier = blockchain_identifier
        self.last_state = last_state
        self.timeout_seconds = timeout_seconds


class VaultError(PaylockError):
    """Base exception for credential vault failures."""

    def __init__(
        self,
        message: str,
        owner_identifier: str | None = None,
        network: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.owner_identifier = owner_identifier
        self.network = network


class DecryptionError(VaultError):
    """
    Encrypted secret could not be authenticated.

    Raised when:
    - The AES-GCM authentication tag does not match (tampering or wrong key)
    - The stored blob is truncated or not valid base64
    """

    pass


class CredentialNotFoundError(VaultError):
    """No stored credential exists for an (owner, network) pair."""

    pass


class AgentNotFoundError(PaylockError):
    """The registry has no entry for an agent identifier on the configured network."""

    def __init__(self, agent_identifier: str, network: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(f"Agent not found: {agent_identifier} on {network}", details)
        self.agent_identifier = agent_identifier
        self.network = network
