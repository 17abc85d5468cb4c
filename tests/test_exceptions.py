"""Unit tests for exceptions module."""

import pytest

from paylock.core.exceptions import (
    ConfigurationError,
    CredentialNotFoundError,
    DecryptionError,
    NotTrackedError,
    PaylockError,
    PaymentTimeoutError,
    RequestError,
    RequestErrorKind,
    ValidationError,
    VaultError,
)


class TestPaylockError:
    """Tests for base exception."""

    def test_basic_error(self) -> None:
        error = PaylockError("Something went wrong")

        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details == {}

    def test_error_with_details(self) -> None:
        error = PaylockError("Bad record", details={"field": "blockchainIdentifier"})

        assert "Bad record" in str(error)
        assert "Details:" in str(error)
        assert error.details["field"] == "blockchainIdentifier"

    @pytest.mark.parametrize(
        "error",
        [
            ConfigurationError("x"),
            ValidationError("x"),
            RequestError("x", kind=RequestErrorKind.SERVER),
            NotTrackedError("bc-1"),
            PaymentTimeoutError("x", blockchain_identifier="bc-1", last_state="FundsLocked", timeout_seconds=1),
            DecryptionError("x"),
            CredentialNotFoundError("x"),
        ],
    )
    def test_is_catchable_as_base_type(self, error) -> None:
        with pytest.raises(PaylockError):
            raise error


class TestRequestError:
    """Tests for RequestError classification."""

    def test_client_errors_are_final(self) -> None:
        error = RequestError("not found", kind=RequestErrorKind.CLIENT, status_code=404)

        assert not error.is_retryable()
        assert str(error) == "[client] not found"

    @pytest.mark.parametrize(
        "kind", [RequestErrorKind.SERVER, RequestErrorKind.TRANSPORT, RequestErrorKind.TIMEOUT]
    )
    def test_other_kinds_are_retryable(self, kind) -> None:
        assert RequestError("x", kind=kind).is_retryable()

    def test_rate_limited(self) -> None:
        error = RequestError("slow down", kind=RequestErrorKind.CLIENT, status_code=429)

        assert error.is_rate_limited()
        assert error.attempts == 1


class TestLifecycleErrors:
    def test_not_tracked(self) -> None:
        error = NotTrackedError("bc-9")

        assert error.blockchain_identifier == "bc-9"
        assert "bc-9" in str(error)

    def test_payment_timeout(self) -> None:
        error = PaymentTimeoutError(
            "still waiting",
            blockchain_identifier="bc-1",
            last_state="WaitingForExternalAction",
            timeout_seconds=30,
        )

        assert error.last_state == "WaitingForExternalAction"
        assert error.timeout_seconds == 30


class TestVaultErrors:
    def test_hierarchy(self) -> None:
        assert issubclass(DecryptionError, VaultError)
        assert issubclass(CredentialNotFoundError, VaultError)

    def test_context(self) -> None:
        error = CredentialNotFoundError("missing", owner_identifier="agent-1", network="Preprod")

        assert error.owner_identifier == "agent-1"
        assert error.network == "Preprod"
