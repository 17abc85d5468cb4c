"""
Tests for the settlement REST client.

Uses httpx.MockTransport so requests never leave the process.
"""

import asyncio
import json

import httpx
import pytest

from paylock.core.api_client import Envelope, SettlementClient
from paylock.core.exceptions import RequestError, RequestErrorKind, ValidationError
from paylock.resilience.retry import RetryPolicy

BASE_URL = "http://settlement.test/api/v1"


class SleepRecorder:
    """Stands in for asyncio.sleep so backoff is instant but observable."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(handler, max_attempts=3, initial_delay=0.5, timeout=30.0, **kwargs):
    sleeper = SleepRecorder()
    client = SettlementClient(
        BASE_URL,
        api_key="secret-token-123456",
        timeout=timeout,
        retry_policy=RetryPolicy(
            max_attempts=max_attempts, initial_delay=initial_delay, sleep=sleeper
        ),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )
    return client, sleeper


def ok(data):
    return httpx.Response(200, json={"status": "success", "data": data})


class TestEnvelope:
    def test_parse(self) -> None:
        envelope = Envelope.parse({"status": "success", "data": {"a": 1}})
        assert envelope.status == "success"
        assert envelope.data == {"a": 1}

    def test_rejects_bare_object(self) -> None:
        with pytest.raises(ValidationError, match="envelope"):
            Envelope.parse({"blockchainIdentifier": "bc-1"})

    def test_rejects_non_object(self) -> None:
        with pytest.raises(ValidationError):
            Envelope.parse(["data"])


class TestSend:
    @pytest.mark.asyncio
    async def test_unwraps_data_and_sends_auth(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"blockchainIdentifier": "bc-1"})

        client, _ = make_client(handler)
        data = await client.post("/payment", {"network": "Preprod"})
        await client.close()

        assert data == {"blockchainIdentifier": "bc-1"}
        request = seen[0]
        assert str(request.url) == f"{BASE_URL}/payment"
        assert request.headers["token"] == "secret-token-123456"
        assert request.headers["content-type"] == "application/json"
        assert json.loads(request.content) == {"network": "Preprod"}

    @pytest.mark.asyncio
    async def test_get_without_body_has_no_content_type(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({"Payments": []})

        client, _ = make_client(handler)
        await client.get("/payment", params={"network": "Preprod", "limit": 10, "cursorId": None})
        await client.close()

        request = seen[0]
        assert "content-type" not in request.headers
        assert request.url.params["network"] == "Preprod"
        assert request.url.params["limit"] == "10"
        assert "cursorId" not in request.url.params

    @pytest.mark.asyncio
    async def test_extra_and_rotated_headers(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return ok({})

        client, _ = make_client(handler, headers={"X-Seller-Vkey": "vkey-1"})
        await client.post("/payment/resolve-blockchain-identifier", {})
        client.update_headers(token="rotated-token-654321")
        await client.post("/payment/resolve-blockchain-identifier", {})
        await client.close()

        assert seen[0].headers["x-seller-vkey"] == "vkey-1"
        assert seen[0].headers["token"] == "secret-token-123456"
        assert seen[1].headers["token"] == "rotated-token-654321"
        assert client.headers["token"] == "rotated-token-654321"

    @pytest.mark.asyncio
    async def test_non_envelope_body_is_validation_error(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"blockchainIdentifier": "bc-1"})

        client, _ = make_client(handler)
        with pytest.raises(ValidationError):
            await client.post("/payment", {})
        await client.close()

        assert len(calls) == 1


class TestClassificationAndRetry:
    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404, text="payment not found")

        client, sleeper = make_client(handler)
        with pytest.raises(RequestError) as exc_info:
            await client.post("/payment/submit-result", {})
        await client.close()

        err = exc_info.value
        assert err.kind == RequestErrorKind.CLIENT
        assert err.status_code == 404
        assert err.response_body == "payment not found"
        assert err.is_retryable() is False
        assert len(calls) == 1
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_server_error_retry_bound(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client, sleeper = make_client(handler, max_attempts=4, initial_delay=0.5)
        with pytest.raises(RequestError) as exc_info:
            await client.post("/payment", {})
        await client.close()

        assert exc_info.value.kind == RequestErrorKind.SERVER
        assert exc_info.value.attempts == 4
        assert len(calls) == 4
        # No delay before the first attempt, then initial_delay * 2^n
        assert sleeper.delays == [0.5, 1.0, 2.0]
        assert sum(sleeper.delays) == 0.5 * (2**0 + 2**1 + 2**2)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self) -> None:
        responses = iter([httpx.Response(500), httpx.Response(502), ok({"ok": True})])

        client, sleeper = make_client(lambda request: next(responses))
        data = await client.post("/payment", {})
        await client.close()

        assert data == {"ok": True}
        assert sleeper.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = make_client(handler, max_attempts=2)
        with pytest.raises(RequestError) as exc_info:
            await client.post("/payment", {})
        await client.close()

        assert exc_info.value.kind == RequestErrorKind.TRANSPORT
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_deadline_becomes_timeout(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1.0)
            return ok({})

        client, _ = make_client(handler, max_attempts=1, timeout=0.05)
        with pytest.raises(RequestError) as exc_info:
            await client.post("/payment", {})
        await client.close()

        assert exc_info.value.kind == RequestErrorKind.TIMEOUT
        assert exc_info.value.is_retryable() is True

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self) -> None:
        attempts = []

        async def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(request)
            if len(attempts) == 1:
                await asyncio.sleep(1.0)
            return ok({"second": True})

        client, _ = make_client(handler, timeout=0.05)
        data = await client.post("/payment", {})
        await client.close()

        assert data == {"second": True}
        assert len(attempts) == 2
