"""
Settlement service REST client.

Thin async wrapper around httpx that attaches authentication headers,
classifies failures, retries transient ones and unwraps the service's
``{status, data}`` response envelope. It knows nothing about payments.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from paylock.core.exceptions import RequestError, RequestErrorKind, ValidationError
from paylock.core.logging import get_logger, mask_secret
from paylock.resilience.retry import RetryPolicy, execute_with_retry

AUTH_HEADER = "token"
SELLER_VKEY_HEADER = "X-Seller-Vkey"


@dataclass(frozen=True)
class Envelope:
    """Decoded ``{status, data}`` body returned by every settlement endpoint."""

    status: str
    data: Any

    @classmethod
    def parse(cls, body: Any, url: str | None = None) -> Envelope:
        if not isinstance(body, dict) or "data" not in body:
            raise ValidationError(
                "Response is not a {status, data} envelope",
                details={"url": url, "body": repr(body)[:200]},
            )
        return cls(status=str(body.get("status", "")), data=body["data"])


class SettlementClient:
    """
    Client for a self-hosted settlement (payment) service.

    Example:
        >>> async with SettlementClient("http://localhost:3001/api/v1", "key") as client:
        ...     data = await client.post("/payment/resolve-blockchain-identifier", {...})
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize settlement client.

        Args:
            base_url: Service base URL, including any /api/v1 prefix
            api_key: Value for the ``token`` authentication header
            timeout: Per-call deadline in seconds
            retry_policy: Backoff policy for transient failures
            headers: Extra default headers (e.g. X-Seller-Vkey)
            transport: Optional httpx transport, used by tests
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._retry_policy = retry_policy or RetryPolicy()
        self._transport = transport
        self._headers: dict[str, str] = {"Accept": "application/json"}
        if api_key:
            self._headers[AUTH_HEADER] = api_key
        if headers:
            self._headers.update(headers)
        self._logger = get_logger("api_client")
        self._http_client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def headers(self) -> dict[str, str]:
        """Copy of the current default headers."""
        return dict(self._headers)

    def update_headers(self, **headers: str) -> None:
        """Merge new default headers, e.g. a rotated auth token."""
        self._headers.update(headers)
        if AUTH_HEADER in headers:
            self._logger.info(f"Auth token rotated to {mask_secret(headers[AUTH_HEADER])}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            # Deadlines are enforced per call in send(); httpx's own timeout is a backstop
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout + 5.0,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> SettlementClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def send(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        Issue a request and return the unwrapped ``data`` member.

        Raises:
            RequestError: After the retry budget is spent, or at once for 4xx
            ValidationError: If a successful response is not an envelope
        """
        return await execute_with_retry(
            self._send_once, method, path, body, params, policy=self._retry_policy
        )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.send("GET", path, params=params)

    async def post(self, path: str, body: Any) -> Any:
        return await self.send("POST", path, body=body)

    async def _send_once(
        self,
        method: str,
        path: str,
        body: Any,
        params: dict[str, Any] | None,
    ) -> Any:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = dict(self._headers)
        if body is not None:
            headers["Content-Type"] = "application/json"
        if params:
            params = {k: str(v) for k, v in params.items() if v is not None}

        client = await self._get_client()
        self._logger.debug(f"{method} {url}")

        try:
            response = await asyncio.wait_for(
                client.request(method, url, json=body, params=params, headers=headers),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise RequestError(
                f"{method} {path} exceeded {self._timeout}s deadline",
                kind=RequestErrorKind.TIMEOUT,
                url=url,
            ) from e
        except httpx.TimeoutException as e:
            raise RequestError(
                f"{method} {path} timed out: {e}",
                kind=RequestErrorKind.TIMEOUT,
                url=url,
            ) from e
        except httpx.TransportError as e:
            raise RequestError(
                f"{method} {path} transport failure: {e}",
                kind=RequestErrorKind.TRANSPORT,
                url=url,
            ) from e

        if response.status_code >= 400:
            kind = (
                RequestErrorKind.CLIENT
                if response.status_code < 500
                else RequestErrorKind.SERVER
            )
            raise RequestError(
                f"{method} {path} failed: {response.status_code} {response.reason_phrase}",
                kind=kind,
                status_code=response.status_code,
                url=url,
                response_body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ValidationError(
                f"{method} {path} returned a non-JSON body",
                details={"url": url, "body": response.text[:200]},
            ) from e

        return Envelope.parse(payload, url=url).data
