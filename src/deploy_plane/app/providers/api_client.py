"""Retrying async HTTP client shared by the GitHub, Cloudflare and Resend adapters.

Retries timeouts, transport errors, 429 and 5xx responses with
exponential backoff and full jitter, honouring ``Retry-After``. Once
retries run out, errors surface as a small exception hierarchy that the
provisioner adapters map onto result variants with ``to_failure``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from .results import NotFound, PermanentError, ProviderFailure, RateLimited, TransientError

logger = logging.getLogger(__name__)

# Status codes eligible for automatic retry.
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds
_DEFAULT_MAX_DELAY = 30.0  # seconds


# ── Exception hierarchy ─────────────────────────────────────────


class ProviderAPIError(Exception):
    """Base exception for third-party API errors."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        *,
        service: str = "api",
        response_body: str = "",
        retry_after: float | None = None,
    ) -> None:
        self.status_code = status_code
        self.message = message
        self.service = service
        self.response_body = response_body
        self.retry_after = retry_after
        super().__init__(f"{service} API error {status_code}: {message}")


class ProviderNotFoundError(ProviderAPIError):
    """Resource not found (404)."""


class ProviderRateLimitedError(ProviderAPIError):
    """Rate limited (429) after exhausting retries."""


class ProviderTimeoutError(ProviderAPIError):
    """Request timed out or the connection failed."""

    def __init__(self, message: str = "Request timed out", *, service: str = "api") -> None:
        super().__init__(0, message, service=service)


def to_failure(exc: ProviderAPIError) -> ProviderFailure:
    """Map a client exception onto a closed failure variant."""
    message = str(exc)
    if isinstance(exc, ProviderNotFoundError):
        return NotFound(message)
    if isinstance(exc, ProviderRateLimitedError):
        return RateLimited(message, retry_after_seconds=exc.retry_after)
    if isinstance(exc, ProviderTimeoutError) or exc.status_code >= 500:
        return TransientError(message)
    return PermanentError(message)


# ── Client ───────────────────────────────────────────────────────


class RetryingAPIClient:
    """Async JSON API client with bearer auth and transient-error retry.

    Subclasses set ``service_name`` and override ``_error_message`` to pull
    a readable message out of their API's error payloads.
    """

    service_name = "api"

    def __init__(
        self,
        *,
        bearer_token: str,
        base_url: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
        extra_headers: dict[str, str] | None = None,
    ) -> None:
        if not bearer_token:
            raise ValueError("bearer_token is required")

        self._bearer_token = bearer_token
        self._base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None
        self._timeout = float(timeout_seconds)
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._extra_headers = dict(extra_headers or {})

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        # Never log these headers.
        return {"Authorization": f"Bearer {self._bearer_token}", **self._extra_headers}

    def _error_message(self, resp: httpx.Response) -> str:
        body = resp.text
        message = body[:200] if body else f"HTTP {resp.status_code}"
        try:
            payload = resp.json()
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error") or message
        except ValueError:
            pass
        return str(message)

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return

        message = self._error_message(resp)
        kwargs: dict[str, Any] = {
            "service": self.service_name,
            "response_body": resp.text,
        }
        if resp.status_code == 404:
            raise ProviderNotFoundError(404, message, **kwargs)
        if resp.status_code == 429:
            raise ProviderRateLimitedError(
                429, message, retry_after=_parse_retry_after(resp), **kwargs,
            )
        raise ProviderAPIError(resp.status_code, message, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send a request with retry, then raise for any remaining error status."""
        resp = await self._request_with_retry(method, path, json=json, params=params)
        self._raise_for_status(resp)
        return resp

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = self._auth_headers()

        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt < self._max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.warning(
                        "%s %s %s failed with %s (attempt %d/%d), retrying in %.1fs",
                        self.service_name,
                        method,
                        path,
                        type(e).__name__,
                        attempt + 1,
                        self._max_retries + 1,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise ProviderTimeoutError(
                    f"{type(e).__name__}: {e}", service=self.service_name,
                ) from e

            if resp.status_code not in _RETRYABLE_STATUS_CODES:
                return resp

            if attempt < self._max_retries:
                delay = self._retry_after_delay(resp, attempt)
                logger.warning(
                    "%s %s %s returned %d (attempt %d/%d), retrying in %.1fs",
                    self.service_name,
                    method,
                    path,
                    resp.status_code,
                    attempt + 1,
                    self._max_retries + 1,
                    delay,
                )
                await asyncio.sleep(delay)
            else:
                return resp

        raise ProviderAPIError(
            0, "exhausted retries with no response", service=self.service_name,
        )

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        delay = min(self._base_delay * (2 ** attempt), self._max_delay)
        return random.uniform(0, delay)

    def _retry_after_delay(self, resp: httpx.Response, attempt: int) -> float:
        retry_after = _parse_retry_after(resp)
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        return self._backoff_delay(attempt)


def _parse_retry_after(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        return max(float(raw), 0.1)
    except ValueError:
        return None
