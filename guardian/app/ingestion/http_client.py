"""
http_client.py — Shared async HTTP client for upstream hazard feeds.

Wraps one `httpx.AsyncClient` (explicit timeout, identifying User-Agent)
and applies a single retry policy to every feed call:

    Attempt 1: immediate
    Attempt 2: wait base seconds
    Attempt 3: wait base × 2 seconds
    ...

Retried:   transport errors (connect/read timeouts, resets), 429, 5xx
Not retried: other 4xx, which raise immediately

Exhaustion raises `ExternalServiceError`; an unreadable body raises
`FeedParseError`. Adapters turn both into a failed TaskResult.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from guardian.app.core.config import settings
from guardian.app.core.errors import ExternalServiceError, FeedParseError

logger = logging.getLogger(__name__)


class FeedClient:
    """
    Retrying GET client shared by all source adapters.

    Parameters
    ----------
    client : httpx.AsyncClient, optional
        Injected client (tests pass one built on `httpx.MockTransport`).
        When omitted, one is created lazily and closed by `aclose()`.
    max_retries : int
        Retries after the first attempt.
    backoff_seconds : float
        Base wait; doubles on each retry.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        timeout: float = settings.FEED_TIMEOUT_SECONDS,
        max_retries: int = settings.FEED_MAX_RETRIES,
        backoff_seconds: float = settings.FEED_RETRY_BACKOFF_SECONDS,
        user_agent: str = settings.FEED_USER_AGENT,
    ):
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._user_agent = user_agent
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        *,
        service: str,
        params: Optional[Dict[str, Any]] = None,
        accept: str = "application/json",
    ) -> httpx.Response:
        """GET with retries; returns the first 2xx response."""
        client = self._get_client()
        last_error = ""

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                wait = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s retry %d/%d after %.1fs — %s",
                    service, attempt, self.max_retries, wait, last_error,
                    extra={"source": service},
                )
                if wait > 0:
                    await asyncio.sleep(wait)

            try:
                resp = await client.get(url, params=params, headers={"Accept": accept})
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                continue

            if resp.is_success:
                return resp
            if resp.status_code == 429 or resp.status_code >= 500:
                last_error = f"HTTP {resp.status_code}"
                continue
            # Client error, a retry will not help
            raise ExternalServiceError(
                service,
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )

        raise ExternalServiceError(
            service,
            f"failed after {self.max_retries + 1} attempts: {last_error}",
        )

    async def get_json(
        self,
        url: str,
        *,
        service: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        resp = await self.get(url, service=service, params=params)
        try:
            return resp.json()
        except ValueError as exc:
            raise FeedParseError(service, f"invalid JSON: {exc}") from exc

    async def get_text(self, url: str, *, service: str) -> str:
        resp = await self.get(
            url, service=service,
            accept="application/atom+xml, application/xml;q=0.9, */*;q=0.8",
        )
        return resp.text
