"""
expo_push.py — Mobile push delivery through the Expo push service.

Delivery mechanism:
    • POST a JSON array of messages to the Expo push endpoint
    • At most PUSH_CHUNK_SIZE (100) messages per request
    • Each message: {to, title, body, data, sound}

Expo answers 200 with one ticket per message:

    {"data": [{"status": "ok", "id": "..."},
              {"status": "error", "message": "...", "details": {...}}]}

Per-message ticket errors (an expired token, say) are reported on the
PushReport and do not fail the send. A non-2xx response or a transport
failure on any chunk raises PushDeliveryError carrying the report of the
chunks sent before it; later chunks are not attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from guardian.app.core.config import settings
from guardian.app.core.errors import PushDeliveryError

logger = logging.getLogger(__name__)


@dataclass
class PushMessage:
    to: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    title: str = settings.PUSH_TITLE
    sound: str = "default"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "sound": self.sound,
            "title": self.title,
            "body": self.body,
            "data": self.data,
        }


@dataclass
class PushReport:
    sent: int = 0
    chunks: int = 0
    ticket_errors: List[str] = field(default_factory=list)

    def merge(self, other: "PushReport") -> None:
        self.sent += other.sent
        self.chunks += other.chunks
        self.ticket_errors.extend(other.ticket_errors)


def chunked(messages: Sequence[PushMessage], size: int) -> List[Sequence[PushMessage]]:
    size = max(1, size)
    return [messages[i:i + size] for i in range(0, len(messages), size)]


class ExpoPushGateway:
    """
    Parameters
    ----------
    client : httpx.AsyncClient, optional
        Injected client (tests use `httpx.MockTransport`); created lazily
        otherwise and closed by `aclose()`.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        url: str = settings.PUSH_GATEWAY_URL,
        chunk_size: int = settings.PUSH_CHUNK_SIZE,
        timeout: float = settings.PUSH_TIMEOUT_SECONDS,
        access_token: Optional[str] = settings.PUSH_ACCESS_TOKEN,
    ):
        self._client = client
        self._owns_client = client is None
        self.url = url
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.access_token = access_token

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._client

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send(self, messages: Sequence[PushMessage]) -> PushReport:
        """
        Send all messages, chunk by chunk.

        Raises PushDeliveryError on the first failed chunk; its
        `partial_report` covers the chunks already delivered.
        """
        report = PushReport()
        for chunk in chunked(list(messages), self.chunk_size):
            try:
                report.merge(await self._send_chunk(chunk))
            except PushDeliveryError as exc:
                exc.partial_report = report
                raise
        return report

    async def _send_chunk(self, chunk: Sequence[PushMessage]) -> PushReport:
        client = self._get_client()
        try:
            resp = await client.post(
                self.url,
                json=[m.to_dict() for m in chunk],
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise PushDeliveryError(
                f"{type(exc).__name__}: {exc}", recipients=len(chunk),
            ) from exc

        if not resp.is_success:
            raise PushDeliveryError(
                f"HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
                recipients=len(chunk),
            )

        report = PushReport(sent=len(chunk), chunks=1)
        try:
            tickets = resp.json().get("data") or []
        except (ValueError, AttributeError):
            tickets = []
        for message, ticket in zip(chunk, tickets):
            if isinstance(ticket, dict) and ticket.get("status") == "error":
                report.ticket_errors.append(
                    f"{message.to[:24]}: {ticket.get('message', 'unknown error')}"
                )

        if report.ticket_errors:
            logger.warning(
                "Expo push: %d/%d tickets rejected",
                len(report.ticket_errors), len(chunk),
                extra={"recipient_count": len(chunk)},
            )
        return report
