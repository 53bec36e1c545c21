"""Outbound notifications (welcome mail, grade ready, progress reminders).

Notifications are best-effort: a failed send is logged and counted, never
raised into the job that triggered it.  Use notify_quietly() from
handlers.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from studyforge.core.metrics import NOTIFICATION_FAILURES

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    async def send(self, kind: str, recipient: str, data: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log; the default when no webhook is set."""

    async def send(self, kind: str, recipient: str, data: dict[str, Any]) -> None:
        logger.info("Notification kind=%s recipient=%s data=%s", kind, recipient, data)


class WebhookNotifier:
    """POSTs {"kind", "recipient", "data"} to a mail/notification relay."""

    def __init__(
        self, url: str, *, timeout_seconds: float = 10.0, client: httpx.AsyncClient | None = None
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def send(self, kind: str, recipient: str, data: dict[str, Any]) -> None:
        resp = await self._client.post(
            self._url, json={"kind": kind, "recipient": recipient, "data": data}
        )
        resp.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


async def notify_quietly(
    notifier: Notifier, kind: str, recipient: str, data: dict[str, Any]
) -> bool:
    """Send and report success; failures are logged, never raised."""
    try:
        await notifier.send(kind, recipient, data)
    except Exception:
        NOTIFICATION_FAILURES.labels(kind=kind).inc()
        logger.warning(
            "Notification failed kind=%s recipient=%s", kind, recipient, exc_info=True
        )
        return False
    return True
