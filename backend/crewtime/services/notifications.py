"""Fire-and-forget notification dispatch.

Events are POSTed as JSON to NOTIFICATION_WEBHOOK_URL:

    {"event": "session_ended", "workspace_id": 123, "payload": {...}}

Event names: session_ended, quota_completed, reset_performed.

`emit()` never blocks or raises: delivery runs as a background task and
failures are logged.  With no webhook configured, events are only logged.
"""

import asyncio
import logging

import httpx

from crewtime.config import settings

logger = logging.getLogger("crewtime.notifications")


class Notifier:
    def __init__(
        self,
        webhook_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.webhook_url = settings.notification_webhook_url if webhook_url is None else webhook_url
        self.timeout = settings.notification_timeout_seconds if timeout is None else timeout
        self._client = http_client
        self._pending: set[asyncio.Task] = set()

    def emit(self, event: str, workspace_id: int, payload: dict | None = None) -> None:
        message = {"event": event, "workspace_id": workspace_id, "payload": payload or {}}
        if not self.webhook_url:
            logger.info("Notification %s for workspace %s", event, workspace_id)
            return

        task = asyncio.create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message: dict) -> None:
        try:
            if self._client is None:
                self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            response = await self._client.post(self.webhook_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Notification delivery failed: %s",
                e,
                extra={"event": message["event"], "workspace_id": message["workspace_id"]},
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# ── Dependency ──────────────────────────────────────────────

_notifier: Notifier | None = None


def get_notifier() -> Notifier:
    """Shared notifier (overridden in tests)."""
    global _notifier
    if _notifier is None:
        _notifier = Notifier()
    return _notifier


async def close_notifier() -> None:
    global _notifier
    if _notifier is not None:
        await _notifier.aclose()
        _notifier = None
