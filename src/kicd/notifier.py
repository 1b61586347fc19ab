"""Slack reports of rollout outcomes.

Notifications are observability only: failures are logged and dropped.
"""

from __future__ import annotations

from typing import Protocol

import httpx

from kicd.exceptions import NotificationDeliveryFailure
from kicd.logging import get_logger

log = get_logger("kicd.notifier")


class Notifier(Protocol):
    async def notify(self, text: str) -> None: ...


class SlackNotifier:
    """Posts plain-text messages to a Slack incoming webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    async def post(self, text: str) -> None:
        """Deliver *text*, raising :class:`NotificationDeliveryFailure` on any error."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._webhook_url, json={"text": text})
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NotificationDeliveryFailure(f"slack webhook unreachable: {exc}") from exc

        if resp.status_code != 200:
            raise NotificationDeliveryFailure(f"slack webhook returned {resp.status_code}")

    async def notify(self, text: str) -> None:
        """Deliver *text* without ever raising."""
        try:
            await self.post(text)
        except NotificationDeliveryFailure as exc:
            log.warning("slack_notification_failed", error=str(exc))


class NullNotifier:
    """Drops every message; used when no webhook is configured."""

    async def notify(self, text: str) -> None:
        log.debug("slack_notification_skipped", text=text)
