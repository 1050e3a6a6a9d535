from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Delivery channel for alert and digest messages (email, chat, push...)."""

    async def send(self, title: str, message: str, *, recipient: str | None = None) -> bool: ...


class LoggingNotifier:
    """Default notifier: writes notifications to the log."""

    def __init__(self) -> None:
        self.sent = 0

    async def send(self, title: str, message: str, *, recipient: str | None = None) -> bool:
        self.sent += 1
        logger.info("Notification for %s: %s - %s", recipient or "all", title, message)
        return True
