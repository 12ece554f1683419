"""Notification sink implementations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Protocol

from loguru import logger


class NotificationBackend(Protocol):
    """Minimal protocol for delivering user-visible notifications."""

    async def deliver(self, recipient: str, event_type: str, message: str, *, payload: dict[str, Any]) -> None:
        ...


class LoggingNotificationBackend:
    """Default sink that records notifications in the structured log."""

    async def deliver(self, recipient: str, event_type: str, message: str, *, payload: dict[str, Any]) -> None:
        logger.info("Notification dispatched", recipient=recipient, event_type=event_type, notification=message)


@dataclass
class InMemoryNotificationBackend:
    """Test backend storing delivered notifications in memory."""

    delivered: List[dict[str, Any]]

    def __init__(self) -> None:
        self.delivered = []

    async def deliver(self, recipient: str, event_type: str, message: str, *, payload: dict[str, Any]) -> None:
        self.delivered.append(
            {
                "recipient": recipient,
                "event_type": event_type,
                "message": message,
                "payload": dict(payload),
            }
        )
