"""Notification service package."""

from .backend import (
    InMemoryNotificationBackend,
    LoggingNotificationBackend,
    NotificationBackend,
)
from .service import NotificationEvent, NotificationService

__all__ = [
    "InMemoryNotificationBackend",
    "LoggingNotificationBackend",
    "NotificationBackend",
    "NotificationEvent",
    "NotificationService",
]
