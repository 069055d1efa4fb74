"""Notification dispatch for queue and session events."""

from .dispatcher import LoggingNotificationDispatcher, NotificationDispatcher, NotificationGateway

__all__ = [
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "NotificationGateway",
]
