"""
Notification Service - Publishing control loop outcomes

Responsibilities:
- Keep the latest iteration snapshot and a short history for the HTTP API
- Write a one-line summary per iteration to the log
"""

from .sinks import (
    LoggingNotificationSink,
    NotificationSink,
    SnapshotNotificationSink,
)

__all__ = [
    "LoggingNotificationSink",
    "NotificationSink",
    "SnapshotNotificationSink",
]
