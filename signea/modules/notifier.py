"""
Notifier Module - SIGNEA Event Management Core

User-facing messages (success toasts, error dialogs) are delivered through
a notifier handed to whoever needs to speak to the user, instead of being
broadcast on a process-wide channel.

Features:
- Severity levels (info, success, warning, error)
- Bounded in-memory notification history
- Flask flash delivery
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List

from flask import flash


@dataclass
class Notification:
    """A message shown to the user."""
    severity: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    """
    Records notifications for the user.
    Subclasses add a delivery channel by overriding deliver().
    """

    SEVERITY_LEVELS = ('info', 'success', 'warning', 'error')

    def __init__(self, max_history: int = 100):
        self.logger = logging.getLogger(__name__)
        self.history = deque(maxlen=max_history)

    def notify(self, severity: str, message: str) -> Notification:
        """
        Record and deliver a notification.

        Args:
            severity (str): One of SEVERITY_LEVELS
            message (str): Text shown to the user

        Returns:
            Notification: The recorded notification
        """
        if severity not in self.SEVERITY_LEVELS:
            raise ValueError(f"Unknown severity: {severity}")

        notification = Notification(severity=severity, message=message)
        self.history.append(notification)
        self.deliver(notification)
        return notification

    def deliver(self, notification: Notification) -> None:
        self.logger.debug(f"[{notification.severity}] {notification.message}")

    def info(self, message: str) -> Notification:
        return self.notify('info', message)

    def success(self, message: str) -> Notification:
        return self.notify('success', message)

    def warning(self, message: str) -> Notification:
        return self.notify('warning', message)

    def error(self, message: str) -> Notification:
        return self.notify('error', message)

    def recent(self, limit: int = 10) -> List[Notification]:
        """Most recent notifications, newest first."""
        return list(reversed(self.history))[:limit]


class FlashNotifier(Notifier):
    """Delivers notifications as Flask flash messages."""

    def deliver(self, notification: Notification) -> None:
        super().deliver(notification)
        flash(notification.message, notification.severity)
