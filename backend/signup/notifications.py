"""
Notification collaborator.

The core reports cap violations and submission outcomes through
``Notifier.notify``; rendering (toasts, e-mail, ...) belongs to the
implementation.  Calls are fire-and-forget: the core never inspects the
outcome.
"""

from __future__ import annotations

from typing import Protocol

from signup.core.constants import NotificationKind
from signup.core.logging import get_logger


class Notifier(Protocol):
    def notify(self, kind: NotificationKind, title: str, description: str) -> None:
        ...


class LoggingNotifier:
    """Writes notifications to the structured log."""

    def __init__(self, logger_name: str = "notifications") -> None:
        self.logger = get_logger(logger_name)

    def notify(self, kind: NotificationKind, title: str, description: str) -> None:
        if kind == NotificationKind.ERROR:
            self.logger.warning(title, kind=str(kind), description=description)
        else:
            self.logger.info(title, kind=str(kind), description=description)
