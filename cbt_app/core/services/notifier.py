"""Outbound notifications sent after session and result transitions."""

from __future__ import annotations

import logging
from typing import Protocol

from cbt_app.core.models import Test, TestResult

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send_result_email(self, result: TestResult) -> None:
        ...

    def send_invitation_email(self, test: Test, student_id: str) -> None:
        ...


class LoggingNotifier:
    """Notifier that only records what would have been sent."""

    def send_result_email(self, result: TestResult) -> None:
        logger.info(
            "Result notification for student %s: %s%% (%s)",
            result.student_id,
            result.percentage,
            result.status.value,
        )

    def send_invitation_email(self, test: Test, student_id: str) -> None:
        logger.info("Invitation for student %s to test %s (%s)", student_id, test.id, test.title)


def notify_safely(action: str, send, *args) -> None:
    """Run a notifier call, logging instead of raising on failure."""
    try:
        send(*args)
    except Exception:
        logger.exception("Failed to send %s notification", action)
