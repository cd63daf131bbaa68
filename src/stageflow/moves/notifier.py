"""User-facing notifications for stage-transition outcomes.

The engine reports exactly one success or failure message per terminal
outcome, plus a celebration when an opportunity lands in a win stage. The
UI layer plugs in its own UserNotifier (toasts, confetti); LoggingNotifier
is the default and simply logs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import structlog

from src.stageflow.funnels.schemas import Opportunity

logger = structlog.get_logger(__name__)


class UserNotifier(ABC):
    """Sink for human-readable move outcomes."""

    @abstractmethod
    def success(self, message: str) -> None:
        """Report a successful operation."""
        ...

    @abstractmethod
    def failure(self, message: str) -> None:
        """Report a terminal failure."""
        ...

    @abstractmethod
    def celebrate(self, opportunity: Opportunity) -> None:
        """Celebrate an opportunity entering a win stage."""
        ...


class LoggingNotifier(UserNotifier):
    """UserNotifier that writes every notification to the structured log."""

    def success(self, message: str) -> None:
        logger.info("notify.success", message=message)

    def failure(self, message: str) -> None:
        logger.warning("notify.failure", message=message)

    def celebrate(self, opportunity: Opportunity) -> None:
        logger.info(
            "notify.celebrate",
            opportunity_id=opportunity.id,
            title=opportunity.title,
            value=opportunity.value,
        )
