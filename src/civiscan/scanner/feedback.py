"""
Operator feedback

Audio and haptic output live outside this package; the core only calls
`notify(kind)` on whatever notifier it was given.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum

logger = logging.getLogger(__name__)


class FeedbackKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    CLICK = "click"


class Notifier(ABC):
    """Feedback sink"""

    @abstractmethod
    def notify(self, kind: FeedbackKind) -> None:
        """Play or show feedback of the given kind"""


class LoggingNotifier(Notifier):
    """Default notifier: writes feedback to the log"""

    def notify(self, kind: FeedbackKind) -> None:
        logger.info(f"Feedback: {kind.value}")
