"""Scan processing: debounce, lookup, check-in rules and operator feedback"""

from .feedback import FeedbackKind, LoggingNotifier, Notifier
from .processor import ScanEvent, ScanProcessor, ScanState

__all__ = [
    "FeedbackKind",
    "LoggingNotifier",
    "Notifier",
    "ScanEvent",
    "ScanProcessor",
    "ScanState",
]
