"""
CiviScan error taxonomy

Every failure surfaced by the core maps to one of these classes:

- ConfigMissing: no usable credential or backend configured
- BackendError: the backend explicitly rejected the request (carries HTTP status)
- NetworkError: transport-level failure, no response received
- NotFound: a lookup returned zero records
- TokenInvalid: a magic-link token or config link could not be decoded
- EventClosed: the event is past its grace period and no longer writable
- WriteInProgress: a second write to a record whose first write is still pending
"""

from typing import Optional


class CiviScanError(Exception):
    """Base class for all CiviScan errors"""

    #: Stable machine-readable reason, used by outer layers for translation keys
    reason: str = "error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.reason)
        self.message = message or self.reason


class ConfigMissing(CiviScanError):
    """No active credential or backend URL is configured"""
    reason = "settings.missing"


class BackendError(CiviScanError):
    """The backend answered, but rejected the request"""
    reason = "backend_error"

    def __init__(self, status: Optional[int], message: Optional[str] = None):
        super().__init__(message or f"Backend error (HTTP {status})")
        self.status = status

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401

    @property
    def is_forbidden(self) -> bool:
        return self.status == 403

    def __repr__(self):
        return f"BackendError(status={self.status!r}, message={self.message!r})"


class NetworkError(CiviScanError):
    """No response was received from the backend"""
    reason = "connection_error"


class NotFound(CiviScanError):
    """Zero-result lookup"""
    reason = "scanner.notFound"


class TokenInvalid(CiviScanError):
    """Malformed or unparsable token"""
    reason = "token_invalid"


class EventClosed(CiviScanError):
    """Event ended and its grace period elapsed"""
    reason = "events.eventFinished"


class WriteInProgress(CiviScanError):
    """A write for the same record has not finished yet"""
    reason = "roster.writeInProgress"
