"""
Playback Engine Errors

Every error raised by the engine derives from PlaybackError and carries a
stable machine-readable code. The HTTP layer maps each class to a status code.

Recoverable by the caller:
- ValidationError / InvalidQualityError
- NotFoundError
- ExpiredError
- RateLimitError
- SessionBusyError

Fatal for the operation:
- LedgerConsistencyError (never auto-corrected)
- InvalidTransitionError (programming error in the state machine)
"""

from typing import Any, Dict, Optional


class PlaybackError(Exception):
    """Base class for all playback engine errors"""

    code = "PLAYBACK_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error payload returned to API callers"""
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(PlaybackError):
    """Raised when an identifier or numeric field is missing or malformed"""

    code = "VALIDATION_ERROR"


class InvalidQualityError(ValidationError):
    """Raised when a quality id is not one of the known tiers"""

    code = "INVALID_QUALITY"

    def __init__(self, quality_id: Any):
        self.quality_id = quality_id
        super().__init__(
            f"Unknown streaming quality: {quality_id!r}",
            {"quality_id": str(quality_id)},
        )


class NotFoundError(PlaybackError):
    """Raised when a session or track does not exist"""

    code = "NOT_FOUND"


class ExpiredError(PlaybackError):
    """Raised when an operation targets a session past its timeout"""

    code = "SESSION_EXPIRED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Playback session {session_id} has expired", {"session_id": session_id})


class RateLimitError(PlaybackError):
    """Raised when a user exceeds the playback start quota"""

    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, user_id: str, limit: int, window_seconds: int, retry_after: int):
        self.user_id = user_id
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        super().__init__(
            f"Too many play requests: limit is {limit} per {window_seconds}s",
            {"limit": limit, "window_seconds": window_seconds, "retry_after": retry_after},
        )


class SessionBusyError(PlaybackError):
    """Raised when a per-key critical section could not be entered in time"""

    code = "RESOURCE_BUSY"

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for {key}", {"key": key})


class InvalidTransitionError(PlaybackError):
    """Raised when a session state change would move backwards or leave a terminal state"""

    code = "INVALID_TRANSITION"


class LedgerConsistencyError(PlaybackError):
    """
    Raised when the royalty ledger detects an inconsistency.

    Covers recipient percentages that do not sum to 1.0, split sums that do
    not match the payout, and duplicate credits for one session. Crediting
    for the affected track halts until it is reconciled by hand.
    """

    code = "LEDGER_CONSISTENCY_ERROR"

    def __init__(
        self,
        message: str,
        track_id: str,
        session_id: Optional[str] = None,
        split: Optional[Any] = None,
    ):
        self.track_id = track_id
        self.session_id = session_id
        self.split = split
        super().__init__(
            message,
            {"track_id": track_id, "session_id": session_id, "split": split},
        )
