"""
Playback Session State Machine

    STARTED -> ACTIVE -> {ENDED_VALID, ENDED_INVALID, EXPIRED}

STARTED may also jump straight to a terminal state (ended or expired before
the first progress report). Terminal states are final.

The machine mutates PlaybackSession objects in memory only; persisting them
and holding the per-session lock is the SessionStore's job.
"""

from typing import Any, Dict, Optional

from config import Settings, settings as default_settings
from playback.errors import InvalidTransitionError, ValidationError
from playback.models import (
    EndReason,
    PlaybackSession,
    QualityConfig,
    SessionState,
    iso_timestamp,
)


ALLOWED_TRANSITIONS = {
    SessionState.STARTED: frozenset({
        SessionState.ACTIVE,
        SessionState.ENDED_VALID,
        SessionState.ENDED_INVALID,
        SessionState.EXPIRED,
    }),
    SessionState.ACTIVE: frozenset({
        SessionState.ENDED_VALID,
        SessionState.ENDED_INVALID,
        SessionState.EXPIRED,
    }),
    SessionState.ENDED_VALID: frozenset(),
    SessionState.ENDED_INVALID: frozenset(),
    SessionState.EXPIRED: frozenset(),
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class PlaybackStateMachine:
    """Applies lifecycle rules to a single session"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def transition(
        self,
        session: PlaybackSession,
        target: SessionState,
        now: float,
        reason: Optional[EndReason] = None,
    ) -> None:
        """
        Move a session to target.

        Raises:
            InvalidTransitionError: If the move is not a forward edge
        """
        if not can_transition(session.state, target):
            raise InvalidTransitionError(
                f"Session {session.session_id} cannot move from {session.state.value} to {target.value}",
                {"session_id": session.session_id, "from": session.state.value, "to": target.value},
            )
        session.state = target
        if target.is_terminal:
            session.ended_at = now
            session.end_reason = reason

    @staticmethod
    def validate_progress(current_time: Any, total_duration: Any) -> None:
        """Reject negative, non-numeric or non-finite progress values"""
        for name, value in (("current_time", current_time), ("total_duration", total_duration)):
            if value is None and name == "total_duration":
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number", {"field": name})
            if value != value or value in (float("inf"), float("-inf")):
                raise ValidationError(f"{name} must be finite", {"field": name})
            if value < 0:
                raise ValidationError(f"{name} must not be negative", {"field": name})
        if total_duration is not None and total_duration == 0:
            raise ValidationError("total_duration must be positive", {"field": "total_duration"})

    def record_progress(
        self,
        session: PlaybackSession,
        current_time: float,
        total_duration: Optional[float],
        quality: QualityConfig,
        now: float,
    ) -> bool:
        """
        Apply a progress report.

        Returns:
            True if the report hit the tier's preview cap and the session was
            forced to ENDED_INVALID
        """
        if session.state == SessionState.STARTED:
            self.transition(session, SessionState.ACTIVE, now)
        elif session.state != SessionState.ACTIVE:
            raise InvalidTransitionError(
                f"Session {session.session_id} is {session.state.value}; progress not accepted",
                {"session_id": session.session_id, "state": session.state.value},
            )

        session.last_progress_at = now
        if total_duration is not None:
            session.total_duration = float(total_duration)

        cap = quality.max_duration_seconds
        if cap is not None and current_time >= cap:
            # Never record listening beyond the preview cap
            session.current_time = float(cap)
            self.transition(session, SessionState.ENDED_INVALID, now, EndReason.PREVIEW_LIMIT)
            session.outcome = self.build_outcome(session)
            return True

        session.current_time = float(current_time)
        return False

    def is_valid_play(self, session: PlaybackSession) -> bool:
        """
        A play is valid once the listener crossed either the fractional
        threshold of the track or the absolute minimum listen time.
        """
        listened = session.current_time
        if listened >= self.settings.MIN_VALID_SECONDS:
            return True
        if session.total_duration:
            return listened >= self.settings.VALIDITY_THRESHOLD * session.total_duration
        return False

    def finish(self, session: PlaybackSession, now: float) -> bool:
        """
        Move an open session to ENDED_VALID or ENDED_INVALID.

        Returns:
            Whether the play was valid
        """
        valid = self.is_valid_play(session)
        if valid:
            self.transition(session, SessionState.ENDED_VALID, now, EndReason.COMPLETED)
        else:
            self.transition(session, SessionState.ENDED_INVALID, now, EndReason.BELOW_THRESHOLD)
        return valid

    def expire(self, session: PlaybackSession, now: float) -> None:
        self.transition(session, SessionState.EXPIRED, now, EndReason.TIMEOUT)
        session.outcome = self.build_outcome(session)

    @staticmethod
    def build_outcome(session: PlaybackSession, payout: Optional[str] = None) -> Dict[str, Any]:
        """Terminal result cached on the session for idempotent replays"""
        return {
            "session_id": session.session_id,
            "state": session.state.value,
            "valid": session.state == SessionState.ENDED_VALID,
            "reason": session.end_reason.value if session.end_reason else None,
            "listened_seconds": session.current_time,
            "total_duration": session.total_duration,
            "ended_at": iso_timestamp(session.ended_at),
            "payout": payout,
        }
