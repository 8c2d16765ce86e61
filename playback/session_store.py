"""
Session Store - Keyed storage of playback sessions

Key layout on the backing KeyValueStore:
    session:{session_id}                 -> PlaybackSession document
    history:{user_id}:{session_id}       -> valid-play history entry

Open sessions carry no backend TTL; they are expired by the sweep, which
needs to see them. Terminal sessions are retained for a configurable period
so repeated endPlayback calls keep returning the cached outcome.
"""

import time
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from config import Settings, settings as default_settings
from playback.errors import NotFoundError, ValidationError
from playback.locks import KeyedLock
from playback.models import PlaybackSession, QualityTier, SessionState
from playback.storage import KeyValueStore
from utils.logger import logger


SESSION_PREFIX = "session:"
HISTORY_PREFIX = "history:"


def validate_identifier(value: Any, name: str) -> str:
    """Ensure an identifier is a non-empty string without key separators"""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required", {"field": name})
    value = value.strip()
    if ":" in value or len(value) > 256:
        raise ValidationError(f"{name} is malformed", {"field": name})
    return value


class SessionStore:
    """
    Persists sessions and serializes work per session id.

    All read-modify-write sequences on one session must happen inside
    locked(session_id).
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.clock = clock
        self._id_factory = id_factory
        self._locks = KeyedLock("session", timeout=self.settings.LOCK_TIMEOUT_SECONDS)

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    @staticmethod
    def _history_key(user_id: str, session_id: str) -> str:
        return f"{HISTORY_PREFIX}{user_id}:{session_id}"

    @contextmanager
    def locked(self, session_id: str) -> Iterator[None]:
        """Critical section for one session (bounded wait)"""
        with self._locks.hold(session_id):
            yield

    def create(
        self,
        user_id: str,
        track_id: str,
        tier: QualityTier,
        total_duration: Optional[float] = None,
    ) -> PlaybackSession:
        """
        Issue a brand-new session in STARTED state.

        Session ids are never reissued: an id that already exists in the
        store is discarded and a new one drawn.
        """
        now = self.clock()
        for _ in range(5):
            session_id = self._id_factory()
            with self.locked(session_id):
                if self.store.get(self._session_key(session_id)) is not None:
                    logger.warning(f"Session id collision on {session_id}, drawing a new one")
                    continue
                session = PlaybackSession(
                    session_id=session_id,
                    user_id=user_id,
                    track_id=track_id,
                    tier=tier,
                    started_at=now,
                    last_progress_at=now,
                    total_duration=total_duration,
                )
                self.store.set(self._session_key(session_id), session.to_dict())
                return session
        raise RuntimeError("Could not allocate a unique session id")

    def get(self, session_id: str) -> Optional[PlaybackSession]:
        data = self.store.get(self._session_key(session_id))
        if data is None:
            return None
        return PlaybackSession.from_dict(data)

    def require(self, session_id: str) -> PlaybackSession:
        """
        Load a session or fail.

        Raises:
            NotFoundError: If no such session exists
        """
        session = self.get(session_id)
        if session is None:
            raise NotFoundError(f"Playback session {session_id} not found", {"session_id": session_id})
        return session

    def save(self, session: PlaybackSession) -> None:
        ttl = self.settings.TERMINAL_RETENTION_SECONDS if session.is_terminal else None
        self.store.set(self._session_key(session.session_id), session.to_dict(), ttl=ttl)

    def commit_valid_end(self, session: PlaybackSession, previous: Dict[str, Any]) -> None:
        """
        Persist an ENDED_VALID session together with its history entry.

        On failure the previous session document is restored before the error
        propagates, so the caller's rollback sees the store unchanged.
        """
        history_key = self._history_key(session.user_id, session.session_id)
        try:
            self.save(session)
            self.store.set(
                history_key,
                {
                    "session_id": session.session_id,
                    "track_id": session.track_id,
                    "tier": session.tier.value,
                    "listened_seconds": session.current_time,
                    "total_duration": session.total_duration,
                    "started_at": session.started_at,
                    "ended_at": session.ended_at,
                    "payout": session.outcome.get("payout") if session.outcome else None,
                },
                ttl=self.settings.TERMINAL_RETENTION_SECONDS,
            )
        except Exception:
            self.store.delete(history_key)
            self.store.set(self._session_key(session.session_id), previous)
            raise

    def iter_sessions(self) -> Iterator[PlaybackSession]:
        for _, data in self.store.scan_prefix(SESSION_PREFIX):
            yield PlaybackSession.from_dict(data)

    def find_stale(self, now: float) -> List[str]:
        """Ids of open sessions with no progress for longer than the timeout"""
        timeout = self.settings.SESSION_TIMEOUT_SECONDS
        return [s.session_id for s in self.iter_sessions() if s.is_stale(now, timeout)]

    def count_by_state(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in SessionState}
        for session in self.iter_sessions():
            counts[session.state.value] += 1
        return counts

    def user_history(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent valid plays for a user, newest first"""
        entries = [value for _, value in self.store.scan_prefix(f"{HISTORY_PREFIX}{user_id}:")]
        entries.sort(key=lambda e: e.get("ended_at") or 0, reverse=True)
        return entries[:limit]
