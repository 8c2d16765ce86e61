"""
Playback Service - the only entry point the HTTP layer calls

Orchestrates quality resolution, the session state machine, the royalty
ledger, rate limiting and event publishing. Takes and returns plain data.

Concurrency:
- Every read-modify-write on a session runs inside SessionStore.locked()
- Ledger credit takes the per-track lock inside the session lock
  (lock order is always session -> track)
- Events are published after locks are released
"""

import time
from typing import Any, Callable, Dict, List, Optional

from config import Settings, settings as default_settings
from playback.catalog import TrackCatalog
from playback.errors import (
    ExpiredError,
    InvalidQualityError,
    NotFoundError,
    RateLimitError,
    SessionBusyError,
    ValidationError,
)
from playback.events import (
    DomainEvent,
    EventPublisher,
    NullEventPublisher,
    PlayEnded,
    PlayStarted,
    RoyaltyCredited,
)
from playback.models import (
    PlaybackSession,
    QualityTier,
    RoyaltyRecord,
    SessionState,
    Track,
    iso_timestamp,
)
from playback.quality_policy import QualityPolicy
from playback.rate_limiter import InMemorySlidingWindowCounter, SlidingWindowCounter
from playback.royalty_ledger import RoyaltyLedger
from playback.session_state import PlaybackStateMachine
from playback.session_store import SessionStore, validate_identifier
from playback.storage import InMemoryKeyValueStore, KeyValueStore
from utils.logger import logger


MAX_HISTORY_LIMIT = 500


class PlaybackService:
    """
    Playback session and royalty accrual engine.

    Usage:
        service = PlaybackService(catalog=my_catalog)
        started = service.start_playback('user_1', 'track_1', 'premium')
        service.update_playback_progress(started['session_id'], 95.0, 180.0)
        outcome = service.end_playback(started['session_id'])
    """

    def __init__(
        self,
        catalog: TrackCatalog,
        store: Optional[KeyValueStore] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        publisher: Optional[EventPublisher] = None,
        rate_limiter: Optional[SlidingWindowCounter] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.settings = settings or default_settings
        self.clock = clock
        self.catalog = catalog
        self.store = store or InMemoryKeyValueStore(clock=clock)
        self.publisher = publisher or NullEventPublisher()
        self.quality_policy = QualityPolicy(self.settings)
        self.state_machine = PlaybackStateMachine(self.settings)

        session_kwargs = {"id_factory": id_factory} if id_factory else {}
        self.sessions = SessionStore(self.store, self.settings, clock, **session_kwargs)
        self.ledger = RoyaltyLedger(self.store, self.quality_policy, self.settings, clock)
        self.rate_limiter = rate_limiter or InMemorySlidingWindowCounter(
            limit=self.settings.PLAY_RATE_LIMIT,
            window_seconds=self.settings.PLAY_RATE_WINDOW_SECONDS,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _publish(self, events: List[DomainEvent]) -> None:
        for event in events:
            try:
                self.publisher.publish(event)
            except Exception as e:
                logger.exception(f"Failed to publish {event.name} for session {event.session_id}: {e}")

    def _require_track(self, track_id: str) -> Track:
        track = self.catalog.read_track(track_id)
        if track is None:
            raise NotFoundError(f"Track {track_id} not found", {"track_id": track_id})
        return track

    def _resolve_tier(self, tier: Any) -> QualityTier:
        """Parse a tier, falling back to free for unknown values"""
        try:
            return self.quality_policy.parse_tier(tier)
        except InvalidQualityError:
            logger.warning(f"Unknown quality tier {tier!r}, falling back to free")
            return QualityTier.FREE

    def _expire_locked(self, session: PlaybackSession, now: float) -> DomainEvent:
        """Expire a stale session. Caller holds the session lock"""
        self.state_machine.expire(session, now)
        self.sessions.save(session)
        logger.warning(f"Session {session.session_id} expired (no progress for {now - session.last_progress_at:.0f}s)")
        return self._ended_event(session, now)

    def _ended_event(self, session: PlaybackSession, now: float) -> PlayEnded:
        return PlayEnded(
            session_id=session.session_id,
            track_id=session.track_id,
            occurred_at=now,
            user_id=session.user_id,
            valid=session.state == SessionState.ENDED_VALID,
            state=session.state.value,
            reason=session.end_reason.value if session.end_reason else None,
        )

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_playback(self, user_id: str, track_id: str, tier: Any = QualityTier.FREE) -> Dict[str, Any]:
        """
        Open a new playback session.

        Every well-formed attempt counts against the start quota, including
        ones for unknown tracks, so track id enumeration is throttled too.

        Returns:
            session_id, stream_url, quality config and session state

        Raises:
            ValidationError: Missing or malformed ids
            RateLimitError: User exceeded the start quota
            NotFoundError: Track does not exist
        """
        user_id = validate_identifier(user_id, "user_id")
        track_id = validate_identifier(track_id, "track_id")

        allowed, retry_after = self.rate_limiter.hit(user_id)
        if not allowed:
            logger.warning(f"Play start rate limit exceeded for user {user_id} (retry in {retry_after}s)")
            raise RateLimitError(
                user_id,
                self.rate_limiter.limit,
                int(self.rate_limiter.window_seconds),
                retry_after,
            )

        track = self._require_track(track_id)
        quality_tier = self._resolve_tier(tier)

        session = self.sessions.create(user_id, track.id, quality_tier, track.duration)
        stream = self.quality_policy.generate_stream_url(track.id, session.session_id, quality_tier)

        logger.info(f"Playback started for track {track.id} by user {user_id} ({quality_tier.value})")
        self._publish([PlayStarted(
            session_id=session.session_id,
            track_id=track.id,
            occurred_at=session.started_at,
            user_id=user_id,
            tier=quality_tier.value,
        )])

        return {
            "session_id": session.session_id,
            "stream_url": stream["stream_url"],
            "config": stream["config"],
            "tier": quality_tier.value,
            "state": session.state.value,
            "started_at": iso_timestamp(session.started_at),
        }

    def update_playback_progress(
        self,
        session_id: str,
        current_time: float,
        total_duration: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Record listening progress.

        A report at or beyond the tier's preview cap ends the session as
        ENDED_INVALID and sets preview_limit_reached so the client stops.

        Raises:
            ValidationError: Malformed id or progress values
            NotFoundError: Unknown or already-ended session
            ExpiredError: Session timed out
        """
        session_id = validate_identifier(session_id, "session_id")
        self.state_machine.validate_progress(current_time, total_duration)

        events: List[DomainEvent] = []
        expired = False
        with self.sessions.locked(session_id):
            session = self.sessions.require(session_id)
            now = self.clock()

            if session.state == SessionState.EXPIRED:
                expired = True
            elif session.is_stale(now, self.settings.SESSION_TIMEOUT_SECONDS):
                events.append(self._expire_locked(session, now))
                expired = True
            elif session.is_terminal:
                raise NotFoundError(
                    f"Playback session {session_id} has already ended",
                    {"session_id": session_id, "state": session.state.value},
                )
            else:
                quality = self.quality_policy.get_streaming_quality(session.tier)
                preview_hit = self.state_machine.record_progress(
                    session, current_time, total_duration, quality, now
                )
                self.sessions.save(session)
                if preview_hit:
                    logger.info(f"Session {session_id} hit the {quality.quality_id} preview limit")
                    events.append(self._ended_event(session, now))

        self._publish(events)
        if expired:
            raise ExpiredError(session_id)

        return {
            "session_id": session.session_id,
            "state": session.state.value,
            "current_time": session.current_time,
            "total_duration": session.total_duration,
            "max_duration_seconds": quality.max_duration_seconds,
            "preview_limit_reached": preview_hit,
            "eligible": not session.is_terminal and self.state_machine.is_valid_play(session),
        }

    def end_playback(self, session_id: str) -> Dict[str, Any]:
        """
        Finish a session and credit royalties if the play was valid.

        Idempotent: a session that already ended returns its cached outcome
        without being re-evaluated or re-credited.

        Raises:
            ValidationError: Malformed id
            NotFoundError: Unknown session (or its track vanished)
            ExpiredError: Session timed out
            LedgerConsistencyError: Crediting failed; the session stays open
        """
        session_id = validate_identifier(session_id, "session_id")

        events: List[DomainEvent] = []
        expired = False
        with self.sessions.locked(session_id):
            session = self.sessions.require(session_id)
            now = self.clock()

            if session.state == SessionState.EXPIRED:
                expired = True
            elif session.is_terminal:
                logger.debug(f"endPlayback replay for session {session_id}")
                return dict(session.outcome or self.state_machine.build_outcome(session))
            elif session.is_stale(now, self.settings.SESSION_TIMEOUT_SECONDS):
                events.append(self._expire_locked(session, now))
                expired = True
            else:
                previous = session.to_dict()
                valid = self.state_machine.finish(session, now)

                if valid:
                    track = self._require_track(session.track_id)

                    def commit(record: RoyaltyRecord) -> None:
                        session.outcome = self.state_machine.build_outcome(session, str(record.amount))
                        self.sessions.commit_valid_end(session, previous)

                    record = self.ledger.credit(session, track, commit)
                    events.append(self._ended_event(session, now))
                    events.append(RoyaltyCredited(
                        session_id=session_id,
                        track_id=track.id,
                        occurred_at=record.timestamp,
                        amount=str(record.amount),
                        split=[s.to_dict() for s in record.per_recipient_split],
                    ))
                else:
                    session.outcome = self.state_machine.build_outcome(session)
                    self.sessions.save(session)
                    events.append(self._ended_event(session, now))

                logger.info(
                    f"Playback ended for session {session_id}: {session.state.value} "
                    f"({session.current_time:.1f}s listened)"
                )

        self._publish(events)
        if expired:
            raise ExpiredError(session_id)
        return dict(session.outcome)

    def sweep_expired_sessions(self) -> int:
        """
        Expire every open session with no progress within the timeout.

        Safe to run concurrently with itself: each candidate is re-checked
        under its session lock, so a session is expired at most once.

        Returns:
            Number of sessions this run expired
        """
        now = self.clock()
        events: List[DomainEvent] = []

        for session_id in self.sessions.find_stale(now):
            try:
                with self.sessions.locked(session_id):
                    session = self.sessions.get(session_id)
                    if session is None or not session.is_stale(now, self.settings.SESSION_TIMEOUT_SECONDS):
                        continue
                    events.append(self._expire_locked(session, now))
            except SessionBusyError:
                # A request handler holds the session; the next sweep re-checks it
                logger.debug(f"Sweep skipped busy session {session_id}")

        self._publish(events)
        if events:
            logger.info(f"Sweep expired {len(events)} session(s)")
        return len(events)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Dict[str, Any]:
        session_id = validate_identifier(session_id, "session_id")
        return self.sessions.require(session_id).to_public_dict()

    def get_track_stats(self, track_id: str) -> Dict[str, Any]:
        """Total plays, royalties and distinct listeners for a track"""
        track_id = validate_identifier(track_id, "track_id")
        track = self._require_track(track_id)
        stats = self.ledger.get_track_stats(track.id)
        stats["owner_id"] = track.owner_id
        return stats

    def get_track(self, track_id: str) -> Dict[str, Any]:
        """Catalog track with its royalty counters taken from the ledger"""
        track_id = validate_identifier(track_id, "track_id")
        return self.ledger.apply_totals(self._require_track(track_id)).to_dict()

    def authorize_stream(self, track_id: str, session_id: str, quality_id: Any = QualityTier.FREE) -> Dict[str, Any]:
        """
        Check a stream request against its playback session.

        The session must be open and belong to track_id, and its tier must
        allow the requested quality. Delivering the audio bytes is left to
        the storage/CDN layer in front of this check.

        Returns:
            Quality config to stream with

        Raises:
            ValidationError: Malformed id, or quality above the session's tier
            NotFoundError: Unknown session, session for another track, or ended session
            ExpiredError: Session timed out
        """
        track_id = validate_identifier(track_id, "track_id")
        session_id = validate_identifier(session_id, "session_id")
        quality = self.quality_policy.get_streaming_quality(quality_id)

        events: List[DomainEvent] = []
        expired = False
        with self.sessions.locked(session_id):
            session = self.sessions.require(session_id)
            now = self.clock()

            if session.track_id != track_id:
                raise NotFoundError(
                    f"Playback session {session_id} is not for track {track_id}",
                    {"session_id": session_id, "track_id": track_id},
                )
            if session.state == SessionState.EXPIRED:
                expired = True
            elif session.is_stale(now, self.settings.SESSION_TIMEOUT_SECONDS):
                events.append(self._expire_locked(session, now))
                expired = True
            elif session.is_terminal:
                raise NotFoundError(
                    f"Playback session {session_id} has already ended",
                    {"session_id": session_id, "state": session.state.value},
                )
            elif not self.quality_policy.is_quality_allowed(session.tier, quality.quality_id):
                raise ValidationError(
                    f"Quality {quality.quality_id} is not available on the {session.tier.value} tier",
                    {"session_id": session_id, "quality_id": quality.quality_id, "tier": session.tier.value},
                )

        self._publish(events)
        if expired:
            raise ExpiredError(session_id)
        return quality.to_dict()

    def get_user_play_history(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent valid plays for a user, newest first"""
        user_id = validate_identifier(user_id, "user_id")
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}", {"field": "limit"})

        history = self.sessions.user_history(user_id, limit)
        for entry in history:
            entry["started_at"] = iso_timestamp(entry.get("started_at"))
            entry["ended_at"] = iso_timestamp(entry.get("ended_at"))
        return history

    def get_artist_earnings(self, artist_id: str) -> Dict[str, Any]:
        artist_id = validate_identifier(artist_id, "artist_id")
        return self.ledger.get_artist_earnings(artist_id)

    def get_streaming_quality(self, quality_id: Any, strict: bool = False) -> Dict[str, Any]:
        """
        Quality config for a tier.

        Unknown ids fall back to free unless strict, in which case
        InvalidQualityError propagates.
        """
        if strict:
            return self.quality_policy.get_streaming_quality(quality_id).to_dict()
        return self.quality_policy.get_streaming_quality(self._resolve_tier(quality_id)).to_dict()

    def generate_stream_url(self, track_id: str, session_id: str, quality_id: Any = QualityTier.FREE) -> Dict[str, Any]:
        track_id = validate_identifier(track_id, "track_id")
        session_id = validate_identifier(session_id, "session_id")
        return self.quality_policy.generate_stream_url(track_id, session_id, self._resolve_tier(quality_id))

    def get_quality_options(self, user_tier: Any) -> Dict[str, Any]:
        tier = self._resolve_tier(user_tier)
        return {"user_tier": tier.value, "qualities": self.quality_policy.get_quality_options(tier)}

    def resume_track_crediting(self, track_id: str) -> bool:
        """Lift a ledger halt after manual reconciliation"""
        track_id = validate_identifier(track_id, "track_id")
        return self.ledger.resume_track(track_id)

    def get_service_status(self) -> Dict[str, Any]:
        return {
            "service": "Audio Streaming Service",
            "status": "operational",
            "sessions": self.sessions.count_by_state(),
            "halted_tracks": sorted(self.ledger.halted_tracks()),
            "supported_formats": sorted({c["format"] for c in self.quality_policy.get_quality_options(QualityTier.HIFI)}),
            "quality_tiers": [t.value for t in QualityTier],
            "config": self.settings.get_engine_info(),
        }
