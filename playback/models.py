"""
Playback Data Models

Defines the core data structures shared by the session store, the royalty
ledger and the service layer. All models round-trip through plain dicts so
they can live in any key-value backend.

Money is always Decimal in memory and a decimal string once serialized.
Timestamps are epoch seconds as produced by the injected clock.
"""

from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any


class QualityTier(str, Enum):
    """
    Streaming quality tiers.

    - FREE: 128kbps mp3, capped to the preview length
    - PREMIUM: 320kbps mp3, full track
    - HIFI: 1411kbps flac (lossless), full track
    """
    FREE = "free"
    PREMIUM = "premium"
    HIFI = "hifi"


class SessionState(str, Enum):
    """Playback session lifecycle states"""
    STARTED = "started"
    ACTIVE = "active"
    ENDED_VALID = "ended_valid"
    ENDED_INVALID = "ended_invalid"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    SessionState.ENDED_VALID,
    SessionState.ENDED_INVALID,
    SessionState.EXPIRED,
})


class EndReason(str, Enum):
    """Why a session reached its terminal state"""
    COMPLETED = "completed"            # endPlayback, validity threshold met
    BELOW_THRESHOLD = "below_threshold"  # endPlayback, not listened long enough
    PREVIEW_LIMIT = "preview_limit"    # tier cap reached during progress
    TIMEOUT = "timeout"                # no progress within the session timeout


def iso_timestamp(ts: Optional[float]) -> Optional[str]:
    """Render an epoch timestamp as an ISO-8601 UTC string"""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class QualityConfig:
    """Audio delivery settings for one quality tier"""
    quality_id: str
    bitrate: int
    format: str
    max_duration_seconds: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quality_id": self.quality_id,
            "bitrate": self.bitrate,
            "format": self.format,
            "max_duration_seconds": self.max_duration_seconds,
        }


@dataclass(frozen=True)
class RoyaltyRecipient:
    """A royalty recipient and their share as a fraction in [0, 1]"""
    address: str
    percentage: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "percentage": str(self.percentage)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoyaltyRecipient':
        return cls(address=data["address"], percentage=Decimal(str(data["percentage"])))


@dataclass
class Track:
    """
    A catalog track as seen by the engine.

    Ownership and metadata belong to the catalog collaborator; only the
    royalty counters are maintained here (by the ledger).
    """
    id: str
    owner_id: str
    royalty_recipients: List[RoyaltyRecipient] = field(default_factory=list)
    duration: Optional[float] = None
    total_plays: int = 0
    total_royalties_accrued: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "royalty_recipients": [r.to_dict() for r in self.royalty_recipients],
            "duration": self.duration,
            "total_plays": self.total_plays,
            "total_royalties_accrued": str(self.total_royalties_accrued),
        }


@dataclass
class PlaybackSession:
    """One listening session from start to terminal state"""
    session_id: str
    user_id: str
    track_id: str
    tier: QualityTier
    started_at: float
    last_progress_at: float
    current_time: float = 0.0
    total_duration: Optional[float] = None
    state: SessionState = SessionState.STARTED
    ended_at: Optional[float] = None
    end_reason: Optional[EndReason] = None
    # Cached terminal result, returned verbatim on repeated endPlayback calls
    outcome: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def is_stale(self, now: float, timeout_seconds: float) -> bool:
        """True when the session has gone without progress for longer than the timeout"""
        return not self.is_terminal and (now - self.last_progress_at) > timeout_seconds

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "track_id": self.track_id,
            "tier": self.tier.value,
            "started_at": self.started_at,
            "last_progress_at": self.last_progress_at,
            "current_time": self.current_time,
            "total_duration": self.total_duration,
            "state": self.state.value,
            "ended_at": self.ended_at,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PlaybackSession':
        """Create from stored dictionary"""
        end_reason = data.get("end_reason")
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            track_id=data["track_id"],
            tier=QualityTier(data["tier"]),
            started_at=data["started_at"],
            last_progress_at=data["last_progress_at"],
            current_time=data.get("current_time", 0.0),
            total_duration=data.get("total_duration"),
            state=SessionState(data.get("state", SessionState.STARTED.value)),
            ended_at=data.get("ended_at"),
            end_reason=EndReason(end_reason) if end_reason else None,
            outcome=data.get("outcome"),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Session view returned to API callers"""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "track_id": self.track_id,
            "tier": self.tier.value,
            "state": self.state.value,
            "current_time": self.current_time,
            "total_duration": self.total_duration,
            "started_at": iso_timestamp(self.started_at),
            "last_progress_at": iso_timestamp(self.last_progress_at),
            "ended_at": iso_timestamp(self.ended_at),
            "end_reason": self.end_reason.value if self.end_reason else None,
        }


@dataclass(frozen=True)
class RecipientShare:
    """One recipient's cut of a single payout"""
    recipient: str
    amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"recipient": self.recipient, "amount": str(self.amount)}


@dataclass
class RoyaltyRecord:
    """Ledger entry written exactly once per valid play"""
    track_id: str
    session_id: str
    listener_id: str
    tier: QualityTier
    amount: Decimal
    per_recipient_split: List[RecipientShare]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            "session_id": self.session_id,
            "listener_id": self.listener_id,
            "tier": self.tier.value,
            "amount": str(self.amount),
            "per_recipient_split": [s.to_dict() for s in self.per_recipient_split],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RoyaltyRecord':
        return cls(
            track_id=data["track_id"],
            session_id=data["session_id"],
            listener_id=data["listener_id"],
            tier=QualityTier(data["tier"]),
            amount=Decimal(data["amount"]),
            per_recipient_split=[
                RecipientShare(recipient=s["recipient"], amount=Decimal(s["amount"]))
                for s in data.get("per_recipient_split", [])
            ],
            timestamp=data["timestamp"],
        )

    def to_public_dict(self) -> Dict[str, Any]:
        payload = self.to_dict()
        payload["timestamp"] = iso_timestamp(self.timestamp)
        return payload
