"""
Playback Session & Royalty Accrual Engine for FlowTune

Turns raw client listen events into verified plays and credits royalty
recipients exactly once per valid play:
- Tier-based quality and preview limits (free / premium / hifi)
- Per-session state machine with passive expiry
- Exactly-once, exact-sum royalty splits per valid play
- Per-user quota on starting playback (anti play-farming)

Architecture:
- PlaybackService is the only entry point the HTTP layer calls
- Storage, track catalog, rate-limit counter and event publisher are
  injected interfaces with in-memory implementations bundled
"""

from playback.errors import (
    PlaybackError,
    ValidationError,
    InvalidQualityError,
    NotFoundError,
    ExpiredError,
    RateLimitError,
    SessionBusyError,
    InvalidTransitionError,
    LedgerConsistencyError,
)
from playback.models import (
    QualityTier,
    SessionState,
    EndReason,
    QualityConfig,
    RoyaltyRecipient,
    Track,
    PlaybackSession,
    RecipientShare,
    RoyaltyRecord,
)
from playback.storage import KeyValueStore, InMemoryKeyValueStore
from playback.catalog import (
    TrackCatalog,
    InMemoryTrackCatalog,
    PercentageScale,
    normalize_recipients,
)
from playback.events import (
    DomainEvent,
    PlayStarted,
    PlayEnded,
    RoyaltyCredited,
    EventPublisher,
    NullEventPublisher,
    InMemoryEventBus,
)
from playback.rate_limiter import SlidingWindowCounter, InMemorySlidingWindowCounter
from playback.quality_policy import QualityPolicy
from playback.session_state import PlaybackStateMachine
from playback.session_store import SessionStore
from playback.royalty_ledger import RoyaltyLedger
from playback.service import PlaybackService
from playback.sweeper import SessionSweeper

__all__ = [
    # Errors
    'PlaybackError',
    'ValidationError',
    'InvalidQualityError',
    'NotFoundError',
    'ExpiredError',
    'RateLimitError',
    'SessionBusyError',
    'InvalidTransitionError',
    'LedgerConsistencyError',
    # Models
    'QualityTier',
    'SessionState',
    'EndReason',
    'QualityConfig',
    'RoyaltyRecipient',
    'Track',
    'PlaybackSession',
    'RecipientShare',
    'RoyaltyRecord',
    # Collaborator interfaces
    'KeyValueStore',
    'InMemoryKeyValueStore',
    'TrackCatalog',
    'InMemoryTrackCatalog',
    'PercentageScale',
    'normalize_recipients',
    'SlidingWindowCounter',
    'InMemorySlidingWindowCounter',
    # Events
    'DomainEvent',
    'PlayStarted',
    'PlayEnded',
    'RoyaltyCredited',
    'EventPublisher',
    'NullEventPublisher',
    'InMemoryEventBus',
    # Engine
    'QualityPolicy',
    'PlaybackStateMachine',
    'SessionStore',
    'RoyaltyLedger',
    'PlaybackService',
    'SessionSweeper',
]
