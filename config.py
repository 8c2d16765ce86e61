"""Configuration management using Pydantic settings"""

import os
from decimal import Decimal
from typing import Dict, Optional

from pydantic_settings import BaseSettings


# Server configuration defaults (overridable from the environment)
DEFAULT_HOST = os.getenv("FLOWTUNE_HOST", "localhost")
DEFAULT_PORT = int(os.getenv("FLOWTUNE_PORT", "8000"))


class Settings(BaseSettings):
    """Playback engine settings"""

    # Quality tiers
    FREE_PREVIEW_SECONDS: int = 30
    FREE_BITRATE: int = 128
    PREMIUM_BITRATE: int = 320
    HIFI_BITRATE: int = 1411

    # Play validity
    # A play is valid once EITHER threshold is crossed
    VALIDITY_THRESHOLD: float = 0.5
    MIN_VALID_SECONDS: float = 30.0

    # Session lifecycle
    SESSION_TIMEOUT_SECONDS: int = 600
    SWEEP_INTERVAL_SECONDS: int = 60
    TERMINAL_RETENTION_SECONDS: int = 7 * 24 * 3600
    LOCK_TIMEOUT_SECONDS: float = 5.0

    # Royalties (amounts in FLOW)
    PER_PLAY_RATE: Decimal = Decimal("0.001")
    MONEY_UNIT: Decimal = Decimal("0.00000001")
    FREE_QUALITY_MULTIPLIER: Decimal = Decimal("0.5")
    PREMIUM_QUALITY_MULTIPLIER: Decimal = Decimal("1.0")
    HIFI_QUALITY_MULTIPLIER: Decimal = Decimal("1.5")
    RECENT_RECORDS_LIMIT: int = 10

    # Anti-farming quota on startPlayback
    PLAY_RATE_LIMIT: int = 10
    PLAY_RATE_WINDOW_SECONDS: int = 60

    # Streaming
    STREAM_BASE_URL: str = "/api/v1/audio"

    # Background sweeper (disable for tests / external schedulers)
    SWEEPER_ENABLED: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True

    def model_post_init(self, __context) -> None:
        """Reject settings that would make the engine misbehave"""
        if not 0 < self.VALIDITY_THRESHOLD <= 1:
            raise ValueError("VALIDITY_THRESHOLD must be in (0, 1]")
        if self.MONEY_UNIT <= 0:
            raise ValueError("MONEY_UNIT must be positive")
        if self.PLAY_RATE_LIMIT < 1 or self.PLAY_RATE_WINDOW_SECONDS < 1:
            raise ValueError("play rate limit and window must be at least 1")
        if self.SESSION_TIMEOUT_SECONDS < 1 or self.SWEEP_INTERVAL_SECONDS < 1:
            raise ValueError("session timeout and sweep interval must be at least 1 second")

    def quality_multipliers(self) -> Dict[str, Decimal]:
        """Payout multiplier per quality tier"""
        return {
            "free": self.FREE_QUALITY_MULTIPLIER,
            "premium": self.PREMIUM_QUALITY_MULTIPLIER,
            "hifi": self.HIFI_QUALITY_MULTIPLIER,
        }

    def get_engine_info(self) -> dict:
        """Get engine configuration summary for the status API"""
        return {
            "free_preview_seconds": self.FREE_PREVIEW_SECONDS,
            "validity_threshold": self.VALIDITY_THRESHOLD,
            "min_valid_seconds": self.MIN_VALID_SECONDS,
            "session_timeout_seconds": self.SESSION_TIMEOUT_SECONDS,
            "sweep_interval_seconds": self.SWEEP_INTERVAL_SECONDS,
            "per_play_rate": str(self.PER_PLAY_RATE),
            "play_rate_limit": self.PLAY_RATE_LIMIT,
            "play_rate_window_seconds": self.PLAY_RATE_WINDOW_SECONDS,
        }


# Global settings instance
settings = Settings()
