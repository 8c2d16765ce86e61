"""
Quality Policy - Maps subscription tiers to audio delivery settings

Pure lookups over configuration:
- Per-tier bitrate, format and preview cap
- Payout multiplier per tier
- Which qualities a subscriber may pick
- Stream URL generation

Usage:
    policy = QualityPolicy()
    config = policy.get_streaming_quality('premium')
    if config.max_duration_seconds is not None:
        enforce_preview(config.max_duration_seconds)
"""

from decimal import Decimal
from typing import Dict, List, Optional, Union
from urllib.parse import quote, urlencode

from config import Settings, settings as default_settings
from playback.errors import InvalidQualityError
from playback.models import QualityConfig, QualityTier


class QualityPolicy:
    """
    Resolves quality tiers to delivery settings.

    Holds no mutable state; safe to share across threads.
    """

    # Tier hierarchy for comparison (higher = better audio)
    QUALITY_HIERARCHY = {
        QualityTier.FREE: 0,
        QualityTier.PREMIUM: 1,
        QualityTier.HIFI: 2,
    }

    DISPLAY_NAMES = {
        QualityTier.FREE: ("Preview ({bitrate}kbps)", "{preview}-second preview"),
        QualityTier.PREMIUM: ("High Quality ({bitrate}kbps)", "Full track, high quality"),
        QualityTier.HIFI: ("Lossless ({bitrate}kbps)", "Studio quality, lossless"),
    }

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self._configs: Dict[QualityTier, QualityConfig] = {
            QualityTier.FREE: QualityConfig(
                quality_id=QualityTier.FREE.value,
                bitrate=self.settings.FREE_BITRATE,
                format="mp3",
                max_duration_seconds=self.settings.FREE_PREVIEW_SECONDS,
            ),
            QualityTier.PREMIUM: QualityConfig(
                quality_id=QualityTier.PREMIUM.value,
                bitrate=self.settings.PREMIUM_BITRATE,
                format="mp3",
            ),
            QualityTier.HIFI: QualityConfig(
                quality_id=QualityTier.HIFI.value,
                bitrate=self.settings.HIFI_BITRATE,
                format="flac",
            ),
        }

    @staticmethod
    def parse_tier(quality_id: Union[str, QualityTier, None]) -> QualityTier:
        """
        Parse a quality id into a QualityTier.

        Raises:
            InvalidQualityError: If the id is not a known tier
        """
        if isinstance(quality_id, QualityTier):
            return quality_id
        if isinstance(quality_id, str):
            try:
                return QualityTier(quality_id.strip().lower())
            except ValueError:
                pass
        raise InvalidQualityError(quality_id)

    def get_streaming_quality(self, quality_id: Union[str, QualityTier]) -> QualityConfig:
        """
        Get delivery settings for a quality tier.

        Args:
            quality_id: 'free', 'premium' or 'hifi'

        Returns:
            QualityConfig for the tier

        Raises:
            InvalidQualityError: For unknown ids (callers fall back to 'free')
        """
        return self._configs[self.parse_tier(quality_id)]

    def quality_multiplier(self, quality_id: Union[str, QualityTier]) -> Decimal:
        """Payout multiplier applied to the per-play rate for this tier"""
        tier = self.parse_tier(quality_id)
        return self.settings.quality_multipliers()[tier.value]

    def is_quality_allowed(self, user_tier: Union[str, QualityTier], quality_id: Union[str, QualityTier]) -> bool:
        """Check whether a subscriber on user_tier may stream at quality_id"""
        current_level = self.QUALITY_HIERARCHY[self.parse_tier(user_tier)]
        required_level = self.QUALITY_HIERARCHY[self.parse_tier(quality_id)]
        return current_level >= required_level

    def get_quality_options(self, user_tier: Union[str, QualityTier]) -> List[dict]:
        """
        List every quality with its availability for a subscriber.

        Returns:
            One dict per tier (lowest first) with an 'available' flag
        """
        options = []
        for tier in sorted(self._configs, key=lambda t: self.QUALITY_HIERARCHY[t]):
            config = self._configs[tier]
            name, description = self.DISPLAY_NAMES[tier]
            options.append({
                "id": tier.value,
                "name": name.format(bitrate=config.bitrate),
                "bitrate": config.bitrate,
                "format": config.format,
                "available": self.is_quality_allowed(user_tier, tier),
                "description": description.format(preview=config.max_duration_seconds),
            })
        return options

    def generate_stream_url(
        self,
        track_id: str,
        session_id: str,
        quality_id: Union[str, QualityTier] = QualityTier.FREE,
    ) -> dict:
        """
        Build the stream descriptor handed to the client.

        Returns:
            Dict with stream_url, session_id and the quality config
        """
        config = self.get_streaming_quality(quality_id)
        query = urlencode({"quality": config.quality_id, "session": session_id})
        base = self.settings.STREAM_BASE_URL.rstrip("/")
        return {
            "stream_url": f"{base}/stream/{quote(track_id, safe='')}?{query}",
            "session_id": session_id,
            "config": config.to_dict(),
        }
