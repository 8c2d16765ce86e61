"""
Track Catalog

The catalog (minting / NFT metadata) is an external collaborator. The engine
only needs read_track() to validate a track id and to know how royalties
are split.

Royalty percentages are canonical fractions in [0, 1]. Sources that store
0-100 percentages must say so when ingesting (PercentageScale.PERCENT);
the engine never guesses which convention a caller meant.
"""

import threading
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from playback.errors import ValidationError
from playback.models import RoyaltyRecipient, Track


PERCENTAGE_TOLERANCE = Decimal("0.000001")


class PercentageScale(str, Enum):
    """Convention a data source uses for royalty percentages"""
    FRACTION = "fraction"  # 0.8 means 80%
    PERCENT = "percent"    # 80 means 80%


def normalize_recipients(
    raw: Iterable[Union[Dict[str, Any], RoyaltyRecipient]],
    scale: PercentageScale = PercentageScale.FRACTION,
) -> List[RoyaltyRecipient]:
    """
    Convert raw recipient entries into canonical fraction form.

    Args:
        raw: Dicts with 'address' and 'percentage', or RoyaltyRecipient objects
        scale: Convention the source used for 'percentage'

    Returns:
        Recipients in input order with Decimal fractions

    Raises:
        ValidationError: For empty lists, blank or duplicate addresses,
            non-numeric values or fractions outside [0, 1]
    """
    divisor = Decimal("100") if scale == PercentageScale.PERCENT else Decimal("1")
    recipients: List[RoyaltyRecipient] = []
    seen = set()

    for entry in raw:
        if isinstance(entry, RoyaltyRecipient):
            address, value = entry.address, entry.percentage
        else:
            address, value = entry.get("address"), entry.get("percentage")

        if not isinstance(address, str) or not address.strip():
            raise ValidationError("Royalty recipient address is required", {"field": "address"})
        address = address.strip()
        if ":" in address:
            raise ValidationError(f"Malformed royalty recipient address {address}", {"address": address})
        if address in seen:
            raise ValidationError(f"Duplicate royalty recipient {address}", {"address": address})
        seen.add(address)

        if isinstance(value, bool):
            raise ValidationError(f"Invalid percentage for {address}", {"address": address})
        try:
            fraction = Decimal(str(value)) / divisor
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid percentage for {address}", {"address": address})
        if not fraction.is_finite() or fraction < 0 or fraction > 1:
            raise ValidationError(
                f"Percentage for {address} must be within [0, 1] after normalization",
                {"address": address, "percentage": str(value), "scale": scale.value},
            )
        recipients.append(RoyaltyRecipient(address=address, percentage=fraction))

    if not recipients:
        raise ValidationError("At least one royalty recipient is required", {"field": "royalty_recipients"})
    return recipients


def percentages_sum_ok(recipients: Iterable[RoyaltyRecipient]) -> bool:
    total = sum((r.percentage for r in recipients), Decimal("0"))
    return abs(total - Decimal("1")) <= PERCENTAGE_TOLERANCE


class TrackCatalog(ABC):
    """Read-only view of the track catalog"""

    @abstractmethod
    def read_track(self, track_id: str) -> Optional[Track]:
        """Return the track, or None when the id does not resolve"""
        pass


class InMemoryTrackCatalog(TrackCatalog):
    """
    Dict-backed catalog for tests and single-process deployments.

    The percentage scale is fixed per catalog instance and applied to every
    track added through add_track().
    """

    def __init__(self, percentage_scale: PercentageScale = PercentageScale.FRACTION):
        self.percentage_scale = percentage_scale
        self._tracks: Dict[str, Track] = {}
        self._lock = threading.Lock()

    def add_track(
        self,
        track_id: str,
        owner_id: str,
        royalty_recipients: Iterable[Union[Dict[str, Any], RoyaltyRecipient]],
        duration: Optional[float] = None,
    ) -> Track:
        """Register a track, normalizing its recipients on the way in"""
        if not isinstance(track_id, str) or not track_id.strip():
            raise ValidationError("track_id is required", {"field": "track_id"})
        recipients = normalize_recipients(royalty_recipients, self.percentage_scale)
        if not percentages_sum_ok(recipients):
            raise ValidationError(
                f"Royalty percentages for {track_id} must sum to 1.0",
                {"track_id": track_id, "recipients": [r.to_dict() for r in recipients]},
            )
        track = Track(
            id=track_id.strip(),
            owner_id=owner_id,
            royalty_recipients=recipients,
            duration=duration,
        )
        with self._lock:
            self._tracks[track.id] = track
        return track

    def read_track(self, track_id: str) -> Optional[Track]:
        with self._lock:
            track = self._tracks.get(track_id)
        if track is None:
            return None
        return Track(
            id=track.id,
            owner_id=track.owner_id,
            royalty_recipients=list(track.royalty_recipients),
            duration=track.duration,
        )

    def remove_track(self, track_id: str) -> bool:
        with self._lock:
            return self._tracks.pop(track_id, None) is not None
