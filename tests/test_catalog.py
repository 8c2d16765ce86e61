#!/usr/bin/env python3
"""
Track Catalog Tests

Recipient normalization and percentage scale handling.
"""

import pytest
from decimal import Decimal

from playback.catalog import (
    InMemoryTrackCatalog,
    PercentageScale,
    normalize_recipients,
    percentages_sum_ok,
)
from playback.errors import ValidationError
from playback.models import RoyaltyRecipient


class TestNormalizeRecipients:

    def test_fractions_are_kept(self):
        recipients = normalize_recipients([
            {"address": "a", "percentage": 0.8},
            {"address": "b", "percentage": "0.2"},
        ])
        assert [r.percentage for r in recipients] == [Decimal("0.8"), Decimal("0.2")]

    def test_percent_scale_is_divided(self):
        recipients = normalize_recipients(
            [{"address": "a", "percentage": 80}, {"address": "b", "percentage": 20}],
            PercentageScale.PERCENT,
        )
        assert [r.percentage for r in recipients] == [Decimal("0.8"), Decimal("0.2")]
        assert percentages_sum_ok(recipients)

    def test_percent_values_in_fraction_catalog_rejected(self):
        with pytest.raises(ValidationError):
            normalize_recipients([{"address": "a", "percentage": 80}])

    def test_accepts_recipient_objects(self):
        recipients = normalize_recipients([RoyaltyRecipient("a", Decimal("1"))])
        assert recipients[0].address == "a"

    def test_order_is_preserved(self):
        recipients = normalize_recipients([
            {"address": "z", "percentage": "0.5"},
            {"address": "a", "percentage": "0.5"},
        ])
        assert [r.address for r in recipients] == ["z", "a"]

    @pytest.mark.parametrize("raw", [
        [],
        [{"address": "", "percentage": 1}],
        [{"percentage": 1}],
        [{"address": "a:b", "percentage": 1}],
        [{"address": "a", "percentage": 0.5}, {"address": "a", "percentage": 0.5}],
        [{"address": "a", "percentage": True}],
        [{"address": "a", "percentage": "lots"}],
        [{"address": "a", "percentage": None}],
        [{"address": "a", "percentage": -0.1}, {"address": "b", "percentage": 1.1}],
        [{"address": "a", "percentage": "NaN"}],
    ])
    def test_rejects_bad_entries(self, raw):
        with pytest.raises(ValidationError):
            normalize_recipients(raw)


class TestPercentagesSum:

    def test_within_tolerance(self):
        recipients = [
            RoyaltyRecipient("a", Decimal("0.3333333")),
            RoyaltyRecipient("b", Decimal("0.3333333")),
            RoyaltyRecipient("c", Decimal("0.3333334")),
        ]
        assert percentages_sum_ok(recipients)

    def test_off_by_a_percent(self):
        assert not percentages_sum_ok([RoyaltyRecipient("a", Decimal("0.99"))])


class TestInMemoryTrackCatalog:

    def test_add_and_read(self, catalog):
        track = catalog.read_track("track_1")
        assert track.owner_id == "artist_1"
        assert track.duration == 180.0
        assert [r.address for r in track.royalty_recipients] == ["artist_1", "producer_1"]

    def test_unknown_track_is_none(self, catalog):
        assert catalog.read_track("missing") is None

    def test_read_returns_copy(self, catalog):
        track = catalog.read_track("track_1")
        track.royalty_recipients.clear()
        assert len(catalog.read_track("track_1").royalty_recipients) == 2

    def test_sum_must_be_one(self):
        catalog = InMemoryTrackCatalog()
        with pytest.raises(ValidationError):
            catalog.add_track("t", "o", [{"address": "a", "percentage": 0.5}])

    def test_percent_catalog(self):
        catalog = InMemoryTrackCatalog(PercentageScale.PERCENT)
        track = catalog.add_track("t", "o", [
            {"address": "a", "percentage": 70},
            {"address": "b", "percentage": 30},
        ])
        assert track.royalty_recipients[1].percentage == Decimal("0.3")

    def test_remove_track(self, catalog):
        assert catalog.remove_track("track_2") is True
        assert catalog.read_track("track_2") is None
        assert catalog.remove_track("track_2") is False
