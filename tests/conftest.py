#!/usr/bin/env python3
"""
Pytest Configuration and Shared Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
import sys
import os
import itertools

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from playback.catalog import InMemoryTrackCatalog
from playback.events import InMemoryEventBus
from playback.service import PlaybackService
from playback.storage import InMemoryKeyValueStore


# ============================================================================
# CLOCK
# ============================================================================

class FakeClock:
    """Manually advanced clock shared by every engine component"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ============================================================================
# ENGINE FIXTURES
# ============================================================================

@pytest.fixture
def test_settings():
    """Default engine settings with the background sweeper disabled"""
    return Settings(SWEEPER_ENABLED=False)


@pytest.fixture
def store(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def catalog():
    """
    Catalog with:
    - track_1: 180s, artist_1 80% / producer_1 20%
    - track_2: 240s, artist_1 100%
    - track_3: 200s, label_1 70% / artist_2 20% / curator_1 10%
    """
    catalog = InMemoryTrackCatalog()
    catalog.add_track(
        "track_1",
        owner_id="artist_1",
        royalty_recipients=[
            {"address": "artist_1", "percentage": 0.8},
            {"address": "producer_1", "percentage": 0.2},
        ],
        duration=180.0,
    )
    catalog.add_track(
        "track_2",
        owner_id="artist_1",
        royalty_recipients=[{"address": "artist_1", "percentage": 1}],
        duration=240.0,
    )
    catalog.add_track(
        "track_3",
        owner_id="label_1",
        royalty_recipients=[
            {"address": "label_1", "percentage": "0.7"},
            {"address": "artist_2", "percentage": "0.2"},
            {"address": "curator_1", "percentage": "0.1"},
        ],
        duration=200.0,
    )
    return catalog


@pytest.fixture
def event_bus():
    return InMemoryEventBus()


@pytest.fixture
def service(catalog, store, test_settings, clock, event_bus):
    """Fully wired in-memory PlaybackService on the fake clock"""
    return PlaybackService(
        catalog=catalog,
        store=store,
        settings=test_settings,
        clock=clock,
        publisher=event_bus,
    )


@pytest.fixture
def sequential_ids():
    """Deterministic session id factory: sess-1, sess-2, ..."""
    counter = itertools.count(1)
    return lambda: f"sess-{next(counter)}"


# ============================================================================
# FASTAPI TEST CLIENT FIXTURES
# ============================================================================

@pytest.fixture
def app(service):
    """Create FastAPI application for testing"""
    from web_ui.api.main import create_app
    return create_app(service=service)


@pytest.fixture
def client(app):
    """Create synchronous test client"""
    from fastapi.testclient import TestClient
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# PYTEST CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Configure pytest markers"""
    config.addinivalue_line(
        "markers", "concurrency: marks tests that hammer the engine from many threads"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
