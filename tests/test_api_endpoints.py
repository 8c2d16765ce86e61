#!/usr/bin/env python3
"""
HTTP API Endpoint Tests for FlowTune Playback

Drives the REST endpoints through FastAPI's TestClient against an
in-memory engine on a fake clock.
"""

from decimal import Decimal

import pytest


API = "/api/v1/audio"


def start(client, user_id="user_1", track_id="track_1", tier="premium"):
    return client.post(f"{API}/play/start", json={"user_id": user_id, "track_id": track_id, "tier": tier})


def progress(client, session_id, current_time, total_duration=None):
    body = {"session_id": session_id, "current_time": current_time}
    if total_duration is not None:
        body["total_duration"] = total_duration
    return client.post(f"{API}/play/progress", json=body)


def end(client, session_id):
    return client.post(f"{API}/play/end", json={"session_id": session_id})


# ============================================================================
# BASICS
# ============================================================================

class TestBasics:

    def test_root_and_health(self, client):
        assert client.get("/").json()["name"] == "FlowTune Playback API"
        assert client.get("/health").json() == {"status": "healthy"}

    def test_status(self, client):
        response = client.get(f"{API}/status")
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "operational"
        assert "sessions" in data

    def test_security_headers(self, client):
        response = client.get(f"{API}/status")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"

    def test_sweeper_disabled_in_tests(self, app):
        assert app.state.sweeper is None


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

class TestPlaybackFlow:

    def test_valid_premium_play(self, client, clock):
        response = start(client)
        assert response.status_code == 200
        session_id = response.json()["session_id"]
        assert response.json()["config"]["bitrate"] == 320

        clock.advance(150)
        response = progress(client, session_id, 150, 180)
        assert response.status_code == 200
        assert response.json()["eligible"] is True

        response = end(client, session_id)
        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["payout"] == "0.00100000"

        # Retry returns the same outcome
        assert end(client, session_id).json() == data

        stats = client.get(f"{API}/stats/track/track_1").json()["stats"]
        assert stats["total_plays"] == 1

        earnings = client.get(f"{API}/earnings/artist/artist_1").json()["earnings"]
        assert Decimal(earnings["total_earnings"]) == Decimal("0.0008")

        history = client.get(f"{API}/history/user/user_1").json()["history"]
        assert [h["session_id"] for h in history] == [session_id]

    def test_free_preview_limit(self, client, clock):
        session_id = start(client, tier="free").json()["session_id"]
        clock.advance(30)
        data = progress(client, session_id, 30, 180).json()
        assert data["preview_limit_reached"] is True
        assert data["state"] == "ended_invalid"

        clock.advance(5)
        assert progress(client, session_id, 35, 180).status_code == 404

    def test_stream_url_is_served(self, client):
        stream_url = start(client, tier="premium").json()["stream_url"]
        response = client.get(stream_url)
        assert response.status_code == 200
        assert response.headers["X-Audio-Quality"] == "320"
        assert response.headers["X-Audio-Format"] == "mp3"
        assert response.headers["Accept-Ranges"] == "bytes"
        assert response.headers["Content-Type"].startswith("audio/mpeg")

    def test_hifi_stream_is_flac(self, client):
        stream_url = start(client, tier="hifi").json()["stream_url"]
        response = client.get(stream_url)
        assert response.headers["X-Audio-Format"] == "flac"
        assert response.headers["Content-Type"].startswith("audio/flac")

    def test_stream_gate_errors(self, client, clock):
        session_id = start(client, tier="premium").json()["session_id"]
        gate = f"{API}/stream/track_1"

        assert client.get(gate, params={"session": "missing"}).status_code == 404
        assert client.get(f"{API}/stream/track_2", params={"session": session_id}).status_code == 404
        assert client.get(gate, params={"session": session_id, "quality": "hifi"}).status_code == 400
        assert client.get(gate).status_code == 422

        clock.advance(700)
        response = client.get(gate, params={"session": session_id, "quality": "premium"})
        assert response.status_code == 410

    def test_stream_closed_after_end(self, client):
        started = start(client).json()
        end(client, started["session_id"])
        assert client.get(started["stream_url"]).status_code == 404

    def test_track_reports_play_counters(self, client, clock):
        session_id = start(client).json()["session_id"]
        clock.advance(120)
        progress(client, session_id, 120, 180)
        end(client, session_id)

        track = client.get(f"{API}/tracks/track_1").json()["track"]
        assert track["total_plays"] == 1
        assert Decimal(track["total_royalties_accrued"]) == Decimal("0.001")
        assert client.get(f"{API}/tracks/missing").status_code == 404

    def test_get_session(self, client):
        session_id = start(client).json()["session_id"]
        response = client.get(f"{API}/sessions/{session_id}")
        assert response.status_code == 200
        assert response.json()["session"]["state"] == "started"


# ============================================================================
# ERROR MAPPING
# ============================================================================

class TestErrorResponses:

    def test_unknown_track_is_404(self, client):
        response = start(client, track_id="nope")
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"
        assert response.json()["success"] is False

    def test_malformed_id_is_400(self, client):
        response = start(client, track_id="a:b")
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_schema_violation_is_422(self, client):
        response = client.post(f"{API}/play/progress", json={"session_id": "x", "current_time": -1})
        assert response.status_code == 422

    def test_unknown_session_is_404(self, client):
        assert end(client, "missing").status_code == 404

    def test_expired_session_is_410(self, client, clock):
        session_id = start(client).json()["session_id"]
        clock.advance(700)
        response = end(client, session_id)
        assert response.status_code == 410
        assert response.json()["error"] == "SESSION_EXPIRED"

    def test_rate_limit_is_429_with_retry_after(self, client):
        for _ in range(10):
            assert start(client).status_code == 200
        response = start(client)
        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.json()["details"]["limit"] == 10

    def test_ledger_halt_is_500_and_resumable(self, client, service, clock):
        session_id = start(client).json()["session_id"]
        clock.advance(100)
        progress(client, session_id, 100, 180)
        service.ledger.halt_track("track_1", "audit")

        response = end(client, session_id)
        assert response.status_code == 500
        assert response.json()["error"] == "LEDGER_CONSISTENCY_ERROR"

        resumed = client.post(f"{API}/royalties/tracks/track_1/resume").json()
        assert resumed["resumed"] is True
        assert end(client, session_id).json()["valid"] is True

    @pytest.mark.parametrize("limit", [0, 501])
    def test_history_limit_out_of_range(self, client, limit):
        assert client.get(f"{API}/history/user/user_1", params={"limit": limit}).status_code == 422


# ============================================================================
# QUALITY
# ============================================================================

class TestQualityEndpoints:

    def test_quality_options(self, client):
        data = client.get(f"{API}/quality/options", params={"tier": "hifi"}).json()
        assert data["user_tier"] == "hifi"
        assert all(q["available"] for q in data["qualities"])

    def test_quality_lookup(self, client):
        data = client.get(f"{API}/quality/hifi").json()
        assert data["quality"]["format"] == "flac"

    def test_unknown_quality_is_400(self, client):
        response = client.get(f"{API}/quality/ultra")
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_QUALITY"
