#!/usr/bin/env python3
"""
Session State Machine Tests

Forward-only transitions, preview cap enforcement and play validity rules.
"""

import pytest

from config import Settings
from playback.errors import InvalidTransitionError, ValidationError
from playback.models import EndReason, PlaybackSession, QualityTier, SessionState
from playback.quality_policy import QualityPolicy
from playback.session_state import ALLOWED_TRANSITIONS, PlaybackStateMachine, can_transition


NOW = 1_700_000_000.0


def make_session(tier=QualityTier.PREMIUM, total_duration=180.0, state=SessionState.STARTED):
    return PlaybackSession(
        session_id="s1",
        user_id="u1",
        track_id="track_1",
        tier=tier,
        started_at=NOW,
        last_progress_at=NOW,
        total_duration=total_duration,
        state=state,
    )


@pytest.fixture
def machine(test_settings):
    return PlaybackStateMachine(test_settings)


@pytest.fixture
def policy(test_settings):
    return QualityPolicy(test_settings)


class TestTransitions:

    def test_terminal_states_have_no_exits(self):
        for state in (SessionState.ENDED_VALID, SessionState.ENDED_INVALID, SessionState.EXPIRED):
            assert ALLOWED_TRANSITIONS[state] == frozenset()
            assert state.is_terminal

    def test_no_backwards_edges(self):
        assert not can_transition(SessionState.ACTIVE, SessionState.STARTED)
        assert not can_transition(SessionState.ACTIVE, SessionState.ACTIVE)

    def test_started_may_end_directly(self):
        assert can_transition(SessionState.STARTED, SessionState.ENDED_INVALID)
        assert can_transition(SessionState.STARTED, SessionState.EXPIRED)

    def test_leaving_terminal_state_raises(self, machine):
        session = make_session(state=SessionState.ENDED_VALID)
        with pytest.raises(InvalidTransitionError):
            machine.transition(session, SessionState.ENDED_INVALID, NOW)
        assert session.state == SessionState.ENDED_VALID

    def test_terminal_transition_stamps_end(self, machine):
        session = make_session()
        machine.transition(session, SessionState.ENDED_INVALID, NOW + 5, EndReason.BELOW_THRESHOLD)
        assert session.ended_at == NOW + 5
        assert session.end_reason == EndReason.BELOW_THRESHOLD


class TestProgress:

    def test_first_progress_activates(self, machine, policy):
        session = make_session()
        hit = machine.record_progress(session, 10.0, 180.0, policy.get_streaming_quality("premium"), NOW + 10)
        assert hit is False
        assert session.state == SessionState.ACTIVE
        assert session.current_time == 10.0
        assert session.last_progress_at == NOW + 10

    def test_preview_cap_forces_invalid_end(self, machine, policy):
        session = make_session(tier=QualityTier.FREE)
        free = policy.get_streaming_quality("free")
        machine.record_progress(session, 25.0, 180.0, free, NOW + 25)
        hit = machine.record_progress(session, 31.0, 180.0, free, NOW + 31)

        assert hit is True
        assert session.state == SessionState.ENDED_INVALID
        assert session.end_reason == EndReason.PREVIEW_LIMIT
        # Listening is never recorded beyond the cap
        assert session.current_time == 30.0
        assert session.outcome["valid"] is False
        assert session.outcome["reason"] == "preview_limit"

    def test_progress_on_terminal_session_raises(self, machine, policy):
        session = make_session(state=SessionState.EXPIRED)
        with pytest.raises(InvalidTransitionError):
            machine.record_progress(session, 5.0, None, policy.get_streaming_quality("premium"), NOW)

    def test_missing_total_duration_keeps_previous(self, machine, policy):
        session = make_session(total_duration=200.0)
        machine.record_progress(session, 5.0, None, policy.get_streaming_quality("premium"), NOW)
        assert session.total_duration == 200.0

    @pytest.mark.parametrize("current_time, total_duration", [
        (-1, 180),
        ("10", 180),
        (True, 180),
        (float("nan"), 180),
        (float("inf"), 180),
        (10, 0),
        (10, -5),
    ])
    def test_validate_progress_rejects_bad_values(self, current_time, total_duration):
        with pytest.raises(ValidationError):
            PlaybackStateMachine.validate_progress(current_time, total_duration)

    def test_validate_progress_accepts_missing_duration(self):
        PlaybackStateMachine.validate_progress(0, None)


class TestValidity:

    def test_half_of_track_is_valid(self, machine):
        session = make_session(total_duration=40.0)
        session.current_time = 20.0
        assert machine.is_valid_play(session)

    def test_min_seconds_is_valid_on_long_track(self, machine):
        session = make_session(total_duration=600.0)
        session.current_time = 30.0
        assert machine.is_valid_play(session)

    def test_short_listen_is_invalid(self, machine):
        session = make_session(total_duration=180.0)
        session.current_time = 29.9
        assert not machine.is_valid_play(session)

    def test_unknown_duration_uses_min_seconds_only(self, machine):
        session = make_session(total_duration=None)
        session.current_time = 20.0
        assert not machine.is_valid_play(session)
        session.current_time = 30.0
        assert machine.is_valid_play(session)

    def test_threshold_comes_from_settings(self):
        machine = PlaybackStateMachine(Settings(VALIDITY_THRESHOLD=0.9, MIN_VALID_SECONDS=1000, SWEEPER_ENABLED=False))
        session = make_session(total_duration=100.0)
        session.current_time = 89.0
        assert not machine.is_valid_play(session)
        session.current_time = 90.0
        assert machine.is_valid_play(session)

    def test_finish_sets_terminal_state(self, machine):
        session = make_session()
        session.current_time = 150.0
        assert machine.finish(session, NOW) is True
        assert session.state == SessionState.ENDED_VALID
        assert session.end_reason == EndReason.COMPLETED
