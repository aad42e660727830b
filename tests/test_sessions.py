"""Tests for the monitoring session lifecycle."""

from datetime import timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from app.errors import ConcurrentTransition, InvalidSessionState, SessionNotFound, UserNotFound
from app.models import SessionStatus
from app.sessions import SessionService, elapsed_seconds


class FailingAggregator:
    def __init__(self):
        self.calls = []

    def aggregate_user_day(self, user_id, day):
        self.calls.append((user_id, day))
        raise RuntimeError("database is down")


class TestStart:
    def test_start_creates_started_session(self, sessions, user_id, clock):
        view = sessions.start(user_id)
        assert view.status == SessionStatus.STARTED
        assert view.start_at == clock.now
        assert view.accumulated_seconds == 0
        assert view.final_total_count is None

    def test_start_unknown_user(self, sessions):
        with pytest.raises(UserNotFound):
            sessions.start(12345)

    def test_start_clears_leftover_counters(self, sessions, cache, user_id):
        cache.increment(user_id, ["FORWARD_HEAD"])
        sessions.start(user_id)
        assert cache.read(user_id) is None

    def test_start_completes_open_session(self, sessions, cache, user_id, clock, fetch_session):
        first = sessions.start(user_id)
        cache.increment(user_id, ["GOOD"])
        clock.advance(seconds=40)

        second = sessions.start(user_id)

        old = fetch_session(first.id)
        assert old.status == SessionStatus.COMPLETED
        assert old.accumulated_seconds == 40
        assert old.final_total_count == 1
        assert old.final_good_count == 1
        assert second.id != first.id
        assert second.status == SessionStatus.STARTED


class TestDuration:
    def test_pause_resume_complete_accumulates_running_time(self, sessions, user_id, clock):
        view = sessions.start(user_id)

        clock.advance(seconds=30)
        paused = sessions.pause(view.id, user_id)
        assert paused.accumulated_seconds == 30

        clock.advance(minutes=5)
        resumed = sessions.resume(view.id, user_id)
        assert resumed.accumulated_seconds == 30

        clock.advance(seconds=20)
        completed = sessions.complete(view.id, user_id)
        assert completed.accumulated_seconds == 50
        assert completed.status == SessionStatus.COMPLETED
        assert completed.end_at == clock.now

    def test_multiple_segments(self, sessions, user_id, clock):
        view = sessions.start(user_id)
        expected = 0
        for running, idle in [(10, 60), (25, 5), (7, 100)]:
            clock.advance(seconds=running)
            expected += running
            assert sessions.pause(view.id, user_id).accumulated_seconds == expected
            clock.advance(seconds=idle)
            sessions.resume(view.id, user_id)

        clock.advance(seconds=3)
        assert sessions.complete(view.id, user_id).accumulated_seconds == expected + 3

    def test_complete_while_paused_adds_nothing(self, sessions, user_id, clock):
        view = sessions.start(user_id)
        clock.advance(seconds=15)
        sessions.pause(view.id, user_id)
        clock.advance(hours=1)
        assert sessions.complete(view.id, user_id).accumulated_seconds == 15

    def test_sub_second_precision_is_dropped(self, clock):
        start = clock.now
        assert elapsed_seconds(start, start + timedelta(seconds=4, milliseconds=900)) == 4
        assert elapsed_seconds(start, start - timedelta(seconds=3)) == 0
        assert elapsed_seconds(None, start) == 0


class TestInvalidTransitions:
    def test_pause_paused_session(self, sessions, user_id, clock, fetch_session):
        view = sessions.start(user_id)
        clock.advance(seconds=10)
        sessions.pause(view.id, user_id)
        before = fetch_session(view.id)

        clock.advance(seconds=10)
        with pytest.raises(InvalidSessionState):
            sessions.pause(view.id, user_id)

        after = fetch_session(view.id)
        assert after.status == SessionStatus.PAUSED
        assert after.accumulated_seconds == before.accumulated_seconds
        assert after.paused_at == before.paused_at
        assert after.version == before.version

    def test_resume_started_session(self, sessions, user_id, fetch_session):
        view = sessions.start(user_id)
        before = fetch_session(view.id)

        with pytest.raises(InvalidSessionState):
            sessions.resume(view.id, user_id)

        after = fetch_session(view.id)
        assert after.status == SessionStatus.STARTED
        assert after.resumed_at == before.resumed_at
        assert after.version == before.version

    def test_complete_completed_session(self, sessions, cache, user_id, clock, fetch_session):
        view = sessions.start(user_id)
        cache.increment(user_id, ["GOOD"])
        clock.advance(seconds=10)
        sessions.complete(view.id, user_id)
        before = fetch_session(view.id)

        cache.increment(user_id, ["FORWARD_HEAD"])
        clock.advance(seconds=10)
        with pytest.raises(InvalidSessionState):
            sessions.complete(view.id, user_id)

        after = fetch_session(view.id)
        assert after.accumulated_seconds == before.accumulated_seconds == 10
        assert after.final_total_count == before.final_total_count == 1
        assert after.end_at == before.end_at

    @pytest.mark.parametrize("action", ["pause", "resume"])
    def test_completed_is_absorbing(self, sessions, user_id, action):
        view = sessions.start(user_id)
        sessions.complete(view.id, user_id)
        with pytest.raises(InvalidSessionState):
            getattr(sessions, action)(view.id, user_id)

    def test_unknown_session(self, sessions, user_id):
        with pytest.raises(SessionNotFound):
            sessions.pause(999, user_id)

    def test_session_of_another_user(self, sessions, make_user):
        owner = make_user("owner")
        other = make_user("other")
        view = sessions.start(owner)
        with pytest.raises(SessionNotFound):
            sessions.complete(view.id, other)
        assert sessions.get(view.id, owner).status == SessionStatus.STARTED

    def test_lost_race_is_rejected(self, sessions, user_id, clock, fetch_session):
        view = sessions.start(user_id)
        clock.advance(seconds=10)

        def concurrent_update(session):
            session.accumulated_seconds += 10
            raise StaleDataError("row was updated by another transaction")

        with pytest.raises(ConcurrentTransition):
            sessions._transition(view.id, user_id, concurrent_update)

        assert fetch_session(view.id).accumulated_seconds == 0


class TestCompletion:
    def test_final_counts_copied_from_cache(self, sessions, cache, user_id):
        view = sessions.start(user_id)
        for tags in (["GOOD"], ["GOOD"], ["FORWARD_HEAD"], ["UNKNOWN"]):
            cache.increment(user_id, tags)

        completed = sessions.complete(view.id, user_id)
        assert completed.final_good_count == 2
        assert completed.final_warning_count == 1
        assert completed.final_total_count == 4

    def test_completion_clears_counters(self, sessions, cache, user_id):
        view = sessions.start(user_id)
        cache.increment(user_id, ["GOOD"])
        sessions.complete(view.id, user_id)
        assert cache.read(user_id) is None

    def test_completion_refreshes_daily_stats(self, sessions, cache, user_id, clock, fetch_daily):
        view = sessions.start(user_id)
        for _ in range(9):
            cache.increment(user_id, ["GOOD"])
        cache.increment(user_id, ["FORWARD_HEAD"])
        clock.advance(seconds=10)
        sessions.complete(view.id, user_id)

        row = fetch_daily(user_id, clock.now.date())
        assert row is not None
        assert row.correct_ratio == 90.0
        assert row.goal_achieved is True
        assert row.total_analysis_seconds == 10

    def test_aggregation_failure_does_not_fail_completion(
        self, session_factory, cache, users, clock, user_id, fetch_session
    ):
        aggregator = FailingAggregator()
        service = SessionService(session_factory, cache, aggregator, users, clock=clock)
        view = service.start(user_id)
        cache.increment(user_id, ["GOOD"])

        completed = service.complete(view.id, user_id)

        assert completed.status == SessionStatus.COMPLETED
        assert aggregator.calls == [(user_id, clock.now.date())]
        assert fetch_session(view.id).status == SessionStatus.COMPLETED
        assert cache.read(user_id) is None

    def test_cache_failure_does_not_fail_completion(self, session_factory, aggregator, users, clock, user_id):
        class BrokenCache:
            def final_counts(self, user_id):
                raise ConnectionError("cache unavailable")

            def clear(self, user_id):
                raise ConnectionError("cache unavailable")

        service = SessionService(session_factory, BrokenCache(), aggregator, users, clock=clock)
        view = service.start(user_id)
        completed = service.complete(view.id, user_id)

        assert completed.status == SessionStatus.COMPLETED
        assert completed.final_total_count == 0
