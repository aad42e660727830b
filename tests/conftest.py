import os
import random

# Keep the module-level engine off MySQL during tests
os.environ.setdefault("POSTURE_DB_URL", "sqlite://")

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.aggregator import DailyAggregator
from app.counters import CounterCache
from app.database import Base
from app.directory import GuideLookup, UserDirectory
from app.ingestion import IngestionGateway
from app.models import DailyAggregate, Guide, MonitoringSession, PostureLog, SessionStatus, User
from app.reports import ReportService
from app.sessions import SessionService

# Monday
START = datetime(2025, 11, 24, 9, 0, 0)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def cache():
    return CounterCache(ttl_seconds=600)


@pytest.fixture
def users(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def guides(session_factory):
    return GuideLookup(session_factory)


@pytest.fixture
def aggregator(session_factory, users, clock):
    return DailyAggregator(
        session_factory,
        users,
        goal_ratio=80.0,
        max_workers=1,
        retention_days=30,
        clock=clock,
    )


@pytest.fixture
def sessions(session_factory, cache, aggregator, users, clock):
    return SessionService(session_factory, cache, aggregator, users, clock=clock)


@pytest.fixture
def gateway(session_factory, cache):
    # One worker: the in-memory SQLite connection is shared
    return IngestionGateway(session_factory, cache, workers=1, queue_size=100, dead_letter_size=10)


@pytest.fixture
def reports(session_factory, guides):
    return ReportService(session_factory, guides, rng=random.Random(7))


@pytest.fixture
def make_user(session_factory):
    counter = {"n": 0}

    def _make(name: str = "tester") -> int:
        counter["n"] += 1
        db = session_factory()
        try:
            user = User(email=f"{name}{counter['n']}@example.com", name=name)
            db.add(user)
            db.commit()
            return user.id
        finally:
            db.close()

    return _make


@pytest.fixture
def user_id(make_user):
    return make_user()


@pytest.fixture
def add_guide(session_factory):
    def _add(title: str, issue_tag: str, category: str = "stretching") -> int:
        db = session_factory()
        try:
            guide = Guide(title=title, category=category, issue_tag=issue_tag)
            db.add(guide)
            db.commit()
            return guide.id
        finally:
            db.close()

    return _add


@pytest.fixture
def add_completed_session(session_factory):
    """Insert a finished session directly, bypassing the state machine."""

    def _add(user_id: int, start_at: datetime, good: int, total: int, warning: int = 0, seconds: int = 0) -> int:
        db = session_factory()
        try:
            session = MonitoringSession(
                user_id=user_id,
                status=SessionStatus.COMPLETED,
                start_at=start_at,
                end_at=start_at + timedelta(seconds=seconds),
                resumed_at=start_at,
                accumulated_seconds=seconds,
                final_good_count=good,
                final_total_count=total,
                final_warning_count=warning,
            )
            db.add(session)
            db.commit()
            return session.id
        finally:
            db.close()

    return _add


@pytest.fixture
def add_log(session_factory):
    def _add(user_id: int, session_id: int, timestamp: datetime, tags: list) -> None:
        db = session_factory()
        try:
            db.add(PostureLog(user_id=user_id, session_id=session_id, timestamp=timestamp, tags=tags))
            db.commit()
        finally:
            db.close()

    return _add


@pytest.fixture
def add_daily(session_factory):
    """Insert a daily aggregate row directly."""

    def _add(
        user_id: int,
        day: date,
        ratio: float,
        warnings: int = 0,
        streak: int = 0,
        achieved: bool = None,
        **issue_counts,
    ) -> None:
        db = session_factory()
        try:
            db.add(DailyAggregate(
                user_id=user_id,
                stat_date=day,
                correct_ratio=ratio,
                total_warning_count=warnings,
                total_analysis_seconds=0,
                goal_achieved=ratio >= 80.0 if achieved is None else achieved,
                consecutive_achieved_days=streak,
                **issue_counts,
            ))
            db.commit()
        finally:
            db.close()

    return _add


@pytest.fixture
def fetch_daily(session_factory):
    def _fetch(user_id: int, day: date):
        db = session_factory()
        try:
            row = db.query(DailyAggregate).filter_by(user_id=user_id, stat_date=day).one_or_none()
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    return _fetch


@pytest.fixture
def fetch_session(session_factory):
    def _fetch(session_id: int) -> MonitoringSession:
        db = session_factory()
        try:
            row = db.get(MonitoringSession, session_id)
            db.expunge(row)
            return row
        finally:
            db.close()

    return _fetch
