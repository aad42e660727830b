# app/sessions.py

from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, List, Optional
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from app.aggregator import DailyAggregator, daily_aggregator
from app.counters import CounterCache, FinalCounts, counter_cache
from app.database import SessionLocal
from app.directory import UserDirectory
from app.errors import ConcurrentTransition, InvalidSessionState, SessionNotFound, UserNotFound
from app.models import MonitoringSession, SessionStatus
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionView:
    """Detached copy of a session row"""
    id: int
    user_id: int
    status: SessionStatus
    start_at: datetime
    end_at: Optional[datetime]
    paused_at: Optional[datetime]
    accumulated_seconds: int
    final_good_count: Optional[int]
    final_total_count: Optional[int]
    final_warning_count: Optional[int]

    @classmethod
    def from_model(cls, session: MonitoringSession) -> "SessionView":
        return cls(
            id=session.id,
            user_id=session.user_id,
            status=session.status,
            start_at=session.start_at,
            end_at=session.end_at,
            paused_at=session.paused_at,
            accumulated_seconds=session.accumulated_seconds,
            final_good_count=session.final_good_count,
            final_total_count=session.final_total_count,
            final_warning_count=session.final_warning_count,
        )


def elapsed_seconds(since: Optional[datetime], now: datetime) -> int:
    """Whole seconds between two wall-clock times, never negative"""
    if since is None:
        return 0
    return max(0, int((now - since).total_seconds()))


class SessionService:
    """
    Monitoring session lifecycle: STARTED <-> PAUSED -> COMPLETED.

    Every transition runs in one transaction against the session row
    (row lock + version check), so concurrent transitions on the same
    session are rejected instead of lost.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: CounterCache,
        aggregator: DailyAggregator,
        users: UserDirectory,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._aggregator = aggregator
        self._users = users
        self._clock = clock

    def start(self, user_id: int) -> SessionView:
        """
        Start a new session for the user.
        Sessions still open for the user are completed first: one active
        session per user, since the live counters are keyed by user.
        """
        if not self._users.exists(user_id):
            raise UserNotFound()

        now = self._now()
        closed: List[SessionView] = []

        db = self._session_factory()
        try:
            stale = (
                db.query(MonitoringSession)
                .filter(
                    MonitoringSession.user_id == user_id,
                    MonitoringSession.status != SessionStatus.COMPLETED,
                )
                .with_for_update()
                .all()
            )
            for session in stale:
                logger.warning(f"Session {session.id} was still {session.status.value} at new start, completing it")
                self._finalize(session, now)

            session = MonitoringSession(
                user_id=user_id,
                status=SessionStatus.STARTED,
                start_at=now,
                resumed_at=now,
                accumulated_seconds=0,
            )
            db.add(session)
            db.commit()

            closed = [SessionView.from_model(s) for s in stale]
            view = SessionView.from_model(session)

        except StaleDataError:
            db.rollback()
            raise ConcurrentTransition()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        for old in closed:
            self._refresh_daily(user_id, old.start_at.date())

        # Fresh counters for the new session
        self._clear_cache(user_id)

        logger.info(f"Session STARTED: user={user_id} session={view.id}")
        return view

    def pause(self, session_id: int, user_id: int) -> SessionView:
        now = self._now()

        def transition(session: MonitoringSession) -> None:
            if session.status != SessionStatus.STARTED:
                raise InvalidSessionState("Pause is only allowed for a STARTED session")
            session.accumulated_seconds += elapsed_seconds(self._running_since(session), now)
            session.status = SessionStatus.PAUSED
            session.paused_at = now

        view = self._transition(session_id, user_id, transition)
        logger.info(f"Session PAUSED: session={session_id} accumulated={view.accumulated_seconds}s")
        return view

    def resume(self, session_id: int, user_id: int) -> SessionView:
        now = self._now()

        def transition(session: MonitoringSession) -> None:
            if session.status != SessionStatus.PAUSED:
                raise InvalidSessionState("Resume is only allowed for a PAUSED session")
            session.status = SessionStatus.STARTED
            session.resumed_at = now
            session.paused_at = None

        view = self._transition(session_id, user_id, transition)
        logger.info(f"Session RESUMED: session={session_id}")
        return view

    def complete(self, session_id: int, user_id: int) -> SessionView:
        """
        Freeze duration and final counts, then refresh that day's stats.
        The refresh is best-effort: a failure there never undoes completion.
        """
        now = self._now()

        def transition(session: MonitoringSession) -> None:
            if session.status == SessionStatus.COMPLETED:
                raise InvalidSessionState("Session is already completed")
            self._finalize(session, now)

        view = self._transition(session_id, user_id, transition)
        logger.info(
            f"Session COMPLETED: session={session_id} duration={view.accumulated_seconds}s "
            f"good={view.final_good_count} total={view.final_total_count} warning={view.final_warning_count}"
        )

        # Runs after commit so the aggregation sees the final counts
        self._refresh_daily(user_id, view.start_at.date())
        self._clear_cache(user_id)
        return view

    def get(self, session_id: int, user_id: int) -> SessionView:
        db = self._session_factory()
        try:
            return SessionView.from_model(self._load(db, session_id, user_id, lock=False))
        finally:
            db.close()

    def _transition(self, session_id: int, user_id: int, apply: Callable[[MonitoringSession], None]) -> SessionView:
        db = self._session_factory()
        try:
            session = self._load(db, session_id, user_id, lock=True)
            apply(session)
            db.commit()
            return SessionView.from_model(session)
        except StaleDataError:
            db.rollback()
            raise ConcurrentTransition()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _load(self, db, session_id: int, user_id: int, lock: bool) -> MonitoringSession:
        query = db.query(MonitoringSession).filter(
            MonitoringSession.id == session_id,
            MonitoringSession.user_id == user_id,
        )
        if lock:
            query = query.with_for_update()
        session = query.first()
        if session is None:
            raise SessionNotFound()
        return session

    def _finalize(self, session: MonitoringSession, now: datetime) -> None:
        if session.status == SessionStatus.STARTED:
            session.accumulated_seconds += elapsed_seconds(self._running_since(session), now)

        counts = self._read_final_counts(session.user_id)
        session.final_good_count = counts.good
        session.final_total_count = counts.total
        session.final_warning_count = counts.warning
        session.status = SessionStatus.COMPLETED
        session.end_at = now

    @staticmethod
    def _running_since(session: MonitoringSession) -> Optional[datetime]:
        return session.resumed_at or session.start_at

    def _read_final_counts(self, user_id: int) -> FinalCounts:
        try:
            return self._cache.final_counts(user_id)
        except Exception as e:
            logger.error(f"Failed to read live counters for user {user_id}: {e}")
            return FinalCounts()

    def _clear_cache(self, user_id: int) -> None:
        try:
            self._cache.clear(user_id)
        except Exception as e:
            logger.error(f"Failed to clear live counters for user {user_id}: {e}")

    def _refresh_daily(self, user_id: int, day: date) -> None:
        try:
            self._aggregator.aggregate_user_day(user_id, day)
        except Exception as e:
            logger.error(f"On-demand aggregation failed for user {user_id} on {day}: {e}")

    def _now(self) -> datetime:
        return self._clock().replace(microsecond=0)


# Global singleton
session_service = SessionService(
    SessionLocal,
    counter_cache,
    daily_aggregator,
    UserDirectory(SessionLocal),
)
