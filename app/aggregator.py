# app/aggregator.py

from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional
from sqlalchemy.orm import Session as DBSession, sessionmaker
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from app.config import settings
from app.database import SessionLocal
from app.directory import UserDirectory
from app.models import DailyAggregate, MonitoringSession, PostureLog, SessionStatus
from app.tags import ISSUE_COLUMNS, is_warning_tag, normalize_tag
from app.counters import maintenance_ratio
import logging

logger = logging.getLogger(__name__)

KEY_COLUMNS = ("user_id", "stat_date")


def day_window(day: date) -> tuple[datetime, datetime]:
    """[day 00:00, next day 00:00)"""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def next_streak(goal_achieved: bool, previous: Optional[DailyAggregate]) -> int:
    """
    Consecutive achieved days ending at the aggregated date.
    `previous` is the row for the day before, if any.
    """
    if not goal_achieved:
        return 0
    if previous is not None and previous.goal_achieved:
        return previous.consecutive_achieved_days + 1
    return 1


class DailyAggregator:
    """
    Rolls completed sessions and warning logs into one row per user per day.
    Runs nightly for every user and on demand after a session completes.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        users: UserDirectory,
        goal_ratio: float = settings.goal_ratio,
        max_workers: int = settings.aggregation_workers,
        retention_days: int = settings.log_retention_days,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._session_factory = session_factory
        self._users = users
        self._goal_ratio = goal_ratio
        self._max_workers = max_workers
        self._retention_days = retention_days
        self._clock = clock

    def aggregate_user_day(self, user_id: int, day: date) -> Optional[dict]:
        """
        Compute and upsert the daily row for (user_id, day).
        Returns the written values, or None when nothing was analyzed that day.
        """
        start, end = day_window(day)

        db = self._session_factory()
        try:
            # Ratio comes from session totals (every tick counted)
            sessions = (
                db.query(MonitoringSession)
                .filter(
                    MonitoringSession.user_id == user_id,
                    MonitoringSession.status == SessionStatus.COMPLETED,
                    MonitoringSession.final_total_count.isnot(None),
                    MonitoringSession.start_at >= start,
                    MonitoringSession.start_at < end,
                )
                .all()
            )

            total_good = sum(s.final_good_count or 0 for s in sessions)
            total_analyzed = sum(s.final_total_count or 0 for s in sessions)
            analysis_seconds = sum(s.accumulated_seconds or 0 for s in sessions)

            if total_analyzed == 0:
                logger.debug(f"Nothing analyzed for user {user_id} on {day}, skipping")
                return None

            # Issue breakdown comes from the warning logs
            issue_counts = dict.fromkeys(ISSUE_COLUMNS, 0)
            total_warning = 0
            logs = (
                db.query(PostureLog.tags)
                .filter(
                    PostureLog.user_id == user_id,
                    PostureLog.timestamp >= start,
                    PostureLog.timestamp < end,
                )
                .all()
            )
            for (tags,) in logs:
                for tag in tags:
                    if not is_warning_tag(tag):
                        continue
                    total_warning += 1
                    tag = normalize_tag(tag)
                    if tag in issue_counts:
                        issue_counts[tag] += 1

            ratio = maintenance_ratio(total_good, total_analyzed)
            goal_achieved = ratio >= self._goal_ratio

            previous = (
                db.query(DailyAggregate)
                .filter(
                    DailyAggregate.user_id == user_id,
                    DailyAggregate.stat_date == day - timedelta(days=1),
                )
                .first()
            )

            values = {
                "user_id": user_id,
                "stat_date": day,
                "correct_ratio": ratio,
                "total_warning_count": total_warning,
                "total_analysis_seconds": analysis_seconds,
                "goal_achieved": goal_achieved,
                "consecutive_achieved_days": next_streak(goal_achieved, previous),
            }
            for tag, column in ISSUE_COLUMNS.items():
                values[column] = issue_counts[tag]

            write_daily_aggregate(db, values)
            db.commit()

            logger.info(f"Daily stats upserted for user {user_id} on {day}: ratio {ratio}%, {total_warning} warnings")
            return values

        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def run_daily_aggregation(self, target_date: Optional[date] = None) -> dict:
        """
        Aggregate one day (default: yesterday) for every user.
        One user's failure is logged and does not stop the others.
        """
        target = target_date or (self._clock().date() - timedelta(days=1))
        user_ids = self._users.all_ids()
        logger.info(f"Starting daily aggregation for {target}: {len(user_ids)} users")

        results = {"aggregated": 0, "skipped": 0, "failed": 0}

        with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
            futures = {
                pool.submit(self.aggregate_user_day, user_id, target): user_id
                for user_id in user_ids
            }
            for future in as_completed(futures):
                user_id = futures[future]
                try:
                    row = future.result()
                except Exception as e:
                    results["failed"] += 1
                    logger.error(f"Aggregation failed for user {user_id} on {target}: {e}", exc_info=True)
                    continue

                if row is None:
                    results["skipped"] += 1
                else:
                    results["aggregated"] += 1

        logger.info(
            f"Daily aggregation complete for {target}: "
            f"{results['aggregated']} aggregated, {results['skipped']} skipped, {results['failed']} failed"
        )
        return results

    def cleanup_old_logs(self, now: Optional[datetime] = None) -> int:
        """Delete posture logs older than the retention window"""
        cutoff = (now or self._clock()) - timedelta(days=self._retention_days)

        db = self._session_factory()
        try:
            deleted = (
                db.query(PostureLog)
                .filter(PostureLog.timestamp < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
            logger.info(f"Log cleanup complete: {deleted} posture logs before {cutoff} deleted")
            return deleted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def write_daily_aggregate(db: DBSession, values: dict) -> None:
    """
    Single-statement upsert keyed on (user_id, stat_date).
    Safe when the nightly run and an on-demand refresh hit the same row.
    """
    dialect = db.get_bind().dialect.name
    update_columns = [c for c in values if c not in KEY_COLUMNS]

    if dialect in ("mysql", "mariadb"):
        stmt = mysql_insert(DailyAggregate).values(**values)
        stmt = stmt.on_duplicate_key_update(
            {c: stmt.inserted[c] for c in update_columns}
        )
    else:
        insert = sqlite_insert if dialect == "sqlite" else postgresql_insert
        stmt = insert(DailyAggregate).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(KEY_COLUMNS),
            set_={c: stmt.excluded[c] for c in update_columns},
        )

    db.execute(stmt)


def run_scheduled_aggregation() -> None:
    """Called nightly by the scheduler"""
    try:
        daily_aggregator.run_daily_aggregation()
    except Exception as e:
        logger.error(f"Daily aggregation error: {e}", exc_info=True)


def run_scheduled_cleanup() -> None:
    """Called nightly by the scheduler"""
    try:
        daily_aggregator.cleanup_old_logs()
    except Exception as e:
        logger.error(f"Posture log cleanup error: {e}", exc_info=True)


# Global singleton
daily_aggregator = DailyAggregator(SessionLocal, UserDirectory(SessionLocal))
