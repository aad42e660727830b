# app/reports.py

import calendar
import random
from datetime import date, timedelta
from typing import Dict, List, Optional
from sqlalchemy.orm import sessionmaker
from app.database import SessionLocal
from app.directory import GuideLookup
from app.errors import NoReportData
from app.models import DailyAggregate
from app.schemas import CalendarAchievement, Recommendation, WeeklyReport
from app.tags import GOOD, ISSUE_COLUMNS, ISSUE_TAGS
import logging

logger = logging.getLogger(__name__)

TOP_ISSUES = 3


def average_ratio(rows: List[DailyAggregate]) -> float:
    if not rows:
        return 0.0
    return round(sum(r.correct_ratio for r in rows) / len(rows), 2)


def total_warnings(rows: List[DailyAggregate]) -> int:
    return sum(r.total_warning_count for r in rows)


def percent_change(current: float, previous: float) -> float:
    """Change of current vs previous in percent; +100 when starting from zero"""
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def issue_distribution(rows: List[DailyAggregate]) -> Dict[str, int]:
    """Total count per issue tag, zero-count tags dropped"""
    distribution = {}
    for tag in ISSUE_TAGS:
        count = sum(getattr(r, ISSUE_COLUMNS[tag]) for r in rows)
        if count > 0:
            distribution[tag] = count
    return distribution


def top_issues(distribution: Dict[str, int], limit: int = TOP_ISSUES) -> List[str]:
    ranked = sorted(distribution.items(), key=lambda kv: (-kv[1], ISSUE_TAGS.index(kv[0])))
    return [tag for tag, _ in ranked[:limit]]


class ReportService:
    """
    Weekly self-management report.

    The trend graph, distribution and recommendations use the last 7 days
    so the graph never resets on Mondays. The summary card uses the
    calendar week (Monday..reference date) and is compared with the full
    previous calendar week.
    """

    def __init__(self, session_factory: sessionmaker, guides: GuideLookup, rng: Optional[random.Random] = None):
        self._session_factory = session_factory
        self._guides = guides
        self._rng = rng or random.Random()

    def weekly_report(self, user_id: int, reference_date: date) -> WeeklyReport:
        rolling_start = reference_date - timedelta(days=6)
        monday = reference_date - timedelta(days=reference_date.weekday())
        last_monday = monday - timedelta(days=7)
        last_sunday = monday - timedelta(days=1)
        month_start = reference_date.replace(day=1)
        month_end = reference_date.replace(day=calendar.monthrange(reference_date.year, reference_date.month)[1])

        db = self._session_factory()
        try:
            rolling = self._rows(db, user_id, rolling_start, reference_date)
            if not rolling:
                raise NoReportData(f"No statistics between {rolling_start} and {reference_date}")

            this_week = self._rows(db, user_id, monday, reference_date)
            last_week = self._rows(db, user_id, last_monday, last_sunday)
            month = self._rows(db, user_id, month_start, month_end)

            distribution = issue_distribution(rolling)
            issues = top_issues(distribution)
            weekly_avg = average_ratio(this_week)
            latest = rolling[-1]

            report = WeeklyReport(
                dates=[r.stat_date for r in rolling],
                correct_ratios=[r.correct_ratio for r in rolling],
                warning_counts=[r.total_warning_count for r in rolling],
                current_ratio=latest.correct_ratio,
                current_total_warning=latest.total_warning_count,
                current_consecutive_days=latest.consecutive_achieved_days,
                most_frequent_issue=issues[0] if issues else GOOD,
                weekly_avg_ratio=weekly_avg,
                weekly_total_warning=total_warnings(this_week),
                ratio_change_vs_previous_week=percent_change(weekly_avg, average_ratio(last_week)),
                posture_distribution=distribution,
                recommendations=self._recommend(issues),
                monthly_achievements=[
                    CalendarAchievement(day=r.stat_date, ratio=r.correct_ratio, achieved=r.goal_achieved)
                    for r in month
                ],
            )
        finally:
            db.close()

        logger.info(f"Weekly report built for user {user_id} at {reference_date}")
        return report

    def _rows(self, db, user_id: int, start: date, end: date) -> List[DailyAggregate]:
        return (
            db.query(DailyAggregate)
            .filter(
                DailyAggregate.user_id == user_id,
                DailyAggregate.stat_date >= start,
                DailyAggregate.stat_date <= end,
            )
            .order_by(DailyAggregate.stat_date)
            .all()
        )

    def _recommend(self, issues: List[str]) -> List[Recommendation]:
        """One random guide per issue; issues without guides are skipped"""
        recommendations = []
        for tag in issues:
            guides = self._guides.find_by_issue_tag(tag)
            if not guides:
                logger.debug(f"No guide for issue {tag}")
                continue
            guide = self._rng.choice(guides)
            recommendations.append(Recommendation(issue_tag=tag, guide_id=guide.id, title=guide.title))
        return recommendations


# Global singleton
report_service = ReportService(SessionLocal, GuideLookup(SessionLocal))
