# app/models.py

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, Date, DateTime, Enum, Float,
    ForeignKey, Index, JSON, UniqueConstraint
)
from app.database import Base


class SessionStatus(str, enum.Enum):
    STARTED = "STARTED"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class User(Base):
    """Owned by the account service; read-only here"""
    __tablename__ = "users"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.now)


class Guide(Base):
    """Stretching guides, matched to posture issues by tag"""
    __tablename__ = "guides"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    title = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False)
    issue_tag = Column(String(30), nullable=True, index=True)


class MonitoringSession(Base):
    """One bounded monitoring interval. Append-only history."""
    __tablename__ = "monitoring_sessions"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    status = Column(Enum(SessionStatus, native_enum=False, length=20), nullable=False)

    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=True)
    paused_at = Column(DateTime, nullable=True)
    resumed_at = Column(DateTime, nullable=True)  # start of the current running segment

    accumulated_seconds = Column(BigInteger, nullable=False, default=0)

    # Copied from the live cache at completion, never changed afterwards
    final_good_count = Column(BigInteger, nullable=True)
    final_total_count = Column(BigInteger, nullable=True)
    final_warning_count = Column(Integer, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_monitoring_sessions_user_start", "user_id", "start_at"),
    )


class PostureLog(Base):
    """Warning ticks only - GOOD/UNKNOWN-only ticks are never stored"""
    __tablename__ = "posture_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    session_id = Column(BigInteger, ForeignKey("monitoring_sessions.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    tags = Column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_posture_logs_user_timestamp", "user_id", "timestamp"),
        Index("ix_posture_logs_timestamp", "timestamp"),
    )


class DailyAggregate(Base):
    """One row per (user, calendar date), upserted by the aggregation batch"""
    __tablename__ = "daily_aggregates"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    stat_date = Column(Date, nullable=False)

    correct_ratio = Column(Float, nullable=False)
    total_warning_count = Column(Integer, nullable=False, default=0)
    total_analysis_seconds = Column(BigInteger, nullable=False, default=0)
    goal_achieved = Column(Boolean, nullable=False, default=False)
    consecutive_achieved_days = Column(Integer, nullable=False, default=0)

    forward_head_count = Column(Integer, nullable=False, default=0)
    unequal_shoulders_count = Column(Integer, nullable=False, default=0)
    upper_body_tilt_count = Column(Integer, nullable=False, default=0)
    too_close_count = Column(Integer, nullable=False, default=0)
    asymmetric_posture_count = Column(Integer, nullable=False, default=0)
    head_tilt_count = Column(Integer, nullable=False, default=0)
    leaning_on_arm_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "stat_date", name="uq_daily_aggregates_user_date"),
    )
