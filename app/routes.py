# app/routes.py

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, status
from app.counters import CounterCache, build_feedback
from app.deps import get_counter_cache, get_current_user_id, get_report_service, get_session_service
from app.reports import ReportService
from app.schemas import (
    FeedbackResponse, SessionControlRequest, SessionStartResponse,
    SessionStateResponse, WeeklyReport,
)
from app.sessions import SessionService, SessionView
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def to_state_response(view: SessionView) -> SessionStateResponse:
    return SessionStateResponse(
        session_id=view.id,
        status=view.status,
        accumulated_seconds=view.accumulated_seconds,
        end_at=view.end_at,
    )


@router.post("/monitor/start", response_model=SessionStartResponse, status_code=status.HTTP_201_CREATED)
def start_session(
    user_id: int = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> SessionStartResponse:
    view = sessions.start(user_id)
    return SessionStartResponse(session_id=view.id, start_at=view.start_at)


@router.post("/monitor/pause", response_model=SessionStateResponse)
def pause_session(
    request: SessionControlRequest,
    user_id: int = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> SessionStateResponse:
    return to_state_response(sessions.pause(request.session_id, user_id))


@router.post("/monitor/resume", response_model=SessionStateResponse)
def resume_session(
    request: SessionControlRequest,
    user_id: int = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> SessionStateResponse:
    return to_state_response(sessions.resume(request.session_id, user_id))


@router.post("/monitor/complete", response_model=SessionStateResponse)
def complete_session(
    request: SessionControlRequest,
    user_id: int = Depends(get_current_user_id),
    sessions: SessionService = Depends(get_session_service),
) -> SessionStateResponse:
    return to_state_response(sessions.complete(request.session_id, user_id))


@router.get("/api/monitor/feedback", response_model=FeedbackResponse)
def realtime_feedback(
    user_id: int = Depends(get_current_user_id),
    cache: CounterCache = Depends(get_counter_cache),
) -> FeedbackResponse:
    """Polled about once a second by the client"""
    try:
        snapshot = cache.read(user_id)
    except Exception as e:
        logger.error(f"Failed to read live counters for user {user_id}: {e}")
        snapshot = None
    return FeedbackResponse(**build_feedback(snapshot))


@router.get("/report/weekly", response_model=WeeklyReport)
def weekly_report(
    reference_date: Optional[date] = None,
    user_id: int = Depends(get_current_user_id),
    reports: ReportService = Depends(get_report_service),
) -> WeeklyReport:
    return reports.weekly_report(user_id, reference_date or date.today())
