# app/deps.py

from fastapi import Header
from app.counters import CounterCache, counter_cache
from app.ingestion import IngestionGateway, ingestion_gateway
from app.reports import ReportService, report_service
from app.sessions import SessionService, session_service


def get_current_user_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """
    Identity is established upstream (gateway / auth service);
    the verified user id arrives as a trusted header.
    """
    return x_user_id


def get_session_service() -> SessionService:
    return session_service


def get_ingestion_gateway() -> IngestionGateway:
    return ingestion_gateway


def get_counter_cache() -> CounterCache:
    return counter_cache


def get_report_service() -> ReportService:
    return report_service
