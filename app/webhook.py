# app/webhook.py

from fastapi import APIRouter, Depends, status
from app.counters import CounterCache
from app.deps import get_counter_cache, get_ingestion_gateway
from app.ingestion import IngestionGateway
from app.schemas import IngestResponse, PostureEvent
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/ai/log", response_model=IngestResponse, status_code=status.HTTP_202_ACCEPTED)
async def receive_posture_log(
    event: PostureEvent,
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
) -> IngestResponse:
    """
    Receive one classification tick from the analysis process.
    Acknowledged immediately; persistence and counters happen on the worker pool.
    """
    accepted = gateway.submit(event)
    return IngestResponse(status="accepted" if accepted else "dropped", accepted=accepted)


@router.get("/health")
async def health_check():
    """Simple health check endpoint"""
    return {"status": "healthy"}


@router.get("/stats/live")
async def live_stats(
    cache: CounterCache = Depends(get_counter_cache),
    gateway: IngestionGateway = Depends(get_ingestion_gateway),
):
    """Quick endpoint to check the live pipeline"""
    return {
        "live_users": cache.size(),
        "pending_events": gateway.pool.pending(),
        "dead_letters": len(gateway.pool.dead_letters()),
    }
