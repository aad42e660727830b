# app/ingestion.py

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from threading import Lock, Thread
from typing import Callable, List, Optional
import queue
from sqlalchemy.orm import sessionmaker
from app.config import settings
from app.counters import CounterCache, counter_cache
from app.database import SessionLocal
from app.errors import SessionNotFound
from app.models import MonitoringSession, PostureLog, SessionStatus
from app.schemas import PostureEvent
from app.tags import is_warning_event
import logging

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class DeadLetter:
    event: PostureEvent
    reason: str
    failed_at: datetime


class IngestionPool:
    """
    Fixed number of worker threads over a bounded queue.
    Events that cannot be queued or processed go to the dead-letter log.
    """

    def __init__(
        self,
        handler: Callable[[PostureEvent], object],
        workers: int = 4,
        queue_size: int = 1000,
        dead_letter_size: int = 500,
    ):
        self._handler = handler
        self._workers = workers
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._dead_letters: deque = deque(maxlen=dead_letter_size)
        self._dead_lock = Lock()
        self._threads: List[Thread] = []

    def start(self) -> None:
        if self._threads:
            return
        for i in range(self._workers):
            thread = Thread(target=self._work, name=f"ingest-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info(f"Ingestion pool started with {self._workers} workers")

    def submit(self, event: PostureEvent) -> bool:
        """Queue without blocking. Returns False if the event was shed."""
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            logger.warning(f"Ingestion queue full, dropping event for session {event.session_id}")
            self._dead_letter(event, "queue full")
            return False
        return True

    def join(self) -> None:
        """Block until every queued event has been processed"""
        self._queue.join()

    def shutdown(self, wait: bool = True) -> None:
        for _ in self._threads:
            self._queue.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()
        self._threads = []
        logger.info("Ingestion pool stopped")

    def dead_letters(self) -> List[DeadLetter]:
        with self._dead_lock:
            return list(self._dead_letters)

    def pending(self) -> int:
        return self._queue.qsize()

    def _work(self) -> None:
        while True:
            event = self._queue.get()
            try:
                if event is _STOP:
                    return
                self._handler(event)
            except Exception as e:
                logger.error(f"Failed to ingest event for session {event.session_id}: {e}")
                self._dead_letter(event, str(e))
            finally:
                self._queue.task_done()

    def _dead_letter(self, event: PostureEvent, reason: str) -> None:
        with self._dead_lock:
            self._dead_letters.append(DeadLetter(event=event, reason=reason, failed_at=datetime.now()))


class IngestionGateway:
    """
    Entry point for classifier ticks.

    Only warning ticks are persisted (ticks with nothing but GOOD/UNKNOWN
    are dropped to keep the log small). Every tick of an open session feeds
    the live counters.
    The durable write and the cache update fail independently.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: CounterCache,
        workers: int = settings.ingest_workers,
        queue_size: int = settings.ingest_queue_size,
        dead_letter_size: int = settings.dead_letter_size,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self.pool = IngestionPool(self.ingest, workers, queue_size, dead_letter_size)

    def submit(self, event: PostureEvent) -> bool:
        """Fire-and-forget: hand the event to the worker pool and return"""
        return self.pool.submit(event)

    def ingest(self, event: PostureEvent) -> bool:
        """
        Process one event synchronously.
        Returns True if a posture log row was written.
        """
        persisted = False
        persist_error: Optional[Exception] = None

        db = self._session_factory()
        try:
            session = db.get(MonitoringSession, event.session_id)
            if session is None:
                raise SessionNotFound()

            # The stored owner wins over whatever the producer sent
            user_id = session.user_id
            if user_id != event.user_id:
                logger.warning(f"Event for session {session.id} claims user {event.user_id}, owner is {user_id}")

            # Counters were frozen into the row and cleared at completion;
            # a late tick must not leak into the user's next session
            live = session.status != SessionStatus.COMPLETED
            if not live:
                logger.debug(f"Session {session.id} already completed, live counters left untouched")

            if is_warning_event(event.tags):
                try:
                    db.add(PostureLog(
                        user_id=user_id,
                        session_id=session.id,
                        timestamp=event.timestamp,
                        tags=list(event.tags),
                    ))
                    db.commit()
                    persisted = True
                    logger.debug(f"Warning log saved for session {session.id}: {event.tags}")
                except Exception as e:
                    db.rollback()
                    persist_error = e
            else:
                logger.debug(f"Skipping log for session {session.id}: no warning tags")
        finally:
            db.close()

        if live:
            self._update_cache(user_id, event)

        if persist_error is not None:
            raise persist_error
        return persisted

    def _update_cache(self, user_id: int, event: PostureEvent) -> None:
        try:
            self._cache.increment(user_id, event.tags, event.timestamp)
        except Exception as e:
            logger.error(f"Failed to update live counters for user {user_id}: {e}")


# Global singleton
ingestion_gateway = IngestionGateway(SessionLocal, counter_cache)
