"""
Fire-and-forget background jobs for requirement quality analysis.

A job runs in its own database session, after the triggering request has
committed. Failures are logged with a stack trace and dropped; they never
reach the request that scheduled the job.
"""
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from .config import get_settings

logger = logging.getLogger("taskboard-core.analysis_jobs")

Job = Callable[..., Any]


class AnalysisDispatcher(ABC):
    """Schedules ``job(db, *args)`` outside the caller's unit of work."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory

    @abstractmethod
    def submit(self, name: str, job: Job, *args: Any) -> None:
        ...

    def shutdown(self, wait: bool = True) -> None:
        pass

    def _run(self, name: str, job: Job, *args: Any) -> Any:
        db = None
        try:
            db = self._session_factory()
            result = job(db, *args)
            logger.info(f"Background job completed: {name}")
            return result
        except Exception as e:
            if db is not None:
                db.rollback()
            logger.error(f"Background job failed: {name} - {e}", exc_info=True)
            return None
        finally:
            if db is not None:
                db.close()


class ThreadedAnalysisDispatcher(AnalysisDispatcher):
    """Runs jobs on a small thread pool."""

    def __init__(self, session_factory: Callable[[], Session], max_workers: int = 2):
        super().__init__(session_factory)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="analysis")
        # Keep references until done so callers can drain on shutdown
        self._active: set[Future] = set()

    def submit(self, name: str, job: Job, *args: Any) -> None:
        future = self._executor.submit(self._run, name, job, *args)
        self._active.add(future)
        future.add_done_callback(self._active.discard)
        logger.debug(f"Scheduled background job: {name}")

    @property
    def pending(self) -> int:
        return len(self._active)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineAnalysisDispatcher(AnalysisDispatcher):
    """Runs jobs immediately, with the same isolation and error policy."""

    def submit(self, name: str, job: Job, *args: Any) -> None:
        self._run(name, job, *args)


class NullAnalysisDispatcher(AnalysisDispatcher):
    """Drops every job. Used when analysis is disabled."""

    def submit(self, name: str, job: Job, *args: Any) -> None:
        logger.debug(f"Dropped background job: {name}")


_dispatcher: Optional[AnalysisDispatcher] = None


def get_analysis_dispatcher() -> AnalysisDispatcher:
    """Process-wide dispatcher built from settings on first use."""
    global _dispatcher
    if _dispatcher is None:
        from .database import SessionLocal

        settings = get_settings()
        if settings.analysis_async:
            _dispatcher = ThreadedAnalysisDispatcher(SessionLocal, settings.analysis_max_workers)
        else:
            _dispatcher = InlineAnalysisDispatcher(SessionLocal)
    return _dispatcher


def shutdown_analysis_dispatcher() -> None:
    global _dispatcher
    if _dispatcher is not None:
        _dispatcher.shutdown(wait=True)
        _dispatcher = None
