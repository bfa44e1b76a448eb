"""
In-memory singleton that runs and tracks background jobs.

Usage
-----
    from ecocomply.services.job_manager import job_manager

    status = job_manager.enqueue(
        "document-extraction", document_id, lambda: run_document_extraction(document_id)
    )
    counts = job_manager.counts()   # {"waiting": 0, "active": 1, ...}

A coroutine *factory* is passed rather than a coroutine so a refused
duplicate never leaves an un-awaited coroutine behind.  Jobs open their own
database session; the request session is closed by the time they run.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Finished statuses are forgotten after this long
FINISHED_TTL_SECONDS = 3600


# ---------------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------------

class JobState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclasses.dataclass
class JobStatus:
    kind: str
    key: str
    state: JobState = JobState.WAITING
    error: Optional[str] = None
    queued_at: float = dataclasses.field(default_factory=time.monotonic)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None

    @property
    def job_id(self) -> str:
        return f"{self.kind}:{self.key}"

    @property
    def elapsed_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)


# ---------------------------------------------------------------------------
# Job manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

class JobManager:
    """Runs background jobs as asyncio.Tasks keyed by ``kind:key``."""

    _tasks: Dict[str, asyncio.Task] = {}
    _status: Dict[str, JobStatus] = {}

    @classmethod
    def is_running(cls, kind: str, key: str) -> bool:
        task = cls._tasks.get(f"{kind}:{key}")
        return task is not None and not task.done()

    @classmethod
    def get_status(cls, kind: str, key: str) -> Optional[JobStatus]:
        return cls._status.get(f"{kind}:{key}")

    @classmethod
    def enqueue(
        cls,
        kind: str,
        key: str,
        coro_factory: Callable[[], Awaitable[Any]],
    ) -> JobStatus:
        """
        Schedule ``coro_factory()`` as a background task.

        Raises RuntimeError when a job with the same kind and key is still
        running.  Returns the JobStatus, which the task updates in place.
        """
        if cls.is_running(kind, key):
            raise RuntimeError(f"Job already running: {kind}:{key}")
        cls.prune()

        status = JobStatus(kind=kind, key=str(key))
        cls._status[status.job_id] = status

        async def _wrapper() -> None:
            status.state = JobState.ACTIVE
            status.started_at = time.monotonic()
            try:
                await coro_factory()
                status.state = JobState.COMPLETED
            except Exception as exc:
                logger.error("Job %s failed: %s", status.job_id, exc, exc_info=True)
                status.state = JobState.FAILED
                status.error = str(exc)[:500]
            finally:
                status.completed_at = time.monotonic()

        task = asyncio.create_task(_wrapper())
        cls._tasks[status.job_id] = task
        task.add_done_callback(lambda _t: cls._cleanup(status.job_id))

        logger.info("Job queued: %s", status.job_id)
        return status

    @classmethod
    def counts(cls) -> Dict[str, int]:
        cls.prune()
        counts = {state.value: 0 for state in JobState}
        for status in cls._status.values():
            counts[status.state.value] += 1
        return counts

    @classmethod
    def list_jobs(cls, kind: Optional[str] = None) -> List[JobStatus]:
        cls.prune()
        return [s for s in cls._status.values() if kind is None or s.kind == kind]

    @classmethod
    def prune(cls, max_age: float = FINISHED_TTL_SECONDS) -> int:
        """Drop completed and failed statuses that finished more than *max_age* seconds ago."""
        cutoff = time.monotonic() - max_age
        stale = [
            job_id
            for job_id, s in cls._status.items()
            if s.completed_at is not None and s.completed_at <= cutoff and job_id not in cls._tasks
        ]
        for job_id in stale:
            del cls._status[job_id]
        return len(stale)

    @classmethod
    def reset(cls) -> None:
        """Cancel running tasks and forget all statuses."""
        for task in cls._tasks.values():
            if not task.done():
                task.cancel()
        cls._tasks.clear()
        cls._status.clear()

    @classmethod
    def _cleanup(cls, job_id: str) -> None:
        """Remove the task reference (status is kept until pruned)."""
        cls._tasks.pop(job_id, None)


job_manager = JobManager
