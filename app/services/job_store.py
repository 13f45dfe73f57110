from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import suppress
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from app.core.config import EVICTION_FRACTION
from app.exceptions import JobNotFoundError, JobStateError
from app.models import JobRecord, JobStatus, can_transition, utcnow

logger = logging.getLogger(__name__)

_COMPLETION_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class JobStore:
    """In-process job table.

    Every read hands out a copy and every write stores a copy, so callers can
    never mutate stored state. State does not survive a restart.
    """

    def __init__(
        self,
        max_jobs: int = 1000,
        job_ttl: float = 60 * 60 * 24,
        cleanup_interval: float = 60 * 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.max_jobs = max_jobs
        self.job_ttl = timedelta(seconds=job_ttl)
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    async def initialize(self) -> None:
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup_loop())

    async def shutdown(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

    async def create(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            if job.job_id in self._jobs:
                logger.warning("Job %s already exists, updating instead", job.job_id)
                return self._replace(job)
            if len(self._jobs) >= self.max_jobs:
                self._evict_oldest()
            stored = job.copy()
            self._jobs[job.job_id] = stored
            logger.info("Job %s created (%d job(s) stored)", job.job_id, len(self._jobs))
            return stored.copy()

    async def find_by_id(self, job_id: str) -> JobRecord:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if self._is_expired(job, self._clock()):
                logger.info("Job %s expired, removing", job_id)
                del self._jobs[job_id]
                raise JobNotFoundError(job_id)
            return job.copy()

    async def update(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            if job.job_id not in self._jobs:
                logger.warning("Job %s not found for update, creating", job.job_id)
                if len(self._jobs) >= self.max_jobs:
                    self._evict_oldest()
            return self._replace(job)

    async def update_status(self, job_id: str, status: JobStatus, error: Optional[str] = None) -> JobRecord:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status is status and status.is_terminal:
                return job.copy()
            self._check_transition(job, status)

            now = self._clock()
            job.status = status
            if error is not None:
                job.error = error
            job.updated_at = now
            if status in _COMPLETION_STATUSES:
                job.completed_at = now
            logger.info("Job %s status -> %s", job_id, status.value)
            return job.copy()

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            deleted = self._jobs.pop(job_id, None) is not None
        if deleted:
            logger.info("Job %s deleted", job_id)
        return deleted

    async def find_by_status(self, status: JobStatus) -> List[JobRecord]:
        async with self._lock:
            return [job.copy() for job in self._jobs.values() if job.status is status]

    async def find_expired_jobs(self, older_than: datetime) -> List[JobRecord]:
        """Jobs created before ``older_than`` that never reached a terminal status."""
        async with self._lock:
            return [
                job.copy()
                for job in self._jobs.values()
                if job.created_at < older_than and not job.status.is_terminal
            ]

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        async with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if self._is_expired(job, now)]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Purged %d expired job(s), %d remaining", len(expired), len(self._jobs))
        return len(expired)

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            jobs = list(self._jobs.values())
        ordered = sorted(jobs, key=lambda job: job.created_at)
        return {
            "totalJobs": len(jobs),
            "statusCounts": dict(Counter(job.status.value for job in jobs)),
            "oldestJob": ordered[0].job_id if ordered else None,
            "newestJob": ordered[-1].job_id if ordered else None,
        }

    def __len__(self) -> int:
        return len(self._jobs)

    def _replace(self, job: JobRecord) -> JobRecord:
        current = self._jobs.get(job.job_id)
        if current is not None:
            self._check_transition(current, job.status)
        stored = job.copy()
        now = self._clock()
        stored.updated_at = now
        if stored.status in _COMPLETION_STATUSES and stored.completed_at is None:
            stored.completed_at = now
        self._jobs[job.job_id] = stored
        logger.debug("Job %s updated (status %s)", job.job_id, stored.status.value)
        return stored.copy()

    @staticmethod
    def _check_transition(current: JobRecord, status: JobStatus) -> None:
        if not can_transition(current.status, status):
            raise JobStateError(
                f"Job {current.job_id} cannot move from {current.status.value} to {status.value}",
                details={"jobId": current.job_id, "from": current.status.value, "to": status.value},
            )

    def _is_expired(self, job: JobRecord, now: datetime) -> bool:
        return now - job.created_at > self.job_ttl

    def _evict_oldest(self) -> None:
        count = max(1, int(self.max_jobs * EVICTION_FRACTION))
        oldest = sorted(self._jobs.values(), key=lambda job: job.created_at)[:count]
        for job in oldest:
            del self._jobs[job.job_id]
        logger.warning("Evicted %d oldest job(s), %d remaining", len(oldest), len(self._jobs))

    async def _periodic_cleanup_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.cleanup_interval)
                await self.purge_expired()
        except asyncio.CancelledError:
            return
