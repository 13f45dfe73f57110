from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from app.exceptions import JobNotFoundError, JobStatusError
from app.models import JobRecord, JobStatus
from app.schemas import ImagePairResponse, ImageResponse, JobMetadata, JobProgress, JobSummary, ProgressModel
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)

CURRENT_STEPS = {
    JobStatus.PENDING: "Job queued",
    JobStatus.SCRAPING: "Scraping Airbnb listing",
    JobStatus.PROCESSING: "Processing images",
    JobStatus.COMPLETED: "Job completed",
    JobStatus.FAILED: "Job failed",
    JobStatus.CANCELLED: "Job cancelled",
}

_CACHEABLE_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


def current_step(status: JobStatus) -> str:
    return CURRENT_STEPS.get(status, "Unknown status")


class TerminalJobCache:
    """Short-lived cache of progress payloads for jobs that can no longer change.

    Expired entries are dropped on every write, and the cache never holds more
    than ``max_entries`` payloads; the oldest are evicted first.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, Tuple[float, JobProgress]] = {}

    def get(self, job_id: str) -> Optional[JobProgress]:
        entry = self._entries.get(job_id)
        if entry is None:
            return None
        stored_at, progress = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[job_id]
            return None
        return progress.model_copy(deep=True)

    def set(self, job_id: str, progress: JobProgress) -> None:
        now = self._clock()
        self.purge_expired(now)
        self._entries.pop(job_id, None)
        while self._entries and len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("Evicted job %s from terminal cache", oldest)
        self._entries[job_id] = (now, progress.model_copy(deep=True))

    def purge_expired(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        expired = [job_id for job_id, (stored_at, _) in self._entries.items() if now - stored_at >= self.ttl]
        for job_id in expired:
            del self._entries[job_id]
        return len(expired)

    def invalidate(self, job_id: str) -> None:
        self._entries.pop(job_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "maxEntries": self.max_entries,
            "ttlSeconds": self.ttl,
            "jobIds": list(self._entries),
        }

    def __len__(self) -> int:
        return len(self._entries)


def build_job_progress(job: JobRecord) -> JobProgress:
    progress = JobProgress(
        job_id=job.job_id,
        status=job.status,
        progress=ProgressModel(**job.progress.to_dict()),
        current_step=current_step(job.status),
        error=job.error,
        metadata=JobMetadata(
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            total_images=job.total_images,
            completed_images=job.completed_count,
            failed_images=job.failed_count,
        ),
    )
    if job.status in _CACHEABLE_STATUSES:
        progress.job = JobSummary.from_record(job)
        progress.images = [ImageResponse.from_record(photo) for photo in job.photos]
        progress.image_pairs = [ImagePairResponse.from_record(pair) for pair in job.image_pairs]
    return progress


class StatusReader:
    def __init__(self, store: JobStore, cache: Optional[TerminalJobCache] = None) -> None:
        self.store = store
        self.cache = cache if cache is not None else TerminalJobCache()

    async def get(self, job_id: str) -> JobProgress:
        """Return the client-facing progress payload for ``job_id``.

        Raises
        ------
        JobNotFoundError
            If no such job is stored.
        JobStatusError
            If the store read fails for any other reason.
        """

        cached = self.cache.get(job_id)
        if cached is not None:
            logger.debug("Serving job %s from terminal cache", job_id)
            return cached

        try:
            job = await self.store.find_by_id(job_id)
        except JobNotFoundError:
            raise
        except Exception as exc:
            logger.exception("Failed to read job %s", job_id)
            raise JobStatusError(f"Failed to get job status: {exc}", details={"jobId": job_id}) from exc

        progress = build_job_progress(job)
        if job.status in _CACHEABLE_STATUSES:
            self.cache.set(job_id, progress)
        return progress
