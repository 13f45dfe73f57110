"""Drives an optimization job from scrape to completion.

Stages of one job always run one after another (scrape, download, analyze,
generate, assemble); only different jobs run concurrently. Per-photo failures
end up on that photo's pair; anything else fails the whole job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union
from uuid import uuid4

from app.analysis import ImageAnalysis, RoomType, annotate_batch_consistency, describe_enhancements, resolve_room_type
from app.core.config import ANALYZER_BREAKER, GENERATOR_BREAKER, MAX_IMAGES, SCRAPER_BREAKER
from app.exceptions import JobCreationError, JobNotFoundError, JobStateError
from app.imaging import encode_image, guess_mime_type, with_extension
from app.models import ImagePair, JobRecord, JobStatus, PhotoRecord, PhotoStatus, Progress, utcnow
from app.schemas import JobData, OptimizationRequest, OptimizationResponse, parse_optimization_request
from app.services.collaborators import (
    AnalysisRequest,
    AnalysisResult,
    BatchAnalyzer,
    BatchGenerator,
    GenerationRequest,
    GenerationResult,
    ListingScraper,
)
from app.services.downloader import ImageDownloader
from app.services.job_store import JobStore
from app.services.resilience import CircuitBreaker, ResiliencePolicy

logger = logging.getLogger(__name__)


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _new_id() -> str:
    return uuid4().hex


class JobOrchestrator:
    def __init__(
        self,
        store: JobStore,
        scraper: ListingScraper,
        analyzer: BatchAnalyzer,
        generator: BatchGenerator,
        downloader: ImageDownloader,
        *,
        scraper_policy: Optional[ResiliencePolicy] = None,
        analyzer_policy: Optional[ResiliencePolicy] = None,
        generator_policy: Optional[ResiliencePolicy] = None,
        default_max_images: int = MAX_IMAGES,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.store = store
        self.scraper = scraper
        self.analyzer = analyzer
        self.generator = generator
        self.downloader = downloader
        self.scraper_policy = scraper_policy or ResiliencePolicy(CircuitBreaker("scraper", *SCRAPER_BREAKER))
        self.analyzer_policy = analyzer_policy or ResiliencePolicy(CircuitBreaker("analyzer", *ANALYZER_BREAKER))
        self.generator_policy = generator_policy or ResiliencePolicy(CircuitBreaker("generator", *GENERATOR_BREAKER))
        self.default_max_images = default_max_images
        self._id_factory = id_factory
        self._tasks: Set[asyncio.Task[None]] = set()

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def start(self, payload: Union[OptimizationRequest, Mapping[str, Any]]) -> OptimizationResponse:
        """Validate the request, store a PENDING job and schedule its processing.

        Returns as soon as the job is stored; the stages run in a background
        task that callers never await.
        """

        request = payload if isinstance(payload, OptimizationRequest) else parse_optimization_request(payload)
        max_images = request.max_images or self.default_max_images

        try:
            job = await self.store.create(JobRecord(job_id=self._id_factory(), airbnb_url=request.airbnb_url))
        except Exception as exc:
            logger.exception("Failed to create job for %s", request.airbnb_url)
            raise JobCreationError(f"Failed to create optimization job: {_describe(exc)}") from exc

        task = asyncio.create_task(self.run(job.job_id, request.airbnb_url, max_images), name=f"job-{job.job_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Job %s started for %s (max %d image(s))", job.job_id, request.airbnb_url, max_images)

        return OptimizationResponse(
            job_id=job.job_id,
            message="Optimization job started successfully",
            data=JobData.from_record(job),
        )

    async def run(self, job_id: str, airbnb_url: str, max_images: int) -> None:
        try:
            await self.store.update_status(job_id, JobStatus.SCRAPING)
            listing = await self.scraper_policy.call(self.scraper.scrape, airbnb_url)

            job = await self.store.find_by_id(job_id)
            job.room_type_hint = listing.room_type
            job.photos = [
                PhotoRecord(photo_id=self._id_factory(), original_url=url, file_name=f"image_{index}.jpg")
                for index, url in enumerate(listing.image_urls[:max_images], start=1)
            ]
            job.progress = Progress(total=len(job.photos))
            await self.store.update(job)
            logger.info("Job %s scraped %d photo(s)", job_id, len(job.photos))

            job = await self.store.update_status(job_id, JobStatus.PROCESSING)
            job.image_pairs = await self._process_photos(job)
            job.photos = [pair.original for pair in job.image_pairs]
            job.progress = Progress(total=len(job.photos), completed=job.completed_count, failed=job.failed_count)
            job.status = JobStatus.COMPLETED
            await self.store.update(job)
            logger.info(
                "Job %s completed: %d optimized, %d failed", job_id, job.progress.completed, job.progress.failed
            )
        except asyncio.CancelledError:
            logger.warning("Job %s interrupted", job_id)
            raise
        except Exception as exc:
            logger.exception("Job %s failed", job_id)
            await self._mark_failed(job_id, _describe(exc))

    async def _mark_failed(self, job_id: str, message: str) -> None:
        try:
            await self.store.update_status(job_id, JobStatus.FAILED, error=message)
        except (JobNotFoundError, JobStateError) as exc:
            logger.warning("Could not mark job %s as failed: %s", job_id, exc)

    async def _process_photos(self, job: JobRecord) -> List[ImagePair]:
        photos = job.photos
        errors: Dict[str, str] = {}

        await asyncio.gather(*(self._download(photo, errors) for photo in photos))
        downloaded = [photo for photo in photos if photo.photo_id not in errors]

        for photo in downloaded:
            photo.status = PhotoStatus.ANALYZING
        await self._persist(job)
        analyses = await self._analyze(downloaded, errors)

        analyzed = [photo for photo in downloaded if photo.photo_id in analyses]
        room_types: Dict[str, RoomType] = {}
        for photo, analysis in zip(analyzed, annotate_batch_consistency([analyses[p.photo_id] for p in analyzed])):
            photo.analysis = analysis
            photo.room_type = room_types[photo.photo_id] = resolve_room_type(job.room_type_hint, analysis.room_type)
            photo.status = PhotoStatus.OPTIMIZING
        await self._persist(job)
        generated = await self._generate(analyzed, room_types, errors)

        pairs: List[ImagePair] = []
        for index, photo in enumerate(photos, start=1):
            room_type = room_types.get(photo.photo_id) or resolve_room_type(job.room_type_hint, None)
            pairs.append(self._assemble_pair(index, photo, room_type, generated.get(photo.photo_id), errors))
        return pairs

    async def _persist(self, job: JobRecord) -> None:
        await self.store.update(job)

    async def _download(self, photo: PhotoRecord, errors: Dict[str, str]) -> None:
        try:
            data = await self.downloader.fetch(photo.original_url)
            mime_type = guess_mime_type(data)
        except Exception as exc:
            logger.warning("Download failed for photo %s (%s): %s", photo.photo_id, photo.original_url, exc)
            errors[photo.photo_id] = _describe(exc)
            return
        photo.original_base64 = encode_image(data)
        photo.mime_type = mime_type
        photo.updated_at = utcnow()

    async def _analyze(self, photos: Sequence[PhotoRecord], errors: Dict[str, str]) -> Dict[str, ImageAnalysis]:
        if not photos:
            return {}
        requests = [
            AnalysisRequest(photo_id=photo.photo_id, image_base64=photo.original_base64, mime_type=photo.mime_type)
            for photo in photos
        ]
        try:
            results: List[AnalysisResult] = await self.analyzer_policy.call(self.analyzer.analyze_batch, requests)
        except Exception as exc:
            logger.warning("Batch analysis failed for %d photo(s): %s", len(requests), exc)
            results = [AnalysisResult(photo_id=request.photo_id, error=_describe(exc)) for request in requests]

        expected = {photo.photo_id for photo in photos}
        analyses: Dict[str, ImageAnalysis] = {}
        for result in results:
            if result.photo_id not in expected:
                logger.warning("Ignoring analysis result for unknown photo %s", result.photo_id)
            elif result.analysis is not None:
                analyses[result.photo_id] = result.analysis
            else:
                errors[result.photo_id] = result.error or "Image analysis failed"
        for photo_id in expected - analyses.keys() - errors.keys():
            errors[photo_id] = "No analysis result returned"
        return analyses

    async def _generate(
        self,
        photos: Sequence[PhotoRecord],
        room_types: Mapping[str, RoomType],
        errors: Dict[str, str],
    ) -> Dict[str, GenerationResult]:
        if not photos:
            return {}
        requests = [
            GenerationRequest(
                photo_id=photo.photo_id,
                image_base64=photo.original_base64,
                room_type=room_types[photo.photo_id],
                analysis=photo.analysis,
                mime_type=photo.mime_type,
            )
            for photo in photos
        ]
        try:
            results: List[GenerationResult] = await self.generator_policy.call(
                self.generator.generate_batch, requests
            )
        except Exception as exc:
            logger.warning("Batch generation failed for %d photo(s): %s", len(requests), exc)
            results = [GenerationResult(photo_id=request.photo_id, error=_describe(exc)) for request in requests]

        expected = {photo.photo_id for photo in photos}
        generated: Dict[str, GenerationResult] = {}
        for result in results:
            if result.photo_id not in expected:
                logger.warning("Ignoring generation result for unknown photo %s", result.photo_id)
            elif result.image_base64:
                generated[result.photo_id] = result
            else:
                errors[result.photo_id] = result.error or "Image optimization failed"
        for photo_id in expected - generated.keys() - errors.keys():
            errors[photo_id] = "No optimization result returned"
        return generated

    def _assemble_pair(
        self,
        index: int,
        photo: PhotoRecord,
        room_type: RoomType,
        result: Optional[GenerationResult],
        errors: Mapping[str, str],
    ) -> ImagePair:
        now = utcnow()
        photo.room_type = room_type
        photo.updated_at = now

        if result is None:
            photo.status = PhotoStatus.FAILED
            photo.error = errors.get(photo.photo_id, "Image optimization failed")
            logger.warning("Photo %s failed: %s", photo.photo_id, photo.error)
            return ImagePair(original=photo, room_type=room_type, file_name=f"failed_{index}.jpg")

        photo.status = PhotoStatus.COMPLETED
        mime_type = result.mime_type or photo.mime_type or "image/jpeg"
        optimized = PhotoRecord(
            photo_id=self._id_factory(),
            original_url=photo.original_url,
            file_name=with_extension(f"{room_type.value}_{index}.jpg", mime_type),
            status=PhotoStatus.COMPLETED,
            optimized_base64=result.image_base64,
            mime_type=mime_type,
            analysis=photo.analysis,
            room_type=room_type,
        )
        return ImagePair(
            original=photo,
            optimized=optimized,
            room_type=room_type,
            file_name=optimized.file_name,
            enhancements=describe_enhancements(room_type, photo.analysis),
        )

    async def wait_for_pending(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight job(s)", len(tasks))
