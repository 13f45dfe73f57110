from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Response, status

from app.dependencies import ServiceContainer, get_container, get_job_store, get_orchestrator, get_status_reader
from app.exceptions import ArchiveUnavailableError, ImageNotFoundError
from app.imaging import guess_mime_type, secure_filename
from app.models import utcnow
from app.schemas import JobsHealthResponse, JobStatusResponse, OptimizationResponse
from app.services.archive import Variant, build_archive, photo_bytes
from app.services.job_store import JobStore
from app.services.orchestrator import JobOrchestrator
from app.services.status_reader import StatusReader

api_router = APIRouter(prefix="/api/v1", tags=["jobs"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@api_router.post(
    "/optimize",
    status_code=status.HTTP_201_CREATED,
    response_model=OptimizationResponse,
    response_model_exclude_none=True,
    name="start_optimization",
)
async def start_optimization(
    payload: Dict[str, Any] = Body(...),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> OptimizationResponse:
    return await orchestrator.start(payload)


@api_router.get(
    "/job/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    name="get_job_status",
)
async def get_job_status(
    job_id: str,
    response: Response,
    status_reader: StatusReader = Depends(get_status_reader),
) -> JobStatusResponse:
    progress = await status_reader.get(job_id)
    response.headers.update(NO_CACHE_HEADERS)
    return JobStatusResponse(data=progress)


@api_router.get("/download/{job_id}/{image_id}", name="download_image")
async def download_image(job_id: str, image_id: str, store: JobStore = Depends(get_job_store)) -> Response:
    job = await store.find_by_id(job_id)
    photo = job.find_photo(image_id)
    if photo is None:
        raise ImageNotFoundError("Image not found", details={"jobId": job_id, "imageId": image_id})
    try:
        data = photo_bytes(photo)
    except ValueError as exc:
        raise ImageNotFoundError(str(exc), details={"jobId": job_id, "imageId": image_id}) from exc

    filename = f"optimized-{photo.file_name}" if photo.optimized_base64 else photo.file_name
    return Response(
        content=data,
        media_type=guess_mime_type(data),
        headers={
            "Content-Disposition": f'attachment; filename="{secure_filename(filename)}"',
            "Cache-Control": "public, max-age=3600",
        },
    )


@api_router.get("/download/{job_id}", name="download_job_archive")
async def download_job_archive(
    job_id: str,
    variant: Variant = Variant.OPTIMIZED,
    store: JobStore = Depends(get_job_store),
) -> Response:
    job = await store.find_by_id(job_id)
    try:
        archive = await build_archive(job, variant)
    except ValueError as exc:
        raise ArchiveUnavailableError(str(exc), details={"jobId": job_id, "variant": variant.value}) from exc

    return Response(
        content=archive,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{job.job_id}-{variant.value}.zip"'},
    )


@api_router.get("/health/jobs", response_model=JobsHealthResponse, name="jobs_health")
async def jobs_health(container: ServiceContainer = Depends(get_container)) -> JobsHealthResponse:
    jobs = await container.store.stats()
    jobs["activeTasks"] = container.orchestrator.active_jobs
    return JobsHealthResponse(jobs=jobs, status_cache=container.status_reader.cache.stats(), timestamp=utcnow())
