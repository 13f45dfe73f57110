from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from app.analysis import RoomType
from app.core.config import MAX_IMAGES, MIN_IMAGES
from app.exceptions import InvalidRequestError
from app.models import ImagePair, JobRecord, JobStatus, PhotoRecord, PhotoStatus
from app.services.scraper import validate_airbnb_url


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class OptimizationRequest(CamelModel):
    airbnb_url: str
    max_images: Optional[int] = Field(default=None, ge=MIN_IMAGES, le=MAX_IMAGES)

    @field_validator("airbnb_url")
    @classmethod
    def _check_listing_url(cls, value: str) -> str:
        value = value.strip()
        if not validate_airbnb_url(value):
            raise ValueError(
                "Must be a valid Airbnb listing URL (e.g., https://www.airbnb.com/rooms/1234567890123456)"
            )
        return value


_FIELD_ERROR_CODES = {
    "airbnbUrl": "INVALID_URL",
    "airbnb_url": "INVALID_URL",
    "maxImages": "MAX_IMAGES_OUT_OF_RANGE",
    "max_images": "MAX_IMAGES_OUT_OF_RANGE",
}


def parse_optimization_request(payload: Mapping[str, Any]) -> OptimizationRequest:
    """Validate a start request body.

    Raises
    ------
    InvalidRequestError
        With ``INVALID_URL`` or ``MAX_IMAGES_OUT_OF_RANGE`` when the first
        offending field is one of those, ``VALIDATION_ERROR`` otherwise.
    """

    try:
        return OptimizationRequest.model_validate(payload)
    except ValidationError as exc:
        errors = exc.errors()
        details = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]} for error in errors
        ]
        first_field = str(errors[0]["loc"][0]) if errors and errors[0]["loc"] else ""
        code = _FIELD_ERROR_CODES.get(first_field, "VALIDATION_ERROR")
        raise InvalidRequestError(details[0]["message"], code=code, details=details) from exc


class ProgressModel(CamelModel):
    total: int
    completed: int
    failed: int


class ImageResponse(CamelModel):
    id: str
    original_url: str
    original_base64: Optional[str] = None
    optimized_base64: Optional[str] = None
    mime_type: Optional[str] = None
    file_name: str
    room_type: RoomType
    processing_status: PhotoStatus
    error: Optional[str] = None

    @classmethod
    def from_record(cls, photo: PhotoRecord) -> "ImageResponse":
        return cls(
            id=photo.photo_id,
            original_url=photo.original_url,
            original_base64=photo.original_base64,
            optimized_base64=photo.optimized_base64,
            mime_type=photo.mime_type,
            file_name=photo.file_name,
            room_type=photo.room_type or RoomType.OTHER,
            processing_status=photo.status,
            error=photo.error,
        )


class ImagePairResponse(CamelModel):
    original: ImageResponse
    optimized: Optional[ImageResponse] = None
    room_type: RoomType
    file_name: str
    optimization_comment: Optional[str] = None

    @classmethod
    def from_record(cls, pair: ImagePair) -> "ImagePairResponse":
        return cls(
            original=ImageResponse.from_record(pair.original),
            optimized=ImageResponse.from_record(pair.optimized) if pair.optimized else None,
            room_type=pair.room_type,
            file_name=pair.file_name,
            optimization_comment=pair.optimization_comment or None,
        )


class JobSummary(CamelModel):
    id: str
    airbnb_url: str
    status: JobStatus
    progress: ProgressModel
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobSummary":
        return cls(
            id=job.job_id,
            airbnb_url=job.airbnb_url,
            status=job.status,
            progress=ProgressModel(**job.progress.to_dict()),
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            error=job.error,
        )


class JobData(CamelModel):
    job: JobSummary
    images: List[ImageResponse]
    image_pairs: List[ImagePairResponse]

    @classmethod
    def from_record(cls, job: JobRecord) -> "JobData":
        return cls(
            job=JobSummary.from_record(job),
            images=[ImageResponse.from_record(photo) for photo in job.photos],
            image_pairs=[ImagePairResponse.from_record(pair) for pair in job.image_pairs],
        )


class OptimizationResponse(CamelModel):
    success: bool = True
    job_id: str
    message: str
    data: Optional[JobData] = None


class JobMetadata(CamelModel):
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    total_images: int
    completed_images: int
    failed_images: int


class JobProgress(CamelModel):
    job_id: str
    status: JobStatus
    progress: ProgressModel
    current_step: str
    error: Optional[str] = None
    metadata: Optional[JobMetadata] = None
    job: Optional[JobSummary] = None
    images: Optional[List[ImageResponse]] = None
    image_pairs: Optional[List[ImagePairResponse]] = None


class JobStatusResponse(CamelModel):
    success: bool = True
    data: JobProgress


class JobsHealthResponse(CamelModel):
    success: bool = True
    jobs: Dict[str, Any]
    status_cache: Dict[str, Any]
    timestamp: datetime


class ErrorDetail(CamelModel):
    code: str
    message: str
    details: Optional[Any] = None


class ErrorResponse(CamelModel):
    success: bool = False
    error: ErrorDetail
    timestamp: datetime
