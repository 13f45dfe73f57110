from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from app.analysis import ImageAnalysis, RoomType

__all__ = [
    "ImagePair",
    "JobRecord",
    "JobStatus",
    "PhotoRecord",
    "PhotoStatus",
    "Progress",
    "RoomType",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class JobStatus(str, Enum):
    PENDING = "pending"
    SCRAPING = "scraping"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
_STAGE_ORDER = (JobStatus.PENDING, JobStatus.SCRAPING, JobStatus.PROCESSING)


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Whether a job may move from ``current`` to ``new``.

    Stages only move forward; CANCELLED is reachable from any non-terminal
    stage; nothing leaves a terminal status.
    """

    if current.is_terminal:
        return False
    if new.is_terminal or new is current:
        return True
    return _STAGE_ORDER.index(new) > _STAGE_ORDER.index(current)


class PhotoStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    OPTIMIZING = "optimizing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Progress:
    total: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "completed": self.completed, "failed": self.failed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Progress":
        return cls(total=data.get("total", 0), completed=data.get("completed", 0), failed=data.get("failed", 0))


@dataclass
class PhotoRecord:
    photo_id: str
    original_url: str
    file_name: str
    status: PhotoStatus = PhotoStatus.PENDING
    original_base64: Optional[str] = None
    optimized_base64: Optional[str] = None
    mime_type: Optional[str] = None
    analysis: Optional[ImageAnalysis] = None
    room_type: Optional[RoomType] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "photo_id": self.photo_id,
            "original_url": self.original_url,
            "file_name": self.file_name,
            "status": self.status.value,
            "original_base64": self.original_base64,
            "optimized_base64": self.optimized_base64,
            "mime_type": self.mime_type,
            "analysis": self.analysis.model_dump(mode="json") if self.analysis else None,
            "room_type": self.room_type.value if self.room_type else None,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhotoRecord":
        return cls(
            photo_id=data["photo_id"],
            original_url=data["original_url"],
            file_name=data["file_name"],
            status=PhotoStatus(data.get("status", PhotoStatus.PENDING.value)),
            original_base64=data.get("original_base64"),
            optimized_base64=data.get("optimized_base64"),
            mime_type=data.get("mime_type"),
            analysis=ImageAnalysis.model_validate(data["analysis"]) if data.get("analysis") else None,
            room_type=RoomType(data["room_type"]) if data.get("room_type") else None,
            error=data.get("error"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass
class ImagePair:
    original: PhotoRecord
    room_type: RoomType
    file_name: str
    optimized: Optional[PhotoRecord] = None
    enhancements: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.optimized is not None

    @property
    def optimization_comment(self) -> str:
        return "\n".join(self.enhancements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original": self.original.to_dict(),
            "optimized": self.optimized.to_dict() if self.optimized else None,
            "room_type": self.room_type.value,
            "file_name": self.file_name,
            "enhancements": list(self.enhancements),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImagePair":
        return cls(
            original=PhotoRecord.from_dict(data["original"]),
            optimized=PhotoRecord.from_dict(data["optimized"]) if data.get("optimized") else None,
            room_type=RoomType(data["room_type"]),
            file_name=data["file_name"],
            enhancements=list(data.get("enhancements", [])),
        )


@dataclass
class JobRecord:
    job_id: str
    airbnb_url: str
    status: JobStatus = JobStatus.PENDING
    photos: List[PhotoRecord] = field(default_factory=list)
    image_pairs: List[ImagePair] = field(default_factory=list)
    progress: Progress = field(default_factory=Progress)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    room_type_hint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "airbnb_url": self.airbnb_url,
            "status": self.status.value,
            "photos": [photo.to_dict() for photo in self.photos],
            "image_pairs": [pair.to_dict() for pair in self.image_pairs],
            "progress": self.progress.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "error": self.error,
            "room_type_hint": self.room_type_hint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        return cls(
            job_id=data["job_id"],
            airbnb_url=data["airbnb_url"],
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            photos=[PhotoRecord.from_dict(item) for item in data.get("photos", [])],
            image_pairs=[ImagePair.from_dict(item) for item in data.get("image_pairs", [])],
            progress=Progress.from_dict(data.get("progress", {})),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            completed_at=_parse(data.get("completed_at")),
            error=data.get("error"),
            room_type_hint=data.get("room_type_hint"),
        )

    def copy(self) -> "JobRecord":
        return JobRecord.from_dict(self.to_dict())

    @property
    def total_images(self) -> int:
        return len(self.photos)

    @property
    def completed_count(self) -> int:
        return sum(1 for pair in self.image_pairs if pair.succeeded)

    @property
    def failed_count(self) -> int:
        return sum(1 for pair in self.image_pairs if not pair.succeeded)

    def find_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        """Look up an original or optimized photo record by id."""
        for pair in self.image_pairs:
            if pair.original.photo_id == photo_id:
                return pair.original
            if pair.optimized and pair.optimized.photo_id == photo_id:
                return pair.optimized
        return next((photo for photo in self.photos if photo.photo_id == photo_id), None)
