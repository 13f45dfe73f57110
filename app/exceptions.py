"""Custom exceptions for the listing photo optimizer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class OptimizerError(Exception):
    """Base exception for all optimizer related errors."""

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class InvalidRequestError(OptimizerError):
    """Raised when a start request fails validation."""

    code = "VALIDATION_ERROR"
    status_code = 400


class JobNotFoundError(OptimizerError):
    code = "JOB_NOT_FOUND"
    status_code = 404

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job with ID {job_id} not found", details={"jobId": job_id})
        self.job_id = job_id


class ImageNotFoundError(OptimizerError):
    code = "IMAGE_NOT_FOUND"
    status_code = 404


class JobStateError(OptimizerError):
    """Raised when a status change would move a job backwards or out of a terminal state."""

    code = "INVALID_STATE_TRANSITION"
    status_code = 409


class JobCreationError(OptimizerError):
    code = "JOB_CREATION_FAILED"
    status_code = 500


class JobStatusError(OptimizerError):
    code = "JOB_STATUS_FAILED"
    status_code = 500


class ServiceUnavailableError(OptimizerError):
    """Raised when a circuit breaker is open and the call is rejected without being attempted."""

    code = "SERVICE_UNAVAILABLE"
    status_code = 503


class ScrapingError(OptimizerError):
    code = "SCRAPING_FAILED"
    status_code = 502


class ImageDownloadError(OptimizerError):
    code = "IMAGE_PROCESSING_FAILED"
    status_code = 502


class AnalysisError(OptimizerError):
    code = "IMAGE_PROCESSING_FAILED"
    status_code = 502


class GenerationError(OptimizerError):
    code = "IMAGE_PROCESSING_FAILED"
    status_code = 502


class ConfigurationError(OptimizerError):
    code = "API_KEY_MISSING"
    status_code = 500


class ArchiveUnavailableError(OptimizerError):
    """Raised when a bundle is requested but no image of that variant exists yet."""

    code = "NO_IMAGES_AVAILABLE"
    status_code = 409
