"""Contracts for the external services a job depends on.

Each batch collaborator fans a batch out into per-photo calls and folds any
per-photo exception into an error result for that photo, so a batch call only
raises when the whole call cannot be made.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from app.analysis import ImageAnalysis, RoomType

logger = logging.getLogger(__name__)


@dataclass
class ScrapedListing:
    listing_id: str
    title: str
    image_urls: List[str] = field(default_factory=list)
    thumbnail: str = ""
    room_type: Optional[str] = None
    host_name: str = "Unknown Host"
    is_superhost: bool = False


@dataclass
class AnalysisRequest:
    photo_id: str
    image_base64: str
    mime_type: str = "image/jpeg"


@dataclass
class AnalysisResult:
    photo_id: str
    analysis: Optional[ImageAnalysis] = None
    error: Optional[str] = None


@dataclass
class GenerationRequest:
    photo_id: str
    image_base64: str
    room_type: RoomType
    analysis: ImageAnalysis
    mime_type: str = "image/jpeg"


@dataclass
class GenerationResult:
    photo_id: str
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None
    error: Optional[str] = None


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class ListingScraper(ABC):
    @abstractmethod
    async def scrape(self, url: str) -> ScrapedListing:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class BatchAnalyzer(ABC):
    """Classifies room type and quality issues for a batch of photos."""

    @abstractmethod
    async def analyze(self, request: AnalysisRequest) -> ImageAnalysis:
        raise NotImplementedError

    async def analyze_batch(self, requests: Sequence[AnalysisRequest]) -> List[AnalysisResult]:
        logger.info("Analyzing batch of %d photo(s)", len(requests))
        outcomes = await asyncio.gather(*(self.analyze(request) for request in requests), return_exceptions=True)
        results: List[AnalysisResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Analysis failed for photo %s: %s", request.photo_id, outcome)
                results.append(AnalysisResult(photo_id=request.photo_id, error=_describe(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(AnalysisResult(photo_id=request.photo_id, analysis=outcome))
        return results

    async def aclose(self) -> None:
        return None


class BatchGenerator(ABC):
    """Produces an enhanced version of each photo in a batch."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        raise NotImplementedError

    async def generate_batch(self, requests: Sequence[GenerationRequest]) -> List[GenerationResult]:
        logger.info("Generating batch of %d photo(s)", len(requests))
        outcomes = await asyncio.gather(*(self.generate(request) for request in requests), return_exceptions=True)
        results: List[GenerationResult] = []
        for request, outcome in zip(requests, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Generation failed for photo %s: %s", request.photo_id, outcome)
                results.append(GenerationResult(photo_id=request.photo_id, error=_describe(outcome)))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)
        return results

    async def aclose(self) -> None:
        return None
