from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import pytest
from PIL import Image

from app.analysis import ImageAnalysis
from app.exceptions import ImageDownloadError, ScrapingError
from app.imaging import encode_image
from app.services.collaborators import (
    AnalysisRequest,
    AnalysisResult,
    BatchAnalyzer,
    BatchGenerator,
    GenerationRequest,
    GenerationResult,
    ListingScraper,
    ScrapedListing,
)
from app.services.job_store import JobStore
from app.services.orchestrator import JobOrchestrator

LISTING_URL = "https://www.airbnb.com/rooms/1234567890123456"


def image_bytes(image_format: str = "PNG", color: tuple[int, int, int] = (200, 40, 40)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buffer, format=image_format)
    return buffer.getvalue()


def photo_urls(count: int) -> List[str]:
    return [f"https://a0.muscache.com/im/pictures/photo-{index}.jpg" for index in range(1, count + 1)]


def make_analysis(room_type: str = "bedroom", **sections: Dict[str, object]) -> ImageAnalysis:
    data: Dict[str, object] = {
        "room_type": room_type,
        "room_context": {"size": "medium"},
        "lighting": {"quality": "good"},
        "composition": {"framing": "good"},
        "technical_quality": {},
        "clutter_and_staging": {},
        "color_and_tone": {},
        "enhancement_priority": ["lighting"],
    }
    data.update(sections)
    return ImageAnalysis.model_validate(data)


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeScraper(ListingScraper):
    def __init__(
        self,
        urls: Sequence[str] = (),
        room_type: Optional[str] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.urls = list(urls)
        self.room_type = room_type
        self.error = error
        self.calls: List[str] = []

    async def scrape(self, url: str) -> ScrapedListing:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        if not self.urls:
            raise ScrapingError("No images found in the listing")
        return ScrapedListing(
            listing_id="12345678",
            title="Cosy loft",
            image_urls=list(self.urls),
            thumbnail=self.urls[0],
            room_type=self.room_type,
        )


class FakeAnalyzer(BatchAnalyzer):
    """Answers by position within the batch; can fail, drop, or reorder results."""

    def __init__(
        self,
        room_types: Sequence[str] = (),
        fail_positions: Iterable[int] = (),
        drop_positions: Iterable[int] = (),
        reverse: bool = False,
        error: Optional[Exception] = None,
    ) -> None:
        self.room_types = list(room_types)
        self.fail_positions = set(fail_positions)
        self.drop_positions = set(drop_positions)
        self.reverse = reverse
        self.error = error
        self.batches: List[List[AnalysisRequest]] = []

    async def analyze(self, request: AnalysisRequest) -> ImageAnalysis:
        return make_analysis()

    async def analyze_batch(self, requests: Sequence[AnalysisRequest]) -> List[AnalysisResult]:
        self.batches.append(list(requests))
        if self.error is not None:
            raise self.error
        results = []
        for position, request in enumerate(requests):
            if position in self.drop_positions:
                continue
            if position in self.fail_positions:
                results.append(AnalysisResult(photo_id=request.photo_id, error="analysis exploded"))
                continue
            room_type = self.room_types[position] if position < len(self.room_types) else "bedroom"
            results.append(AnalysisResult(photo_id=request.photo_id, analysis=make_analysis(room_type)))
        return list(reversed(results)) if self.reverse else results


class FakeGenerator(BatchGenerator):
    def __init__(
        self,
        fail_positions: Iterable[int] = (),
        drop_positions: Iterable[int] = (),
        reverse: bool = False,
        error: Optional[Exception] = None,
    ) -> None:
        self.fail_positions = set(fail_positions)
        self.drop_positions = set(drop_positions)
        self.reverse = reverse
        self.error = error
        self.batches: List[List[GenerationRequest]] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        return GenerationResult(photo_id=request.photo_id, image_base64=encode_image(image_bytes("JPEG")))

    async def generate_batch(self, requests: Sequence[GenerationRequest]) -> List[GenerationResult]:
        self.batches.append(list(requests))
        if self.error is not None:
            raise self.error
        results = []
        for position, request in enumerate(requests):
            if position in self.drop_positions:
                continue
            if position in self.fail_positions:
                results.append(GenerationResult(photo_id=request.photo_id, error="generation exploded"))
                continue
            results.append(
                GenerationResult(
                    photo_id=request.photo_id,
                    image_base64=encode_image(image_bytes("JPEG", (10, 120, 10))),
                    mime_type="image/jpeg",
                )
            )
        return list(reversed(results)) if self.reverse else results

    @property
    def requests(self) -> List[GenerationRequest]:
        return [request for batch in self.batches for request in batch]


class FakeDownloader:
    def __init__(self, failing: Iterable[str] = (), payloads: Optional[Dict[str, bytes]] = None) -> None:
        self.failing = set(failing)
        self.payloads = dict(payloads or {})
        self.fetched: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> bytes:
        self.fetched.append(url)
        if url in self.failing:
            raise ImageDownloadError("Failed to download image: 404 Not Found")
        return self.payloads.get(url, image_bytes("PNG"))

    async def aclose(self) -> None:
        self.closed = True


def build_orchestrator(
    scraper: Optional[ListingScraper] = None,
    analyzer: Optional[BatchAnalyzer] = None,
    generator: Optional[BatchGenerator] = None,
    downloader: Optional[FakeDownloader] = None,
    store: Optional[JobStore] = None,
    **kwargs: object,
) -> JobOrchestrator:
    return JobOrchestrator(
        store if store is not None else JobStore(),
        scraper or FakeScraper(photo_urls(3)),
        analyzer or FakeAnalyzer(),
        generator or FakeGenerator(),
        downloader or FakeDownloader(),
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()
