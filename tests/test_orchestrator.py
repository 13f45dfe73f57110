from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Sequence, Tuple

import pytest

from app.analysis import RoomType
from app.exceptions import InvalidRequestError, JobCreationError, ScrapingError
from app.models import JobRecord, JobStatus, PhotoStatus
from app.schemas import OptimizationResponse
from app.services.collaborators import GenerationRequest, GenerationResult, ListingScraper, ScrapedListing
from app.services.job_store import JobStore
from app.services.orchestrator import JobOrchestrator
from app.services.resilience import CircuitBreaker, ResiliencePolicy, RetryPolicy
from conftest import (
    LISTING_URL,
    FakeAnalyzer,
    FakeDownloader,
    FakeGenerator,
    FakeScraper,
    build_orchestrator,
    photo_urls,
)


def run_job(orchestrator: JobOrchestrator, payload: Dict[str, Any]) -> Tuple[OptimizationResponse, JobRecord]:
    async def scenario() -> Tuple[OptimizationResponse, JobRecord]:
        response = await orchestrator.start(payload)
        await orchestrator.wait_for_pending()
        return response, await orchestrator.store.find_by_id(response.job_id)

    return asyncio.run(scenario())


def test_all_photos_optimized() -> None:
    orchestrator = build_orchestrator(scraper=FakeScraper(photo_urls(3)))
    response, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert response.success is True
    assert response.data.job.status is JobStatus.PENDING
    assert job.status is JobStatus.COMPLETED
    assert job.completed_at is not None
    assert len(job.image_pairs) == 3
    assert all(pair.optimized is not None for pair in job.image_pairs)
    assert job.progress.to_dict() == {"total": 3, "completed": 3, "failed": 0}
    assert [pair.file_name for pair in job.image_pairs] == ["bedroom_1.jpg", "bedroom_2.jpg", "bedroom_3.jpg"]
    assert [pair.original.file_name for pair in job.image_pairs] == ["image_1.jpg", "image_2.jpg", "image_3.jpg"]
    assert all(pair.original.status is PhotoStatus.COMPLETED for pair in job.image_pairs)
    assert all(pair.original.original_base64 for pair in job.image_pairs)
    assert all(pair.enhancements for pair in job.image_pairs)


def test_one_failed_generation_is_isolated() -> None:
    orchestrator = build_orchestrator(generator=FakeGenerator(fail_positions=[1]))
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert job.status is JobStatus.COMPLETED
    assert job.progress.failed == 1
    assert job.progress.completed == 2
    failed = job.image_pairs[1]
    assert failed.optimized is None
    assert failed.original.error == "generation exploded"
    assert failed.original.status is PhotoStatus.FAILED
    assert failed.file_name == "failed_2.jpg"
    assert failed.enhancements == []


def test_scraper_failure_fails_the_job() -> None:
    orchestrator = build_orchestrator(scraper=FakeScraper(error=ScrapingError("Apify actor crashed")))
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL})

    assert job.status is JobStatus.FAILED
    assert job.image_pairs == []
    assert job.error == "Apify actor crashed"
    assert job.completed_at is not None


def test_default_cap_keeps_first_ten_photos() -> None:
    urls = photo_urls(15)
    downloader = FakeDownloader()
    orchestrator = build_orchestrator(scraper=FakeScraper(urls), downloader=downloader)
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL})

    assert job.progress.total == 10
    assert [photo.original_url for photo in job.photos] == urls[:10]
    assert sorted(downloader.fetched) == sorted(urls[:10])


def test_concurrent_jobs_are_independent() -> None:
    orchestrator = build_orchestrator(scraper=FakeScraper(photo_urls(4)))

    async def scenario() -> List[JobRecord]:
        first = await orchestrator.start({"airbnbUrl": LISTING_URL, "maxImages": 2})
        second = await orchestrator.start({"airbnbUrl": "https://www.airbnb.co.uk/rooms/87654321", "maxImages": 4})
        await orchestrator.wait_for_pending()
        return [await orchestrator.store.find_by_id(response.job_id) for response in (first, second)]

    first, second = asyncio.run(scenario())
    assert first.job_id != second.job_id
    assert len(first.image_pairs) == 2
    assert len(second.image_pairs) == 4
    assert second.airbnb_url == "https://www.airbnb.co.uk/rooms/87654321"
    assert not {pair.original.photo_id for pair in first.image_pairs} & {
        pair.original.photo_id for pair in second.image_pairs
    }


def test_results_are_matched_by_photo_id() -> None:
    analyzer = FakeAnalyzer(room_types=["bedroom", "kitchen", "bathroom"], reverse=True)
    generator = FakeGenerator(reverse=True)
    orchestrator = build_orchestrator(analyzer=analyzer, generator=generator)
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert [pair.room_type for pair in job.image_pairs] == [RoomType.BEDROOM, RoomType.KITCHEN, RoomType.BATHROOM]
    assert [pair.file_name for pair in job.image_pairs] == ["bedroom_1.jpg", "kitchen_2.jpg", "bathroom_3.jpg"]


def test_missing_batch_results_become_failures() -> None:
    orchestrator = build_orchestrator(
        analyzer=FakeAnalyzer(drop_positions=[0]),
        generator=FakeGenerator(drop_positions=[0]),
    )
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert job.status is JobStatus.COMPLETED
    assert job.image_pairs[0].original.error == "No analysis result returned"
    assert job.image_pairs[1].original.error == "No optimization result returned"
    assert job.image_pairs[2].optimized is not None
    assert job.progress.to_dict() == {"total": 3, "completed": 1, "failed": 2}


@pytest.mark.parametrize(
    ("hint", "detected", "expected"),
    [
        ("Kitchen", ["bedroom", "bathroom"], [RoomType.KITCHEN, RoomType.KITCHEN]),
        ("Entire rental unit", ["bedroom", "other"], [RoomType.BEDROOM, RoomType.OTHER]),
        (None, ["living_room", "exterior"], [RoomType.LIVING_ROOM, RoomType.EXTERIOR]),
    ],
)
def test_generation_and_pair_use_same_room_type(hint, detected, expected) -> None:
    generator = FakeGenerator()
    orchestrator = build_orchestrator(
        scraper=FakeScraper(photo_urls(2), room_type=hint),
        analyzer=FakeAnalyzer(room_types=detected),
        generator=generator,
    )
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 2})

    requested = {request.photo_id: request.room_type for request in generator.requests}
    for pair, room_type in zip(job.image_pairs, expected):
        assert pair.room_type is room_type
        assert requested[pair.original.photo_id] is room_type
        assert pair.optimized.room_type is room_type


def test_first_analyzed_photo_is_style_reference() -> None:
    urls = photo_urls(3)
    generator = FakeGenerator()
    orchestrator = build_orchestrator(
        scraper=FakeScraper(urls),
        downloader=FakeDownloader(failing=[urls[0]]),
        generator=generator,
    )
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert [request.analysis.is_style_reference for request in generator.requests] == [True, False]
    assert generator.requests[0].photo_id == job.image_pairs[1].original.photo_id
    assert "404" in job.image_pairs[0].original.error
    assert job.progress.failed == 1


def test_unrecognised_image_format_is_still_analyzed() -> None:
    urls = photo_urls(2)
    heic = b"\x00\x00\x00\x18ftypheic\x00\x00\x00\x00heicheix" + b"\x00" * 64
    analyzer = FakeAnalyzer()
    orchestrator = build_orchestrator(
        scraper=FakeScraper(urls),
        analyzer=analyzer,
        downloader=FakeDownloader(payloads={urls[0]: heic}),
    )
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 2})

    assert [request.mime_type for request in analyzer.batches[0]] == ["image/jpeg", "image/png"]
    assert job.progress.to_dict() == {"total": 2, "completed": 2, "failed": 0}
    assert job.image_pairs[0].original.mime_type == "image/jpeg"


def test_whole_batch_analysis_failure_is_per_photo() -> None:
    orchestrator = build_orchestrator(analyzer=FakeAnalyzer(error=RuntimeError("Gemini quota exceeded")))
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert job.status is JobStatus.COMPLETED
    assert job.progress.to_dict() == {"total": 3, "completed": 0, "failed": 3}
    assert {pair.original.error for pair in job.image_pairs} == {"Gemini quota exceeded"}
    assert [pair.room_type for pair in job.image_pairs] == [RoomType.OTHER] * 3


def test_open_generator_circuit_fails_photos_fast() -> None:
    generator = FakeGenerator(error=RuntimeError("model overloaded"))
    orchestrator = build_orchestrator(
        generator=generator,
        generator_policy=ResiliencePolicy(CircuitBreaker("generator", failure_threshold=1, recovery_timeout=60)),
    )
    run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 2})
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 2})

    assert len(generator.batches) == 1
    assert job.status is JobStatus.COMPLETED
    assert all("Circuit breaker generator is OPEN" in pair.original.error for pair in job.image_pairs)


def test_scrape_is_retried_before_failing() -> None:
    class FlakyScraper(ListingScraper):
        def __init__(self) -> None:
            self.calls = 0

        async def scrape(self, url: str) -> ScrapedListing:
            self.calls += 1
            if self.calls < 3:
                raise ScrapingError("temporary")
            return ScrapedListing(listing_id="1", title="Loft", image_urls=photo_urls(1))

    async def no_sleep(delay: float) -> None:
        return None

    scraper = FlakyScraper()
    orchestrator = build_orchestrator(
        scraper=scraper,
        scraper_policy=ResiliencePolicy(
            CircuitBreaker("scraper", failure_threshold=3, recovery_timeout=30),
            RetryPolicy(attempts=3, sleep=no_sleep),
        ),
    )
    _, job = run_job(orchestrator, {"airbnbUrl": LISTING_URL})

    assert scraper.calls == 3
    assert job.status is JobStatus.COMPLETED


def test_progress_total_is_visible_while_processing() -> None:
    seen: List[JobRecord] = []
    store = JobStore()

    class ObservingGenerator(FakeGenerator):
        async def generate_batch(self, requests: Sequence[GenerationRequest]) -> List[GenerationResult]:
            seen.extend(await store.find_by_status(JobStatus.PROCESSING))
            return await super().generate_batch(requests)

    orchestrator = build_orchestrator(store=store, generator=ObservingGenerator())
    run_job(orchestrator, {"airbnbUrl": LISTING_URL, "maxImages": 3})

    assert len(seen) == 1
    assert seen[0].progress.total == 3
    assert {photo.status for photo in seen[0].photos} == {PhotoStatus.OPTIMIZING}


@pytest.mark.parametrize(
    ("payload", "code"),
    [
        ({"airbnbUrl": "https://www.example.com/rooms/1234567890"}, "INVALID_URL"),
        ({"airbnbUrl": "https://www.airbnb.com/rooms/123"}, "INVALID_URL"),
        ({}, "INVALID_URL"),
        ({"airbnbUrl": LISTING_URL, "maxImages": 0}, "MAX_IMAGES_OUT_OF_RANGE"),
        ({"airbnbUrl": LISTING_URL, "maxImages": 11}, "MAX_IMAGES_OUT_OF_RANGE"),
    ],
)
def test_invalid_requests_create_no_job(payload, code) -> None:
    orchestrator = build_orchestrator()
    with pytest.raises(InvalidRequestError) as excinfo:
        asyncio.run(orchestrator.start(payload))
    assert excinfo.value.code == code
    assert len(orchestrator.store) == 0
    assert orchestrator.active_jobs == 0


def test_store_failure_on_create_is_reported() -> None:
    class FullStore(JobStore):
        async def create(self, job: JobRecord) -> JobRecord:
            raise MemoryError("no room")

    orchestrator = build_orchestrator(store=FullStore())
    with pytest.raises(JobCreationError, match="no room"):
        asyncio.run(orchestrator.start({"airbnbUrl": LISTING_URL}))


def test_shutdown_cancels_in_flight_jobs() -> None:
    class HangingScraper(ListingScraper):
        async def scrape(self, url: str) -> ScrapedListing:
            await asyncio.Event().wait()
            raise AssertionError("unreachable")

    orchestrator = build_orchestrator(scraper=HangingScraper())

    async def scenario() -> JobRecord:
        response = await orchestrator.start({"airbnbUrl": LISTING_URL})
        await asyncio.sleep(0)
        assert orchestrator.active_jobs == 1
        await orchestrator.shutdown()
        assert orchestrator.active_jobs == 0
        return await orchestrator.store.find_by_id(response.job_id)

    job = asyncio.run(scenario())
    assert job.status is JobStatus.SCRAPING
