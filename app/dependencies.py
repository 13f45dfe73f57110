from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.core.config import ANALYZER_BREAKER, GENERATOR_BREAKER, SCRAPER_BREAKER, Settings
from app.services.collaborators import BatchAnalyzer, BatchGenerator, ListingScraper
from app.services.downloader import ImageDownloader
from app.services.gemini import GeminiAnalyzer, GeminiGenerator
from app.services.job_store import JobStore
from app.services.orchestrator import JobOrchestrator
from app.services.resilience import CircuitBreaker, ResiliencePolicy, RetryPolicy
from app.services.scraper import ApifyListingScraper
from app.services.status_reader import StatusReader, TerminalJobCache

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Everything a running app shares: one job table, one reader, one orchestrator."""

    settings: Settings
    store: JobStore
    status_reader: StatusReader
    orchestrator: JobOrchestrator

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        scraper: Optional[ListingScraper] = None,
        analyzer: Optional[BatchAnalyzer] = None,
        generator: Optional[BatchGenerator] = None,
        downloader: Optional[ImageDownloader] = None,
    ) -> "ServiceContainer":
        """Wire the services, creating the real collaborators for any not supplied."""
        if scraper is None:
            scraper = ApifyListingScraper(
                settings.apify_token,
                settings.apify_actor,
                base_url=settings.apify_base_url,
                timeout=settings.scrape_timeout,
            )
        if analyzer is None:
            analyzer = GeminiAnalyzer(settings.gemini_api_key, settings.gemini_analysis_model)
        if generator is None:
            generator = GeminiGenerator(settings.gemini_api_key, settings.gemini_generation_model)

        store = JobStore(
            max_jobs=settings.max_jobs,
            job_ttl=settings.job_ttl,
            cleanup_interval=settings.cleanup_interval,
        )
        orchestrator = JobOrchestrator(
            store,
            scraper,
            analyzer,
            generator,
            downloader or ImageDownloader(timeout=settings.download_timeout),
            scraper_policy=ResiliencePolicy(
                CircuitBreaker("scraper", *SCRAPER_BREAKER),
                RetryPolicy(
                    attempts=settings.scrape_attempts,
                    backoff_base=settings.scrape_backoff_base,
                    timeout=settings.scrape_timeout,
                ),
            ),
            analyzer_policy=ResiliencePolicy(CircuitBreaker("analyzer", *ANALYZER_BREAKER)),
            generator_policy=ResiliencePolicy(CircuitBreaker("generator", *GENERATOR_BREAKER)),
            default_max_images=settings.max_images_default,
        )
        status_reader = StatusReader(
            store,
            TerminalJobCache(ttl=settings.status_cache_ttl, max_entries=settings.status_cache_max_entries),
        )
        return cls(settings=settings, store=store, status_reader=status_reader, orchestrator=orchestrator)

    async def startup(self) -> None:
        await self.store.initialize()
        logger.info("Services started")

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        await self.store.shutdown()
        orchestrator = self.orchestrator
        for client in (orchestrator.scraper, orchestrator.analyzer, orchestrator.generator, orchestrator.downloader):
            await client.aclose()
        self.status_reader.cache.clear()
        logger.info("Services stopped")


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Service container not initialized")
    return container


def get_orchestrator(request: Request) -> JobOrchestrator:
    return get_container(request).orchestrator


def get_status_reader(request: Request) -> StatusReader:
    return get_container(request).status_reader


def get_job_store(request: Request) -> JobStore:
    return get_container(request).store
