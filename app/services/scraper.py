from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from app.core.config import ALLOWED_LISTING_HOSTS, MIN_ROOM_ID_LENGTH
from app.exceptions import ConfigurationError, ScrapingError
from app.services.collaborators import ListingScraper, ScrapedListing

logger = logging.getLogger(__name__)

IMAGE_FIELDS = ("images", "imageUrls", "photos", "gallery", "media")
IMAGE_URL_KEYS = ("imageUrl", "url", "src", "originalUrl")

_room_id_re = re.compile(r"/rooms/(\d+)")


def listing_host_allowed(url: str) -> bool:
    try:
        hostname = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return any(hostname == host or hostname.endswith("." + host) for host in ALLOWED_LISTING_HOSTS)


def extract_room_id(url: str) -> Optional[str]:
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    match = _room_id_re.search(path)
    return match.group(1) if match else None


def validate_airbnb_url(url: str) -> bool:
    """Check domain and ``/rooms/<id>`` path shape of a listing URL."""
    if not url or not isinstance(url, str):
        return False
    if not url.lower().startswith(("http://", "https://")):
        return False
    room_id = extract_room_id(url)
    return listing_host_allowed(url) and room_id is not None and len(room_id) >= MIN_ROOM_ID_LENGTH


def extract_image_urls(item: Dict[str, Any]) -> List[str]:
    for field_name in IMAGE_FIELDS:
        entries = item.get(field_name)
        if not isinstance(entries, list):
            continue
        urls: List[str] = []
        for entry in entries:
            if isinstance(entry, str):
                urls.append(entry)
            elif isinstance(entry, dict):
                url = next((entry[key] for key in IMAGE_URL_KEYS if entry.get(key)), None)
                if url:
                    urls.append(url)
        if urls:
            return urls
    return []


def listing_from_item(item: Dict[str, Any]) -> ScrapedListing:
    images = extract_image_urls(item)
    if not images:
        logger.info("No images in scraped item; available fields: %s", sorted(item))
        raise ScrapingError(
            "No images found in the listing - this might not be a valid Airbnb listing or the listing might be private"
        )
    host = item.get("host") if isinstance(item.get("host"), dict) else {}
    return ScrapedListing(
        listing_id=str(item.get("id") or f"listing_{int(time.time() * 1000)}"),
        title=item.get("title") or item.get("name") or "Untitled Listing",
        image_urls=images,
        thumbnail=images[0],
        room_type=item.get("roomType") or item.get("propertyType"),
        host_name=host.get("name") or item.get("hostName") or "Unknown Host",
        is_superhost=bool(host.get("isSuperHost") or host.get("isSuperhost")),
    )


class ApifyListingScraper(ListingScraper):
    """Runs an Apify actor synchronously and reads the first dataset item."""

    def __init__(
        self,
        token: Optional[str],
        actor: str,
        base_url: str = "https://api.apify.com/v2",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not token:
            raise ConfigurationError("APP_APIFY_TOKEN is not configured")
        self._token = token
        self._actor_path = actor.replace("/", "~")
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10))
        self._owns_client = client is None

    async def scrape(self, url: str) -> ScrapedListing:
        if not validate_airbnb_url(url):
            raise ScrapingError(
                "Invalid Airbnb URL provided. Please ensure the URL is a valid Airbnb listing with a proper "
                "room ID (e.g., https://www.airbnb.com/rooms/1234567890123456)"
            )

        logger.info("Starting Airbnb scraping for %s", url)
        endpoint = f"{self._base_url}/acts/{self._actor_path}/run-sync-get-dataset-items"
        try:
            response = await self._client.post(
                endpoint,
                params={"token": self._token},
                json={"startUrls": [{"url": url}]},
            )
            response.raise_for_status()
            items = response.json()
        except httpx.HTTPError as exc:
            raise ScrapingError(f"Failed to scrape Airbnb listing: {exc}") from exc
        except ValueError as exc:
            raise ScrapingError("Failed to scrape Airbnb listing: invalid response body") from exc

        if not isinstance(items, list) or not items:
            raise ScrapingError("No data found for the provided URL - this might not be a valid Airbnb listing")

        listing = listing_from_item(items[0])
        logger.info("Scraped %d image(s) from %s", len(listing.image_urls), url)
        return listing

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
