# leadflow/places_search.py
import asyncio
import logging
import httpx
from typing import Optional

from leadflow.collaborators import DiscoverySource
from leadflow.models import EntityRecord

logger = logging.getLogger(__name__)


class PlacesSearcher(DiscoverySource):
    """Discovers businesses through the Places text-search endpoint."""

    BASE_URL = "https://places.googleapis.com/v1/places:searchText"
    MAX_RETRIES = 3
    RETRY_DELAYS = [1, 2, 4]  # Exponential backoff in seconds
    PAGE_SIZE = 20
    FIELD_MASK = ",".join([
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.nationalPhoneNumber",
        "places.websiteUri",
        "places.rating",
        "places.userRatingCount",
        "places.primaryType",
        "nextPageToken",
    ])

    def __init__(self, api_key: str, max_results: int = 50):
        self.api_key = api_key
        self.max_results = max_results
        self.headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": api_key,
            "X-Goog-FieldMask": self.FIELD_MASK,
        }

    async def _make_request(self, payload: dict) -> dict:
        last_error = None
        for attempt in range(self.MAX_RETRIES):
            try:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(self.BASE_URL, headers=self.headers, json=payload)
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                # Retry on 503 (Service Unavailable) or 429 (Rate Limit)
                if e.response.status_code in (503, 429, 500):
                    if attempt < self.MAX_RETRIES - 1:
                        logger.debug("Places search HTTP %s, retrying", e.response.status_code)
                        await asyncio.sleep(self.RETRY_DELAYS[attempt])
                        continue
                raise
            except httpx.TimeoutException as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    await asyncio.sleep(self.RETRY_DELAYS[attempt])
                    continue
                raise
        raise last_error

    def _to_record(self, place: dict, query: str) -> EntityRecord:
        return EntityRecord(
            name=place.get("displayName", {}).get("text", ""),
            address=place.get("formattedAddress", ""),
            phone=place.get("nationalPhoneNumber"),
            website=place.get("websiteUri"),
            rating=place.get("rating"),
            review_count=place.get("userRatingCount"),
            category_hint=place.get("primaryType"),
            place_ref=place.get("id"),
            source_query=query,
        )

    async def search(self, query: str, location: str) -> list[EntityRecord]:
        results: list[EntityRecord] = []
        page_token: Optional[str] = None

        while len(results) < self.max_results:
            payload = {
                "textQuery": f"{query} in {location}",
                "pageSize": min(self.PAGE_SIZE, self.max_results - len(results)),
            }
            if page_token:
                payload["pageToken"] = page_token

            data = await self._make_request(payload)
            results.extend(self._to_record(place, query) for place in data.get("places", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return results[:self.max_results]
