# leadflow/places_details.py
"""Enrichment from the legacy Places find-place and details endpoints."""
import asyncio
import logging
from datetime import datetime
from typing import Optional

import httpx

from leadflow.collaborators import EnrichmentSource
from leadflow.models import EnrichmentBlock, EntityRecord, Review

logger = logging.getLogger(__name__)


class PlacesEnricher(EnrichmentSource):
    BASE_URL = "https://maps.googleapis.com/maps/api/place"
    MAX_RETRIES = 3
    RETRY_DELAYS = [1, 2, 4]
    MAX_REVIEWS = 5
    FIND_FIELDS = "place_id,name,formatted_address,rating,user_ratings_total"
    DETAIL_FIELDS = (
        "name,formatted_address,formatted_phone_number,website,rating,"
        "user_ratings_total,reviews,types,opening_hours,price_level"
    )

    def __init__(self, api_key: str, max_reviews: int = MAX_REVIEWS):
        self.api_key = api_key
        self.max_reviews = max_reviews

    async def _get(self, path: str, params: dict) -> dict:
        params = {**params, "key": self.api_key}
        last_error = None
        for attempt in range(self.MAX_RETRIES):
            try:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.get(f"{self.BASE_URL}/{path}/json", params=params)
                    response.raise_for_status()
                    return response.json()
            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code in (503, 429, 500) and attempt < self.MAX_RETRIES - 1:
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

    async def find_place_id(self, name: str, address: str) -> Optional[str]:
        # Always look the place up by name: ids carried over from discovery are not reliable
        data = await self._get("findplacefromtext", {
            "input": f"{name} {address}".strip(),
            "inputtype": "textquery",
            "fields": self.FIND_FIELDS,
        })
        candidates = data.get("candidates", [])
        if data.get("status") == "OK" and candidates:
            return candidates[0].get("place_id")
        return None

    async def get_details(self, place_id: str) -> Optional[dict]:
        data = await self._get("details", {"place_id": place_id, "fields": self.DETAIL_FIELDS})
        if data.get("status") == "OK":
            return data.get("result")
        return None

    def _to_block(self, place_id: str, details: dict) -> EnrichmentBlock:
        reviews = [
            Review(
                author=r.get("author_name", ""),
                rating=r.get("rating"),
                text=r.get("text", ""),
                relative_time=r.get("relative_time_description", ""),
            )
            for r in (details.get("reviews") or [])[:self.max_reviews]
        ]
        return EnrichmentBlock(
            place_id=place_id,
            categories=details.get("types", []),
            rating=details.get("rating"),
            review_count=details.get("user_ratings_total"),
            opening_hours=(details.get("opening_hours") or {}).get("weekday_text", []),
            price_level=details.get("price_level"),
            reviews=reviews,
            phone=details.get("formatted_phone_number"),
            website=details.get("website"),
            enriched_at=datetime.now().isoformat(),
        )

    async def enrich(self, candidate: EntityRecord) -> Optional[EnrichmentBlock]:
        place_id = await self.find_place_id(candidate.name or "", candidate.address or "")
        if not place_id:
            logger.info("No place found for %s", candidate.name)
            return None

        details = await self.get_details(place_id)
        if not details:
            logger.info("No details found for %s", candidate.name)
            return None

        return self._to_block(place_id, details)
