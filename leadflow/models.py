# leadflow/models.py
"""Record types that flow through every pipeline stage."""
from __future__ import annotations

import re
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional


class EnrichmentStatus(str, Enum):
    PENDING = "pending"
    ENRICHED = "enriched"
    FAILED = "failed"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    GENERATED = "generated"
    FALLBACK = "fallback"
    FAILED = "failed"


def normalize_text(value: Optional[str]) -> str:
    """Lowercase and collapse whitespace."""
    return re.sub(r"\s+", " ", (value or "").strip().lower())


def identity_key(name: Optional[str], address: Optional[str], place_ref: Optional[str] = None) -> str:
    """Deterministic dedup key from normalized name + address.

    Candidates with neither a name nor an address fall back to their
    directory reference.
    """
    name, address = normalize_text(name), normalize_text(address)
    if not name and not address and place_ref:
        return f"ref:{place_ref}"
    return f"{name}|{address}"


@dataclass
class Review:
    author: str = ""
    rating: Optional[float] = None
    text: str = ""
    relative_time: str = ""


@dataclass
class EnrichmentBlock:
    """Place details returned by the enrichment source."""
    place_id: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    rating: Optional[float] = None
    review_count: Optional[int] = None
    opening_hours: list[str] = field(default_factory=list)
    price_level: Optional[int] = None
    reviews: list[Review] = field(default_factory=list)
    phone: Optional[str] = None
    website: Optional[str] = None
    enriched_at: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "EnrichmentBlock":
        data = dict(data)
        data["reviews"] = [Review(**r) for r in data.get("reviews", [])]
        return cls(**data)


@dataclass
class DeliveryResult:
    attempted: bool
    succeeded: bool = False
    error_reason: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class EntityRecord:
    """One business entity, created by Discover and mutated in place by later stages."""
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    # Listing values seen at discovery time, used when enrichment is unavailable
    rating: Optional[float] = None
    review_count: Optional[int] = None
    category_hint: Optional[str] = None
    place_ref: Optional[str] = None
    source_query: str = ""
    identity_key: str = ""
    enrichment: Optional[EnrichmentBlock] = None
    enrichment_status: EnrichmentStatus = EnrichmentStatus.PENDING
    personalized_content: Optional[str] = None
    generation_status: GenerationStatus = GenerationStatus.PENDING
    category: Optional[str] = None
    template_used: Optional[str] = None
    message: Optional[str] = None
    delivery_result: Optional[DeliveryResult] = None

    def __post_init__(self):
        if not self.identity_key:
            self.identity_key = identity_key(self.name, self.address, self.place_ref)

    @property
    def effective_rating(self) -> Optional[float]:
        if self.enrichment_status == EnrichmentStatus.ENRICHED and self.enrichment.rating is not None:
            return self.enrichment.rating
        return self.rating

    @property
    def effective_review_count(self) -> Optional[int]:
        if self.enrichment_status == EnrichmentStatus.ENRICHED and self.enrichment.review_count is not None:
            return self.enrichment.review_count
        return self.review_count

    @property
    def reviews(self) -> list[Review]:
        if self.enrichment_status == EnrichmentStatus.ENRICHED:
            return self.enrichment.reviews
        return []

    @property
    def place_types(self) -> list[str]:
        if self.enrichment_status == EnrichmentStatus.ENRICHED:
            return self.enrichment.categories
        return [self.category_hint] if self.category_hint else []

    def apply_enrichment(self, block: EnrichmentBlock):
        """Attach a successful enrichment, overwriting contact fields it supplies."""
        self.enrichment = block
        self.enrichment_status = EnrichmentStatus.ENRICHED
        if block.phone:
            self.phone = block.phone
        if block.website:
            self.website = block.website

    def mark_enrichment_failed(self):
        self.enrichment_status = EnrichmentStatus.FAILED

    def to_dict(self) -> dict:
        data = asdict(self)
        data["enrichment_status"] = self.enrichment_status.value
        data["generation_status"] = self.generation_status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "EntityRecord":
        data = dict(data)
        if data.get("enrichment"):
            data["enrichment"] = EnrichmentBlock.from_dict(data["enrichment"])
        if data.get("delivery_result"):
            data["delivery_result"] = DeliveryResult(**data["delivery_result"])
        data["enrichment_status"] = EnrichmentStatus(data.get("enrichment_status", "pending"))
        data["generation_status"] = GenerationStatus(data.get("generation_status", "pending"))
        return cls(**data)


@dataclass
class RunStatistics:
    """Monotonic per-run counters. Owned by the orchestrator, passed to each stage."""
    discovered: int = 0
    enriched_ok: int = 0
    enrichment_failed: int = 0
    filtered_in: int = 0
    filtered_out: int = 0
    generated_ok: int = 0
    generated_fallback: int = 0
    delivered: int = 0
    delivery_failed: int = 0
    delivery_skipped: int = 0
    places_requests: int = 0
    llm_requests: int = 0
    started_at: str = ""
    ended_at: str = ""

    @property
    def duration_seconds(self) -> Optional[float]:
        if not self.started_at or not self.ended_at:
            return None
        start = datetime.fromisoformat(self.started_at)
        end = datetime.fromisoformat(self.ended_at)
        return (end - start).total_seconds()

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RunStatistics":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)
