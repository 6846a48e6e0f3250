# tests/conftest.py
import os

import pytest
import sys
from pathlib import Path
from typing import Optional

# Add the repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from leadflow.collaborators import (
    ContentGenerator,
    DiscoverySource,
    EnrichmentSource,
    MessagingTransport,
    SnapshotStore,
)
from leadflow.config import Settings
from leadflow.errors import DeliveryError, SnapshotNotFound
from leadflow.models import DeliveryResult, EnrichmentBlock, EntityRecord, Review, RunStatistics


def pytest_configure(config):
    config.addinivalue_line("markers", "live: marks tests that hit real APIs (deselect with '-m not live')")


def pytest_collection_modifyitems(config, items):
    # Skip live tests unless --run-live is passed or RUN_LIVE_TESTS=1
    run_live = config.getoption("--run-live", default=False) or os.environ.get("RUN_LIVE_TESTS") == "1"
    if not run_live:
        skip_live = pytest.mark.skip(reason="Live tests skipped. Use --run-live or RUN_LIVE_TESTS=1")
        for item in items:
            if "live" in item.keywords:
                item.add_marker(skip_live)


def pytest_addoption(parser):
    parser.addoption("--run-live", action="store_true", default=False, help="Run live integration tests against real APIs")


# ═══════════════════════════════════════════════════════════════════
# Time
# ═══════════════════════════════════════════════════════════════════

class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# ═══════════════════════════════════════════════════════════════════
# Records
# ═══════════════════════════════════════════════════════════════════

def make_record(name: str = "Cafe Sol", address: str = "Main St 1", **kwargs) -> EntityRecord:
    return EntityRecord(name=name, address=address, **kwargs)


def make_block(rating: Optional[float] = 4.6, review_count: Optional[int] = 120, **kwargs) -> EnrichmentBlock:
    kwargs.setdefault("reviews", [Review(author="Lucía", rating=5, text="Un café buenísimo y trato muy amable")])
    kwargs.setdefault("categories", ["cafe", "food"])
    return EnrichmentBlock(rating=rating, review_count=review_count, **kwargs)


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def block_factory():
    return make_block


# ═══════════════════════════════════════════════════════════════════
# Fake collaborators
# ═══════════════════════════════════════════════════════════════════

class FakeDiscovery(DiscoverySource):
    """Returns fresh copies of canned candidates per query; listed queries raise."""

    def __init__(self, results: dict[str, list[tuple]], failing: tuple = ()):
        self.results = results
        self.failing = set(failing)
        self.calls: list[tuple[str, str]] = []

    async def search(self, query: str, location: str) -> list[EntityRecord]:
        self.calls.append((query, location))
        if query in self.failing:
            raise ConnectionError(f"search for {query} failed")
        return [
            make_record(name, address, phone=phone, source_query=query)
            for name, address, phone in self.results.get(query, [])
        ]


class FakeEnrichment(EnrichmentSource):
    """Maps business name to a block, None (not found) or an exception."""

    def __init__(self, by_name: dict, default=None):
        self.by_name = by_name
        self.default = default
        self.calls: list[str] = []

    async def enrich(self, candidate: EntityRecord) -> Optional[EnrichmentBlock]:
        self.calls.append(candidate.name)
        outcome = self.by_name.get(candidate.name, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeGenerator(ContentGenerator):
    def __init__(self, failing: tuple = ()):
        self.failing = set(failing)
        self.calls: list[str] = []

    async def generate(self, record: EntityRecord) -> str:
        self.calls.append(record.name)
        if record.name in self.failing:
            raise RuntimeError("LLM unavailable")
        return f"sobre todo por lo que cuentan de {record.name}"


class FakeTransport(MessagingTransport):
    def __init__(self, connects: bool = True, failing: tuple = ()):
        self.connects = connects
        self.failing = set(failing)
        self._ready = False
        self.sent: list[tuple[str, str]] = []
        self.connect_calls = 0
        self.close_calls = 0

    @property
    def ready(self) -> bool:
        return self._ready

    async def connect(self):
        self.connect_calls += 1
        self._ready = self.connects

    async def send(self, destination: str, text: str) -> DeliveryResult:
        if destination in self.failing:
            raise DeliveryError(f"{destination} is not on WhatsApp")
        self.sent.append((destination, text))
        return DeliveryResult(attempted=True, succeeded=True)

    async def close(self):
        self.close_calls += 1
        self._ready = False


class MemorySnapshotStore(SnapshotStore):
    def __init__(self):
        self.snapshots: dict[str, tuple[list[dict], dict]] = {}
        self.order: list[str] = []

    def save(self, stage_name: str, records: list[EntityRecord], stats: RunStatistics):
        self.snapshots[stage_name] = ([r.to_dict() for r in records], stats.to_dict())
        self.order = [s for s in self.order if s != stage_name] + [stage_name]

    def load(self, stage_name: str) -> tuple[list[EntityRecord], RunStatistics]:
        if stage_name not in self.snapshots:
            raise SnapshotNotFound(stage_name)
        records, stats = self.snapshots[stage_name]
        return [EntityRecord.from_dict(r) for r in records], RunStatistics.from_dict(stats)

    def latest_stage(self) -> Optional[str]:
        return self.order[-1] if self.order else None


@pytest.fixture
def memory_store():
    return MemorySnapshotStore()


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    """Valid settings with every delay at zero and no config file."""
    for name in ("MIN_RATING", "MIN_REVIEWS", "REQUIRE_PHONE", "SEND_MESSAGES", "LLM_PROVIDER",
                 "MAX_MESSAGES_PER_HOUR", "WHATSAPP_BATCH_SIZE", "LLM_BATCH_SIZE"):
        monkeypatch.delenv(name, raising=False)

    s = Settings(config_path=tmp_path / "missing.json")
    s.google_places_api_key = "places-key"
    s.openai_api_key = "openai-key"
    s.whatsapp_access_token = "wa-token"
    s.whatsapp_phone_number_id = "123456"
    s.templates.sender_name = "Ana"
    s.data_dir = tmp_path / "data"
    s.search.min_interval = 0.0
    s.enrichment.min_interval = 0.0
    s.enrichment.inter_batch_delay = 0.0
    s.generation.min_interval = 0.0
    s.generation.inter_batch_delay = 0.0
    s.delivery.message_delay = 0.0
    s.delivery.inter_batch_delay = 0.0
    return s
