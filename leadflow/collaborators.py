# leadflow/collaborators.py
"""Contracts for the external services the pipeline drives."""
from abc import ABC, abstractmethod
from typing import Optional

from leadflow.models import DeliveryResult, EnrichmentBlock, EntityRecord, RunStatistics


class DiscoverySource(ABC):
    @abstractmethod
    async def search(self, query: str, location: str) -> list[EntityRecord]:
        """Return raw candidates. Empty for no results; raise only on transport failure."""


class EnrichmentSource(ABC):
    @abstractmethod
    async def enrich(self, candidate: EntityRecord) -> Optional[EnrichmentBlock]:
        """Return details, or None when the entity cannot be matched."""


class ContentGenerator(ABC):
    @abstractmethod
    async def generate(self, record: EntityRecord) -> str:
        """Return personalized text. Raises on failure; callers supply the fallback."""


class MessagingTransport(ABC):
    """A session-based channel. One session per run, never shared."""

    @property
    @abstractmethod
    def ready(self) -> bool:
        pass

    @abstractmethod
    async def connect(self):
        pass

    @abstractmethod
    async def send(self, destination: str, text: str) -> DeliveryResult:
        """Raise on transport-level failure (unregistered destination, dropped session)."""

    @abstractmethod
    async def close(self):
        pass


class SnapshotStore(ABC):
    @abstractmethod
    def save(self, stage_name: str, records: list[EntityRecord], stats: RunStatistics):
        pass

    @abstractmethod
    def load(self, stage_name: str) -> tuple[list[EntityRecord], RunStatistics]:
        pass

    @abstractmethod
    def latest_stage(self) -> Optional[str]:
        """Name of the last stage saved for this run, or None."""
