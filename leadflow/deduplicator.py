# leadflow/deduplicator.py
from typing import Iterable, Iterator

from leadflow.models import EntityRecord, identity_key


class Deduplicator:
    """Keeps one record per identity key across repeated discovery queries.

    First-seen wins: a later candidate with the same normalized name + address
    is discarded entirely, never merged into the existing record.
    """

    def __init__(self):
        self._by_key: dict[str, EntityRecord] = {}

    def __len__(self) -> int:
        return len(self._by_key)

    def __contains__(self, record: EntityRecord) -> bool:
        return self._key(record) in self._by_key

    def __iter__(self) -> Iterator[EntityRecord]:
        return iter(self._by_key.values())

    @staticmethod
    def _key(record: EntityRecord) -> str:
        # Recompute rather than trust the stored key, candidates may have been edited
        return identity_key(record.name, record.address, record.place_ref)

    def insert(self, record: EntityRecord) -> bool:
        """Add the record if its key is new. Returns True when it was added."""
        key = self._key(record)
        if key in self._by_key:
            return False
        record.identity_key = key
        self._by_key[key] = record
        return True

    def extend(self, records: Iterable[EntityRecord]) -> int:
        """Insert many candidates, returning how many were new."""
        return sum(1 for record in records if self.insert(record))

    @property
    def records(self) -> list[EntityRecord]:
        """Unique records in first-seen order."""
        return list(self._by_key.values())
