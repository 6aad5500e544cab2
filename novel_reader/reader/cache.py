from __future__ import annotations

from dataclasses import dataclass

from novel_reader.reader.types import ChapterKey, ChapterPayload


@dataclass
class CacheResult:
    value: ChapterPayload | None
    hit: bool


class ChapterCache:
    """Process-lifetime chapter store. Entries are write-once and never expire."""

    def __init__(self) -> None:
        self._entries: dict[ChapterKey, ChapterPayload] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: ChapterKey) -> CacheResult:
        payload = self._entries.get(key)
        if payload is None:
            self.misses += 1
            return CacheResult(value=None, hit=False)
        self.hits += 1
        return CacheResult(value=payload, hit=True)

    def set(self, key: ChapterKey, payload: ChapterPayload) -> ChapterPayload:
        """Stores payload unless key is already present; returns the resident entry."""
        if payload.key != key:
            raise ValueError(f"payload key {payload.key} does not match cache key {key}")
        return self._entries.setdefault(key, payload)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def close(self) -> None:
        self._entries.clear()
