from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import time

from loguru import logger

from novel_reader.reader.cache import ChapterCache
from novel_reader.reader.errors import AdapterError, ContentValidationError
from novel_reader.reader.generator import ChapterGenerator
from novel_reader.reader.types import ChapterKey, ChapterPayload


@dataclass
class FetchStats:
    generator_calls: int = 0
    generator_failures: int = 0
    validation_failures: int = 0
    joined_requests: int = 0


def _consume_outcome(task: asyncio.Future[ChapterPayload]) -> None:
    # Every caller may have been cancelled by the time the call fails.
    if not task.cancelled():
        task.exception()


class ChapterFetchCoordinator:
    """Deduplicates chapter requests and memoizes successful results.

    For a given key at most one generator call is outstanding. Callers that
    arrive while it runs await the same task and observe the same payload or
    the same exception. Failures are not cached, so the next fetch starts a
    fresh call.

    All state lives on one event loop. The check-then-register sequence in
    ``fetch`` has no await in it, which keeps it atomic under asyncio; the
    coordinator must not be shared across threads.
    """

    def __init__(
        self,
        generator: ChapterGenerator,
        *,
        min_body_chars: int = 50,
        cache: ChapterCache | None = None,
    ):
        self._generator = generator
        self._cache = cache if cache is not None else ChapterCache()
        self._in_flight: dict[ChapterKey, asyncio.Task[ChapterPayload]] = {}
        self._closed = False
        self.min_body_chars = min_body_chars
        self.stats = FetchStats()

    def is_cached(self, key: ChapterKey) -> bool:
        return key in self._cache

    def is_in_flight(self, key: ChapterKey) -> bool:
        return key in self._in_flight

    @property
    def cache(self) -> ChapterCache:
        return self._cache

    async def fetch(self, key: ChapterKey) -> ChapterPayload:
        if self._closed:
            raise RuntimeError("ChapterFetchCoordinator is closed")

        cached = self._cache.get(key)
        if cached.hit and cached.value is not None:
            logger.bind(node="fetch_coordinator", cache_key=str(key)).debug("Chapter cache hit")
            return cached.value

        pending = self._in_flight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._resolve(key))
            pending.add_done_callback(_consume_outcome)
            self._in_flight[key] = pending
        else:
            self.stats.joined_requests += 1
            logger.bind(node="fetch_coordinator", cache_key=str(key)).debug("Joined in-flight chapter request")

        # A cancelled caller must not take the shared request down with it.
        return await asyncio.shield(pending)

    async def _resolve(self, key: ChapterKey) -> ChapterPayload:
        log = logger.bind(
            node="fetch_coordinator",
            work=key.work_title,
            chapter_idx=key.chapter_index,
            cache_key=str(key),
        )
        self.stats.generator_calls += 1
        started = time.perf_counter()
        log.info("Generating chapter")

        try:
            payload = await self._generator.generate(key.work_title, key.chapter_index)
        except Exception as exc:  # noqa: BLE001
            self.stats.generator_failures += 1
            log.warning(
                "Chapter generation failed elapsed_ms={} error_type={} error={}",
                int((time.perf_counter() - started) * 1000),
                type(exc).__name__,
                exc,
            )
            raise AdapterError(key, str(exc) or type(exc).__name__) from exc
        finally:
            self._in_flight.pop(key, None)

        if len(payload.body) < self.min_body_chars:
            self.stats.validation_failures += 1
            log.warning("Chapter rejected body_chars={} min_body_chars={}", len(payload.body), self.min_body_chars)
            raise ContentValidationError(key, len(payload.body), self.min_body_chars)

        if payload.key != key:
            payload = replace(payload, key=key)
        resident = self._cache.set(key, payload)
        log.info(
            "Chapter cached elapsed_ms={} body_chars={}",
            int((time.perf_counter() - started) * 1000),
            len(resident.body),
        )
        return resident

    async def close(self) -> None:
        """Waits for outstanding generator calls, then drops every cached chapter."""
        self._closed = True
        pending = list(self._in_flight.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._cache.close()
