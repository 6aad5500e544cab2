from __future__ import annotations

import asyncio

from loguru import logger

from novel_reader.config.schema import AppConfigRoot
from novel_reader.reader.coordinator import ChapterFetchCoordinator
from novel_reader.reader.generator import ChapterGenerator, LLMChapterGenerator
from novel_reader.reader.preload import PreloadScheduler
from novel_reader.reader.session import RetrySession, SessionListener
from novel_reader.reader.types import ChapterKey, ChapterPayload, SessionSnapshot


class ReaderService:
    """Owns the chapter cache, the preload pool and the current reading session."""

    def __init__(self, config: AppConfigRoot, generator: ChapterGenerator | None = None):
        self.config = config
        self.generator = generator or LLMChapterGenerator(config)
        self.coordinator = ChapterFetchCoordinator(self.generator, min_body_chars=config.reader.min_body_chars)
        self.preloader = PreloadScheduler(self.coordinator, workers=config.preload.workers)
        self.current: RetrySession | None = None
        self.source_label = config.reader.default_source_label
        self._listeners: list[SessionListener] = []
        self._session_tasks: dict[RetrySession, asyncio.Task[SessionSnapshot]] = {}

    async def __aenter__(self) -> "ReaderService":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def start(self) -> None:
        self.preloader.start()
        logger.bind(node="reader_service").info(
            "Reader started preload_workers={} preload_ahead={}",
            self.config.preload.workers,
            self.config.reader.preload_ahead,
        )

    async def fetch(self, key: ChapterKey) -> ChapterPayload:
        return await self.coordinator.fetch(key)

    def schedule_preload(self, key: ChapterKey) -> bool:
        return self.preloader.schedule_preload(key)

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)
        if self.current is not None:
            self.current.subscribe(listener)

    def open_chapter(self, work_title: str, chapter_index: int, source_label: str | None = None) -> RetrySession:
        if self.current is not None:
            self.current.abandon()
        if source_label:
            self.source_label = source_label

        key = ChapterKey(work_title, chapter_index)
        reader_cfg = self.config.reader
        session = RetrySession(
            key,
            self.coordinator.fetch,
            max_attempts=reader_cfg.max_attempts,
            backoff_s=reader_cfg.retry_backoff_s,
            source_label=self.source_label,
            fallback_label_prefix=reader_cfg.fallback_label_prefix,
            listeners=self._listeners,
        )
        self.current = session

        task = asyncio.create_task(session.run(), name=f"reader-session-{key}")
        self._session_tasks[session] = task
        task.add_done_callback(lambda _: self._session_tasks.pop(session, None))

        for offset in range(1, reader_cfg.preload_ahead + 1):
            self.preloader.schedule_preload(ChapterKey(work_title, chapter_index + offset))
        return session

    def next_chapter(self) -> RetrySession:
        current = self._require_current()
        return self.open_chapter(current.key.work_title, current.key.chapter_index + 1)

    def previous_chapter(self) -> RetrySession:
        current = self._require_current()
        return self.open_chapter(current.key.work_title, max(0, current.key.chapter_index - 1))

    async def wait(self, session: RetrySession | None = None) -> SessionSnapshot:
        """Waits for a session (the current one by default) to stop running."""
        target = session or self._require_current()
        task = self._session_tasks.get(target)
        if task is None:
            return target.snapshot()
        return await task

    async def read(self, work_title: str, chapter_index: int, source_label: str | None = None) -> SessionSnapshot:
        return await self.wait(self.open_chapter(work_title, chapter_index, source_label))

    def _require_current(self) -> RetrySession:
        if self.current is None:
            raise RuntimeError("No chapter is open")
        return self.current

    async def close(self) -> None:
        if self.current is not None:
            self.current.abandon()
        await self.preloader.close()
        tasks = list(self._session_tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.coordinator.close()
        stats = self.coordinator.stats
        logger.bind(node="reader_service").info(
            "Reader closed generator_calls={} failures={} rejected={} joined={}",
            stats.generator_calls,
            stats.generator_failures,
            stats.validation_failures,
            stats.joined_requests,
        )
