from __future__ import annotations

import asyncio

from novel_reader.config.schema import AppConfigRoot
from novel_reader.reader.service import ReaderService
from novel_reader.reader.types import ChapterKey, ChapterPayload, ReaderState, SessionSnapshot


class _RecordingGenerator:
    def __init__(self, failing: set[int] | None = None) -> None:
        self.failing = failing or set()
        self.calls: list[int] = []

    async def generate(self, work_title: str, chapter_index: int) -> ChapterPayload:
        self.calls.append(chapter_index)
        await asyncio.sleep(0)
        if chapter_index in self.failing:
            raise RuntimeError("source unavailable")
        key = ChapterKey(work_title, chapter_index)
        return ChapterPayload(
            key=key,
            title=f"第{chapter_index + 1}章",
            body="字" * 300,
            sequence_number=chapter_index + 1,
        )


def _config(**reader: object) -> AppConfigRoot:
    reader_cfg = {"preload_ahead": 2, "retry_backoff_s": 0}
    reader_cfg.update(reader)
    return AppConfigRoot.model_validate({"reader": reader_cfg, "preload": {"workers": 2}})


def test_open_chapter_reads_and_preloads_following_chapters() -> None:
    async def _run() -> None:
        generator = _RecordingGenerator()
        seen: list[SessionSnapshot] = []
        async with ReaderService(_config(), generator=generator) as reader:
            reader.subscribe(seen.append)
            snapshot = await reader.read("NovelA", 0)
            await reader.preloader.join()

            assert snapshot.state is ReaderState.SUCCESS
            assert snapshot.label == "智能优选源"
            assert sorted(generator.calls) == [0, 1, 2]
            assert reader.coordinator.is_cached(ChapterKey("NovelA", 2))

            snapshot = await reader.wait(reader.next_chapter())
            assert snapshot.state is ReaderState.SUCCESS
            assert snapshot.key == ChapterKey("NovelA", 1)
            await reader.preloader.join()

        # Chapter 1 came from the cache; only chapter 3 was new.
        assert sorted(generator.calls) == [0, 1, 2, 3]
        assert [s.state for s in seen].count(ReaderState.SUCCESS) == 2

    asyncio.run(_run())


def test_source_label_is_kept_across_navigation() -> None:
    async def _run() -> None:
        async with ReaderService(_config(preload_ahead=0), generator=_RecordingGenerator()) as reader:
            first = await reader.read("NovelA", 0, source_label="起点中文网")
            second = await reader.wait(reader.next_chapter())

        assert first.label == "起点中文网"
        assert second.label == "起点中文网"

    asyncio.run(_run())


def test_previous_chapter_clamps_at_zero() -> None:
    async def _run() -> None:
        async with ReaderService(_config(preload_ahead=0), generator=_RecordingGenerator()) as reader:
            await reader.read("NovelA", 0)
            session = reader.previous_chapter()
            snapshot = await reader.wait(session)

        assert snapshot.key == ChapterKey("NovelA", 0)

    asyncio.run(_run())


def test_navigation_abandons_previous_session() -> None:
    async def _run() -> None:
        release = asyncio.Event()

        class _SlowFirstChapter:
            async def generate(self, work_title: str, chapter_index: int) -> ChapterPayload:
                if chapter_index == 0:
                    await release.wait()
                key = ChapterKey(work_title, chapter_index)
                return ChapterPayload(key=key, title="t", body="字" * 100, sequence_number=chapter_index + 1)

        seen: list[SessionSnapshot] = []
        async with ReaderService(_config(preload_ahead=0), generator=_SlowFirstChapter()) as reader:
            reader.subscribe(seen.append)
            first = reader.open_chapter("NovelA", 0)
            await asyncio.sleep(0)
            second = reader.open_chapter("NovelA", 1)

            assert first.abandoned
            assert reader.current is second
            await reader.wait(second)

            release.set()
            await reader.wait(first)
            assert reader.coordinator.is_cached(ChapterKey("NovelA", 0))

        assert [(s.key.chapter_index, s.state) for s in seen if s.state is ReaderState.SUCCESS] == [
            (1, ReaderState.SUCCESS)
        ]

    asyncio.run(_run())


def test_failing_chapter_reaches_final_failure() -> None:
    async def _run() -> None:
        generator = _RecordingGenerator(failing={0})
        async with ReaderService(_config(preload_ahead=0), generator=generator) as reader:
            snapshot = await reader.read("NovelA", 0)

        assert snapshot.state is ReaderState.FINAL_FAILURE
        assert snapshot.attempt_count == 3
        assert generator.calls == [0, 0, 0]

    asyncio.run(_run())


def test_preload_failures_do_not_affect_foreground_read() -> None:
    async def _run() -> None:
        generator = _RecordingGenerator(failing={1})
        async with ReaderService(_config(), generator=generator) as reader:
            snapshot = await reader.read("NovelA", 0)
            await reader.preloader.join()

            assert snapshot.state is ReaderState.SUCCESS
            assert reader.preloader.failed == 1
            assert reader.preloader.completed == 1

    asyncio.run(_run())
