from __future__ import annotations

import asyncio

from loguru import logger

from novel_reader.reader.coordinator import ChapterFetchCoordinator
from novel_reader.reader.types import ChapterKey


class PreloadScheduler:
    """Best-effort background warming of the chapter cache.

    Keys are drained FIFO by a fixed pool of worker tasks, so at most
    ``workers`` preload fetches run at once no matter how long the queue
    gets. Foreground reads call the coordinator directly and never wait on
    this pool. Preload failures are logged and dropped.
    """

    def __init__(self, coordinator: ChapterFetchCoordinator, *, workers: int = 3):
        if workers <= 0:
            raise ValueError("workers must be positive")
        self._coordinator = coordinator
        self._queue: asyncio.Queue[ChapterKey] = asyncio.Queue()
        self._pending: set[ChapterKey] = set()
        self._workers: list[asyncio.Task[None]] = []
        self._closed = False
        self.worker_count = workers
        self.active = 0
        self.peak_active = 0
        self.completed = 0
        self.failed = 0

    @property
    def queued(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._workers:
            return
        if self._closed:
            raise RuntimeError("PreloadScheduler is closed")
        self._workers = [
            asyncio.create_task(self._worker(worker_id), name=f"preload-worker-{worker_id}")
            for worker_id in range(self.worker_count)
        ]
        logger.bind(node="preload").debug("Started {} preload workers", self.worker_count)

    def schedule_preload(self, key: ChapterKey) -> bool:
        """Queues key for background fetch. Returns False when it was skipped."""
        if self._closed:
            return False
        if key in self._pending or self._coordinator.is_cached(key) or self._coordinator.is_in_flight(key):
            return False
        self._pending.add(key)
        self._queue.put_nowait(key)
        return True

    async def _worker(self, worker_id: int) -> None:
        while True:
            key = await self._queue.get()
            try:
                await self._preload(key, worker_id)
            finally:
                self._pending.discard(key)
                self._queue.task_done()

    async def _preload(self, key: ChapterKey, worker_id: int) -> None:
        log = logger.bind(
            node=f"preload-{worker_id}",
            work=key.work_title,
            chapter_idx=key.chapter_index,
            cache_key=str(key),
        )
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            await self._coordinator.fetch(key)
            self.completed += 1
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            log.warning("Preload failed error_type={} error={}", type(exc).__name__, exc)
        finally:
            self.active -= 1

    async def join(self) -> None:
        """Waits until every queued key has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        self._closed = True
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        self._pending.clear()
