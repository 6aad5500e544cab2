from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable

from loguru import logger

from novel_reader.reader.errors import ExhaustedRetriesError
from novel_reader.reader.types import ChapterKey, ChapterPayload, ReaderState, SessionSnapshot

FetchFn = Callable[[ChapterKey], Awaitable[ChapterPayload]]
SessionListener = Callable[[SessionSnapshot], None]


class RetrySession:
    """Foreground read of one chapter with automatic source fallback.

    Idle -> Loading -> Success, or Loading -> Retrying -> Loading ... until
    ``max_attempts`` fetches have failed, which ends in FinalFailure. Each
    failure bumps ``attempt_count`` and relabels the session
    ``<prefix><attempt_count>``. A session never has more than one fetch
    outstanding and never issues more than ``max_attempts`` fetches.

    ``abandon()`` stops further transitions and retries. A fetch that is
    already running is left alone and still lands in the cache.
    """

    def __init__(
        self,
        key: ChapterKey,
        fetch: FetchFn,
        *,
        max_attempts: int = 3,
        backoff_s: float = 1.5,
        source_label: str = "智能优选源",
        fallback_label_prefix: str = "fallback-",
        listeners: Iterable[SessionListener] = (),
    ):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.key = key
        self.max_attempts = max_attempts
        self.backoff_s = backoff_s
        self.fallback_label_prefix = fallback_label_prefix
        self.state = ReaderState.IDLE
        self.attempt_count = 0
        self.label = source_label
        self.payload: ChapterPayload | None = None
        self.error: ExhaustedRetriesError | None = None
        self.fetches_issued = 0
        self.history: list[SessionSnapshot] = []
        self._fetch = fetch
        self._listeners: list[SessionListener] = list(listeners)
        self._abandoned = False
        self._log = logger.bind(node="reader_session", work=key.work_title, chapter_idx=key.chapter_index)

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def subscribe(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            key=self.key,
            state=self.state,
            attempt_count=self.attempt_count,
            label=self.label,
            payload=self.payload,
            error=self.error,
        )

    def abandon(self) -> None:
        if not self._abandoned and not self.terminal:
            self._log.debug("Session abandoned state={}", self.state.value)
        self._abandoned = True

    def _transition(self, state: ReaderState) -> None:
        self.state = state
        snapshot = self.snapshot()
        self.history.append(snapshot)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                self._log.exception("Session listener failed state={}", state.value)

    async def run(self) -> SessionSnapshot:
        if self.state is not ReaderState.IDLE:
            raise RuntimeError(f"session for {self.key} already started")

        self._transition(ReaderState.LOADING)
        while True:
            self.fetches_issued += 1
            try:
                payload = await self._fetch(self.key)
            except Exception as exc:  # noqa: BLE001
                if self._abandoned:
                    return self.snapshot()

                self.attempt_count += 1
                log = self._log.bind(attempt=f"{self.attempt_count}/{self.max_attempts}", label=self.label)
                if self.attempt_count >= self.max_attempts:
                    self.error = ExhaustedRetriesError(self.key, self.attempt_count, exc)
                    log.error("Chapter unavailable after {} attempts error={}", self.attempt_count, exc)
                    self._transition(ReaderState.FINAL_FAILURE)
                    return self.snapshot()

                self.label = f"{self.fallback_label_prefix}{self.attempt_count}"
                log.warning("Chapter fetch failed, switching to {} error={}", self.label, exc)
                self._transition(ReaderState.RETRYING)

                await asyncio.sleep(self.backoff_s)
                if self._abandoned:
                    return self.snapshot()
                self._transition(ReaderState.LOADING)
                continue

            if self._abandoned:
                return self.snapshot()
            self.payload = payload
            self._log.bind(label=self.label).info("Chapter ready title={}", payload.title)
            self._transition(ReaderState.SUCCESS)
            return self.snapshot()
