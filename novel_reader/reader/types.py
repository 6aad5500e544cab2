from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class ChapterKey:
    """Identity of one chapter of one work, used for caching and deduplication."""

    work_title: str
    chapter_index: int

    def __post_init__(self) -> None:
        if self.chapter_index < 0:
            raise ValueError("chapter_index must be non-negative")

    def __str__(self) -> str:
        return f"{self.work_title}-{self.chapter_index}"


@dataclass(frozen=True)
class ChapterPayload:
    key: ChapterKey
    title: str
    body: str
    sequence_number: int


class ReaderState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    RETRYING = "retrying"
    SUCCESS = "success"
    FINAL_FAILURE = "final_failure"

    @property
    def terminal(self) -> bool:
        return self in (ReaderState.SUCCESS, ReaderState.FINAL_FAILURE)


@dataclass(frozen=True)
class SessionSnapshot:
    key: ChapterKey
    state: ReaderState
    attempt_count: int
    label: str
    payload: ChapterPayload | None = None
    error: Exception | None = None

    @property
    def terminal(self) -> bool:
        return self.state.terminal
