from __future__ import annotations

from novel_reader.reader.types import ChapterKey


class ChapterFetchError(Exception):
    """Base class for failures surfaced by the chapter fetch path."""

    def __init__(self, key: ChapterKey, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key


class AdapterError(ChapterFetchError):
    """The content generator raised while producing a chapter."""


class ContentValidationError(ChapterFetchError):
    """The generator returned a chapter whose body is too short to display."""

    def __init__(self, key: ChapterKey, body_chars: int, min_body_chars: int):
        super().__init__(key, f"body has {body_chars} chars, need at least {min_body_chars}")
        self.body_chars = body_chars
        self.min_body_chars = min_body_chars


class ExhaustedRetriesError(ChapterFetchError):
    def __init__(self, key: ChapterKey, attempts: int, last_error: Exception | None = None):
        super().__init__(key, f"gave up after {attempts} attempts")
        self.attempts = attempts
        self.last_error = last_error
