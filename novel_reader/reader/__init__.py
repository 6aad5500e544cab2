"""Chapter fetch coordination, background preloading and reading sessions."""

from novel_reader.reader.coordinator import ChapterFetchCoordinator
from novel_reader.reader.errors import AdapterError, ChapterFetchError, ContentValidationError, ExhaustedRetriesError
from novel_reader.reader.preload import PreloadScheduler
from novel_reader.reader.service import ReaderService
from novel_reader.reader.session import RetrySession
from novel_reader.reader.types import ChapterKey, ChapterPayload, ReaderState, SessionSnapshot

__all__ = [
    "AdapterError",
    "ChapterFetchCoordinator",
    "ChapterFetchError",
    "ChapterKey",
    "ChapterPayload",
    "ContentValidationError",
    "ExhaustedRetriesError",
    "PreloadScheduler",
    "ReaderService",
    "ReaderState",
    "RetrySession",
    "SessionSnapshot",
]
