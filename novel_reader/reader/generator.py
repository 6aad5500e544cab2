from __future__ import annotations

import re
from typing import Protocol

from novel_reader.config.schema import AppConfigRoot
from novel_reader.llm.factory import OpenAIChatClient
from novel_reader.llm.prompts import CHAPTER_PROMPT_VERSION, chapter_prompts
from novel_reader.reader.types import ChapterKey, ChapterPayload

_HEADING_PREFIX_RE = re.compile(r"^#+\s*")


class ChapterGenerator(Protocol):
    async def generate(self, work_title: str, chapter_index: int) -> ChapterPayload: ...


def split_chapter_text(text: str, *, key: ChapterKey) -> ChapterPayload:
    """First line is the chapter title, the rest is the body."""

    lines = text.split("\n")
    title = _HEADING_PREFIX_RE.sub("", lines[0].strip()) if lines else ""
    if not title:
        title = f"第 {key.chapter_index + 1} 章"
    body = "\n".join(lines[1:]).strip()
    return ChapterPayload(
        key=key,
        title=title,
        body=body,
        sequence_number=key.chapter_index + 1,
    )


class LLMChapterGenerator:
    """Writes chapters with the configured chat model."""

    def __init__(self, config: AppConfigRoot, llm_client: OpenAIChatClient | None = None):
        self.config = config
        self.llm_client = llm_client or OpenAIChatClient(config=config, route="chapter")

    async def generate(self, work_title: str, chapter_index: int) -> ChapterPayload:
        key = ChapterKey(work_title, chapter_index)
        system_prompt, user_prompt = chapter_prompts(
            work_title=work_title,
            chapter_index=chapter_index,
            language=self.config.reader.language,
            style=self.config.reader.style,
            target_chars=self.config.reader.target_chars,
        )
        response = await self.llm_client.complete_async(
            system_prompt,
            user_prompt,
            context={
                "node": "chapter_generate",
                "work": work_title,
                "chapter_idx": chapter_index,
                "prompt_version": CHAPTER_PROMPT_VERSION,
            },
        )
        return split_chapter_text(response.text, key=key)
