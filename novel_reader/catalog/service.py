from __future__ import annotations

from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from novel_reader.config.schema import AppConfigRoot
from novel_reader.llm.factory import OpenAIChatClient
from novel_reader.llm.json_utils import safe_load_json_list
from novel_reader.llm.prompts import CATALOG_PROMPT_VERSION, rankings_prompts, search_prompts

PLACEHOLDER_COVERS = [
    "https://picsum.photos/300/400?random=1",
    "https://picsum.photos/300/400?random=2",
    "https://picsum.photos/300/400?random=3",
    "https://picsum.photos/300/400?random=4",
    "https://picsum.photos/300/400?random=5",
]

RankingCategory = Literal["Urban", "Historical"]


class Novel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    title: str
    author: str = ""
    category: Literal["Urban", "Historical", "Fantasy", "Other"] = "Other"
    description: str = ""
    cover_url: str = ""
    tags: list[str] = Field(default_factory=list)
    status: Literal["Ongoing", "Completed"] = "Ongoing"
    rating: float = Field(default=0.0, ge=0, le=10)


def _to_novels(items: list[Any]) -> list[Novel]:
    novels: list[Novel] = []
    for item in items:
        if not isinstance(item, dict):
            logger.bind(node="catalog").warning("Skipping non-object catalog item: {}", item)
            continue
        try:
            novel = Novel.model_validate(item)
        except ValidationError as exc:
            logger.bind(node="catalog").warning("Skipping invalid catalog item error={}", exc)
            continue
        novel.cover_url = PLACEHOLDER_COVERS[len(novels) % len(PLACEHOLDER_COVERS)]
        if not novel.id:
            novel.id = f"{novel.title}-{len(novels)}"
        novels.append(novel)
    return novels


class CatalogService:
    """Search and ranking lookups answered by the chat model."""

    def __init__(self, config: AppConfigRoot, llm_client: OpenAIChatClient | None = None):
        self.config = config
        self._llm_client = llm_client

    def _client(self) -> OpenAIChatClient | None:
        if self._llm_client is not None:
            return self._llm_client
        try:
            self._llm_client = OpenAIChatClient(config=self.config, route="catalog")
        except ValueError as exc:
            # Raised when the provider's API key env var is unset.
            logger.bind(node="catalog").warning("Catalog disabled: {}", exc)
            return None
        return self._llm_client

    async def search_novels(self, query: str) -> list[Novel]:
        client = self._client()
        if client is None:
            return []

        catalog_cfg = self.config.catalog
        system_prompt, user_prompt = search_prompts(
            query=query,
            language=catalog_cfg.language,
            min_results=catalog_cfg.search_min_results,
            max_results=catalog_cfg.search_max_results,
        )
        try:
            _, items = await client.complete_json_async(
                system_prompt,
                user_prompt,
                safe_load_json_list,
                context={"node": "catalog_search", "prompt_version": CATALOG_PROMPT_VERSION},
            )
        except Exception:  # noqa: BLE001
            logger.bind(node="catalog_search").exception("Search failed query={}", query)
            return []
        return _to_novels(items)[: catalog_cfg.search_max_results]

    async def get_rankings(self, category: RankingCategory) -> list[Novel]:
        client = self._client()
        if client is None:
            return []

        catalog_cfg = self.config.catalog
        system_prompt, user_prompt = rankings_prompts(
            category=category,
            language=catalog_cfg.language,
            limit=catalog_cfg.rankings_limit,
        )
        try:
            _, items = await client.complete_json_async(
                system_prompt,
                user_prompt,
                safe_load_json_list,
                context={"node": "catalog_rankings", "prompt_version": CATALOG_PROMPT_VERSION},
            )
        except Exception:  # noqa: BLE001
            logger.bind(node="catalog_rankings").exception("Rankings failed category={}", category)
            return []
        return _to_novels(items)[: catalog_cfg.rankings_limit]
