from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_level: str = Field(default="INFO")


class LLMProviderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: str | None = None
    api_key_env: str | None = None


class ChatEndpointConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: str
    model: str
    temperature: float = 0.8
    timeout_s: int = 60
    max_concurrency: int = 6
    retries: int = 0
    max_tokens: int | None = None

    @field_validator("temperature")
    @classmethod
    def _temperature_range(cls, value: float) -> float:
        if not 0 <= value <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return value

    @field_validator("timeout_s", "max_concurrency", "retries")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("endpoint integer settings must be non-negative")
        return value

    @field_validator("max_tokens")
    @classmethod
    def _positive_optional_max_tokens(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_tokens must be positive when provided")
        return value


class LLMRoutesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chapter_chat: str = "chapter_default"
    catalog_chat: str | None = None


class LLMConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    providers: dict[str, LLMProviderConfig]
    chat_endpoints: dict[str, ChatEndpointConfig]
    routes: LLMRoutesConfig = LLMRoutesConfig()

    @model_validator(mode="after")
    def _validate_references(self) -> "LLMConfig":
        if not self.providers:
            raise ValueError("llm.providers cannot be empty")
        if not self.chat_endpoints:
            raise ValueError("llm.chat_endpoints cannot be empty")

        for endpoint_name, endpoint in self.chat_endpoints.items():
            if endpoint.provider not in self.providers:
                raise ValueError(
                    f"chat endpoint '{endpoint_name}' references unknown provider '{endpoint.provider}'"
                )

        if self.routes.chapter_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.chapter_chat not found: {self.routes.chapter_chat}")
        if self.routes.catalog_chat and self.routes.catalog_chat not in self.chat_endpoints:
            raise ValueError(f"llm.routes.catalog_chat not found: {self.routes.catalog_chat}")

        return self

    def resolve_chat_route(
        self,
        route: Literal["chapter", "catalog"],
    ) -> tuple[str, ChatEndpointConfig, LLMProviderConfig]:
        if route == "catalog":
            endpoint_name = self.routes.catalog_chat or self.routes.chapter_chat
        else:
            endpoint_name = self.routes.chapter_chat

        endpoint = self.chat_endpoints[endpoint_name]
        provider = self.providers[endpoint.provider]
        return endpoint_name, endpoint, provider


class ReaderConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    language: str = "简体中文"
    style: str = "网文风格，沉浸感强，描写细腻"
    target_chars: int = 1500
    min_body_chars: int = 50
    max_attempts: int = 3
    retry_backoff_s: float = 1.5
    default_source_label: str = "智能优选源"
    fallback_label_prefix: str = "fallback-"
    preload_ahead: int = 5

    @field_validator("target_chars", "max_attempts")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("reader integer config values must be positive")
        return value

    @field_validator("min_body_chars", "preload_ahead")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("reader integer config values must be non-negative")
        return value

    @field_validator("retry_backoff_s")
    @classmethod
    def _non_negative_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("retry_backoff_s must be non-negative")
        return value


class PreloadConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workers: int = 3

    @field_validator("workers")
    @classmethod
    def _positive_workers(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("preload.workers must be positive")
        return value


class CatalogConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    language: str = "简体中文"
    search_min_results: int = 4
    search_max_results: int = 6
    rankings_limit: int = 10

    @field_validator("search_min_results", "search_max_results", "rankings_limit")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("catalog integer config values must be positive")
        return value

    @model_validator(mode="after")
    def _validate_search_range(self) -> "CatalogConfig":
        if self.search_min_results > self.search_max_results:
            raise ValueError("search_min_results must not exceed search_max_results")
        return self


class ObservabilityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log_json_error_payload: bool = True
    json_error_payload_max_chars: int = 0
    log_retry_attempts: bool = True

    @field_validator("json_error_payload_max_chars")
    @classmethod
    def _non_negative_chars(cls, value: int) -> int:
        if value < 0:
            raise ValueError("json_error_payload_max_chars must be non-negative")
        return value


def default_llm_config() -> LLMConfig:
    return LLMConfig.model_validate(
        {
            "providers": {
                "default": {
                    "base_url": None,
                    "api_key_env": "OPENAI_API_KEY",
                }
            },
            "chat_endpoints": {
                "chapter_default": {
                    "provider": "default",
                    "model": "gpt-4.1-mini",
                    "temperature": 0.8,
                    "timeout_s": 90,
                    "max_concurrency": 6,
                    "retries": 0,
                },
            },
            "routes": {
                "chapter_chat": "chapter_default",
            },
        }
    )


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    llm: LLMConfig = Field(default_factory=default_llm_config)
    reader: ReaderConfig = ReaderConfig()
    preload: PreloadConfig = PreloadConfig()
    catalog: CatalogConfig = CatalogConfig()
    observability: ObservabilityConfig = ObservabilityConfig()
