from __future__ import annotations

import asyncio
from dataclasses import dataclass
import hashlib
import os
import time
from typing import Any, Callable, Literal, Mapping, TypeVar

from langchain_openai import ChatOpenAI
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from loguru import logger

from novel_reader.config.schema import AppConfigRoot

Route = Literal["chapter", "catalog"]
T = TypeVar("T")

_BACKOFF_BASE_S = 0.5
_BACKOFF_CAP_S = 4.0


@dataclass
class LLMResponse:
    text: str
    elapsed_ms: int = 0
    attempts: int = 1


@dataclass(frozen=True)
class ChatRuntime:
    """Everything needed to talk to one chat endpoint, resolved from config and env."""

    route: Route
    endpoint_name: str
    provider_name: str
    model: str
    temperature: float
    timeout_s: int
    max_concurrency: int
    retries: int
    max_tokens: int | None
    base_url: str | None
    api_key: str | None

    @property
    def identifier(self) -> str:
        return f"{self.provider_name}/{self.endpoint_name}/{self.model}"

    @property
    def attempts_total(self) -> int:
        return self.retries + 1

    def log_fields(self) -> dict[str, Any]:
        return {
            "route": self.route,
            "provider": self.provider_name,
            "endpoint": self.endpoint_name,
            "model": self.model,
        }


def resolve_chat_runtime(config: AppConfigRoot, route: Route) -> ChatRuntime:
    endpoint_name, endpoint, provider = config.llm.resolve_chat_route(route)

    api_key: str | None = None
    if provider.api_key_env:
        api_key = os.getenv(provider.api_key_env)
        if not api_key:
            raise ValueError(f"Missing required API key env for route '{route}': {provider.api_key_env}")

    return ChatRuntime(
        route=route,
        endpoint_name=endpoint_name,
        provider_name=endpoint.provider,
        model=endpoint.model,
        temperature=endpoint.temperature,
        timeout_s=endpoint.timeout_s,
        max_concurrency=max(1, endpoint.max_concurrency),
        retries=endpoint.retries,
        max_tokens=endpoint.max_tokens,
        base_url=provider.base_url,
        api_key=api_key,
    )


def _build_chat_model(runtime: ChatRuntime) -> ChatOpenAI:
    # The SDK never retries on its own; attempts are counted here and by the reader session.
    options: dict[str, Any] = {"max_retries": 0}
    optional = {"max_tokens": runtime.max_tokens, "base_url": runtime.base_url, "api_key": runtime.api_key}
    options.update({name: value for name, value in optional.items() if value})
    return ChatOpenAI(
        model=runtime.model,
        temperature=runtime.temperature,
        timeout=runtime.timeout_s,
        **options,
    )


def _backoff_delay(failed_attempt: int) -> float:
    return min(_BACKOFF_BASE_S * (2 ** (failed_attempt - 1)), _BACKOFF_CAP_S)


def _describe_parse_position(exc: Exception) -> str:
    fields = (("line", "lineno"), ("column", "colno"), ("pos", "pos"))
    found = [f"{label}={getattr(exc, attr)}" for label, attr in fields if isinstance(getattr(exc, attr, None), int)]
    return ", ".join(found) or "-"


def _truncate_middle(text: str, limit: int) -> str:
    """Keeps the head and tail of ``text`` within ``limit`` chars; 0 disables truncation."""
    if limit <= 0 or len(text) <= limit:
        return text
    head = limit // 2
    tail = limit - head
    if head == 0:
        return text[:limit]
    return f"{text[:head]}\n...[truncated {len(text) - limit} chars]...\n{text[-tail:]}"


class OpenAIChatClient:
    """Chat client for one route: bounded concurrency, its own retry loop, structured logs.

    Model calls run on a worker thread so a slow provider never blocks the
    event loop; ``max_concurrency`` of them may run at once.
    """

    def __init__(self, config: AppConfigRoot, route: Route = "chapter"):
        self.observability = config.observability
        self.runtime = resolve_chat_runtime(config, route)
        self.model = _build_chat_model(self.runtime)
        self.model_identifier = self.runtime.identifier
        self._slots = asyncio.Semaphore(self.runtime.max_concurrency)

    def _logger(self, context: Mapping[str, Any] | None, attempt: int | None = None):
        fields = self.runtime.log_fields()
        fields.update({key: value for key, value in (context or {}).items() if value is not None})
        if attempt is not None:
            fields["attempt"] = f"{attempt}/{self.runtime.attempts_total}"
        return logger.bind(**fields)

    def _report_unparseable(self, log, raw_text: str, exc: Exception) -> None:
        log.warning(
            "JSON parse failed error_type={} error={} location={} raw_len={} raw_hash={}",
            type(exc).__name__,
            exc,
            _describe_parse_position(exc),
            len(raw_text),
            hashlib.sha256(raw_text.encode("utf-8")).hexdigest(),
        )
        if self.observability.log_json_error_payload:
            shown = _truncate_middle(raw_text, self.observability.json_error_payload_max_chars)
            log.warning("JSON parse raw_response={}", shown)

    async def complete_async(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        context: Mapping[str, Any] | None = None,
    ) -> LLMResponse:
        response, _ = await self._call(system_prompt, user_prompt, None, context)
        return response

    async def complete_json_async(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], T],
        *,
        context: Mapping[str, Any] | None = None,
    ) -> tuple[LLMResponse, T]:
        return await self._call(system_prompt, user_prompt, parser, context)

    async def _invoke(self, messages: list[BaseMessage]) -> str:
        async with self._slots:
            reply = await asyncio.to_thread(self.model.invoke, messages)
        text = str(reply.content).strip()
        if not text:
            raise ValueError("Empty LLM response")
        return text

    async def _call(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], T] | None,
        context: Mapping[str, Any] | None,
    ) -> tuple[LLMResponse, T | None]:
        messages: list[BaseMessage] = [SystemMessage(system_prompt), HumanMessage(user_prompt)]
        total = self.runtime.attempts_total
        started = time.perf_counter()
        last_exc: Exception | None = None

        for attempt in range(1, total + 1):
            log = self._logger(context, attempt)
            attempt_started = time.perf_counter()
            try:
                text = await self._invoke(messages)
                parsed = None
                if parser is not None:
                    try:
                        parsed = parser(text)
                    except Exception as parse_exc:  # noqa: BLE001
                        self._report_unparseable(log, text, parse_exc)
                        raise
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                if self.observability.log_retry_attempts:
                    log.warning(
                        "LLM call failed elapsed_ms={} error_type={} error={}",
                        int((time.perf_counter() - attempt_started) * 1000),
                        type(exc).__name__,
                        exc,
                    )
                if attempt < total:
                    await asyncio.sleep(_backoff_delay(attempt))
                continue

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            return LLMResponse(text=text, elapsed_ms=elapsed_ms, attempts=attempt), parsed

        raise RuntimeError("LLM call failed after retries") from last_exc
