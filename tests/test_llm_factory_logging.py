from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

from loguru import logger
import pytest

import novel_reader.llm.factory as llm_factory
from novel_reader.config.schema import AppConfigRoot
from novel_reader.llm.json_utils import safe_load_json_list


class _FakeModel:
    def __init__(self, responses: list[str]) -> None:
        self._responses = responses
        self.calls = 0

    def invoke(self, messages):
        _ = messages
        index = min(self.calls, len(self._responses) - 1)
        self.calls += 1
        return SimpleNamespace(content=self._responses[index])


def _make_config(*, retries: int, log_payload: bool = True, payload_max_chars: int = 0) -> AppConfigRoot:
    return AppConfigRoot.model_validate(
        {
            "llm": {
                "providers": {
                    "fake": {
                        "base_url": "https://api.example.com/v1",
                        "api_key_env": None,
                    }
                },
                "chat_endpoints": {
                    "chapter_default": {
                        "provider": "fake",
                        "model": "fake-chat",
                        "temperature": 0.3,
                        "timeout_s": 30,
                        "max_concurrency": 1,
                        "retries": retries,
                    }
                },
                "routes": {
                    "chapter_chat": "chapter_default",
                },
            },
            "observability": {
                "log_json_error_payload": log_payload,
                "json_error_payload_max_chars": payload_max_chars,
                "log_retry_attempts": True,
            },
        }
    )


def test_complete_json_logs_raw_payload_on_parse_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_model = _FakeModel(["not json at all"])
    monkeypatch.setattr(llm_factory, "_build_chat_model", lambda runtime: fake_model)

    client = llm_factory.OpenAIChatClient(config=_make_config(retries=0), route="catalog")

    records: list[Any] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    try:
        with pytest.raises(RuntimeError, match="LLM call failed after retries"):
            asyncio.run(
                client.complete_json_async(
                    "system",
                    "user",
                    safe_load_json_list,
                    context={"node": "catalog_search", "work": "赘婿", "chapter_idx": 3},
                )
            )
    finally:
        logger.remove(sink_id)

    assert any("JSON parse failed" in record["message"] for record in records)
    assert any("JSON parse raw_response=not json at all" in record["message"] for record in records)
    assert any(
        record["extra"].get("node") == "catalog_search"
        and record["extra"].get("work") == "赘婿"
        and record["extra"].get("chapter_idx") == 3
        for record in records
    )


def test_json_error_payload_respects_truncation_config(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_model = _FakeModel(["x" * 80])
    monkeypatch.setattr(llm_factory, "_build_chat_model", lambda runtime: fake_model)

    client = llm_factory.OpenAIChatClient(config=_make_config(retries=0, payload_max_chars=20))

    records: list[Any] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="WARNING")
    try:
        with pytest.raises(RuntimeError):
            asyncio.run(client.complete_json_async("system", "user", safe_load_json_list))
    finally:
        logger.remove(sink_id)

    assert any("JSON parse raw_response=" in record["message"] for record in records)
    assert any("[truncated" in record["message"] for record in records)


def test_complete_async_retries_empty_response(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_model = _FakeModel(["", "第1章 开端\n正文"])
    monkeypatch.setattr(llm_factory, "_build_chat_model", lambda runtime: fake_model)

    client = llm_factory.OpenAIChatClient(config=_make_config(retries=1))
    response = asyncio.run(client.complete_async("system", "user"))

    assert response.text.startswith("第1章")
    assert fake_model.calls == 2


def test_chapter_route_default_makes_single_attempt(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_model = _FakeModel([""])
    monkeypatch.setattr(llm_factory, "_build_chat_model", lambda runtime: fake_model)

    client = llm_factory.OpenAIChatClient(config=_make_config(retries=0))
    with pytest.raises(RuntimeError) as exc_info:
        asyncio.run(client.complete_async("system", "user"))

    assert fake_model.calls == 1
    assert isinstance(exc_info.value.__cause__, ValueError)


def test_missing_api_key_env_is_reported(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        llm_factory.resolve_chat_runtime(AppConfigRoot(), "chapter")


def test_chat_model_receives_endpoint_and_key_without_sdk_retries(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("READER_TEST_KEY", "sk-test")
    config = _make_config(retries=2)
    config.llm.providers["fake"].api_key_env = "READER_TEST_KEY"

    runtime = llm_factory.resolve_chat_runtime(config, "chapter")
    model = llm_factory._build_chat_model(runtime)

    assert runtime.api_key == "sk-test"
    assert runtime.attempts_total == 3
    assert model.openai_api_base == "https://api.example.com/v1"
    assert model.openai_api_key.get_secret_value() == "sk-test"
    assert model.max_retries == 0


def test_response_reports_attempts_used(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_model = _FakeModel(["", "", "第2章 转折\n正文"])
    monkeypatch.setattr(llm_factory, "_build_chat_model", lambda runtime: fake_model)
    monkeypatch.setattr(llm_factory, "_backoff_delay", lambda failed_attempt: 0)

    client = llm_factory.OpenAIChatClient(config=_make_config(retries=2))
    response = asyncio.run(client.complete_async("system", "user"))

    assert response.attempts == 3
    assert client.model_identifier == "fake/chapter_default/fake-chat"
