"""Tests for the OpenAI-compatible generation client."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, cast

import httpx
import pytest
from openai import APIConnectionError, AsyncOpenAI

from copydesk.ai.client import ClientSettings, GenerationClient
from copydesk.services.errors import GenerationFailure
from copydesk.services.settings import Settings

_MESSAGES = [{"role": "user", "content": "Write a headline"}]


class _FakeCompletions:
    def __init__(self, *outcomes: Any, delay: float = 0.0) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict[str, Any]] = []
        self.delay = delay

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))])


class _FakeOpenAI:
    def __init__(self, completions: _FakeCompletions) -> None:
        self.chat = SimpleNamespace(completions=completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


def _client(completions: _FakeCompletions, **overrides: Any) -> tuple[GenerationClient, _FakeOpenAI]:
    settings = ClientSettings(
        base_url="https://api.example.com/v1",
        api_key="test-key",
        model="gpt-test",
        retry_min_seconds=0.0,
        retry_max_seconds=0.0,
        **overrides,
    )
    fake = _FakeOpenAI(completions)
    return GenerationClient(settings, client=cast(AsyncOpenAI, fake)), fake


def _connection_error() -> APIConnectionError:
    return APIConnectionError(request=httpx.Request("POST", "https://api.example.com/v1/chat/completions"))


@pytest.mark.asyncio
async def test_generate_returns_stripped_text_and_sends_payload() -> None:
    completions = _FakeCompletions("  <p>Ship faster</p>\n")
    client, _ = _client(completions, temperature=0.3, max_completion_tokens=500)

    text = await client.generate(_MESSAGES)

    assert text == "<p>Ship faster</p>"
    payload = completions.calls[0]
    assert payload["model"] == "gpt-test"
    assert payload["messages"] == _MESSAGES
    assert payload["temperature"] == 0.3
    assert payload["max_completion_tokens"] == 500


@pytest.mark.asyncio
async def test_transient_errors_are_retried() -> None:
    completions = _FakeCompletions(_connection_error(), "<p>Second time lucky</p>")
    client, _ = _client(completions, max_retries=3)

    assert await client.generate(_MESSAGES) == "<p>Second time lucky</p>"
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_exhausted_retries_raise_generation_failure() -> None:
    completions = _FakeCompletions(_connection_error(), _connection_error())
    client, _ = _client(completions, max_retries=2)

    with pytest.raises(GenerationFailure) as excinfo:
        await client.generate(_MESSAGES)

    assert excinfo.value.timed_out is False
    assert len(completions.calls) == 2


@pytest.mark.asyncio
async def test_timeout_raises_generation_failure() -> None:
    completions = _FakeCompletions("<p>too late</p>", delay=0.5)
    client, _ = _client(completions)

    with pytest.raises(GenerationFailure) as excinfo:
        await client.generate(_MESSAGES, timeout=0.01)

    assert excinfo.value.timed_out is True
    assert excinfo.value.to_dict()["timed_out"] is True


@pytest.mark.asyncio
async def test_empty_response_is_a_failure() -> None:
    client, _ = _client(_FakeCompletions("   "))

    with pytest.raises(GenerationFailure):
        await client.generate(_MESSAGES)


@pytest.mark.asyncio
async def test_empty_messages_rejected_and_close() -> None:
    client, fake = _client(_FakeCompletions())

    with pytest.raises(ValueError):
        await client.generate([])
    await client.aclose()

    assert fake.closed is True


def test_client_settings_from_settings() -> None:
    settings = Settings(model="gpt-custom", request_timeout=12.0, max_retries=5, temperature=0.1)

    client_settings = ClientSettings.from_settings(settings)

    assert client_settings.model == "gpt-custom"
    assert client_settings.request_timeout == 12.0
    assert client_settings.max_retries == 5
    assert client_settings.temperature == 0.1
