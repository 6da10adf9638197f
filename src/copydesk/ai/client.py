"""Async generation client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Protocol, Sequence

import httpx
from openai import APIConnectionError, APIError, AsyncOpenAI, InternalServerError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..services.errors import GenerationFailure

LOGGER = logging.getLogger(__name__)


class Generator(Protocol):
    """Opaque request/response text generation."""

    async def generate(self, messages: Sequence[Mapping[str, str]]) -> str:
        ...


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the generation client."""

    base_url: str
    api_key: str
    model: str
    request_timeout: float = 60.0
    max_retries: int = 2
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 4.0
    temperature: float | None = 0.7
    max_completion_tokens: int | None = 2_000
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> ClientSettings:
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            temperature=settings.temperature,
            max_completion_tokens=settings.max_completion_tokens,
            debug_logging=settings.debug_logging,
        )


class GenerationClient:
    """Chat-completion client with an overall timeout and transient-error retries.

    Every call is bounded by ``request_timeout`` across all retry attempts.
    Timeouts and service errors surface as :class:`GenerationFailure`, so a
    caller never sees ``openai`` or ``httpx`` exceptions.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def generate(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        timeout: float | None = None,
    ) -> str:
        payload = self._build_payload(messages)
        limit = timeout if timeout is not None else self._settings.request_timeout
        LOGGER.debug("Requesting completion via %s with %d message(s)", self._settings.model, len(messages))
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        try:
            return await asyncio.wait_for(self._complete(payload), timeout=limit)
        except asyncio.TimeoutError as exc:
            LOGGER.warning("Generation timed out after %.1fs", limit)
            raise GenerationFailure(
                message="Generation timed out",
                details={"timeout": limit},
                timed_out=True,
            ) from exc
        except (APIError, httpx.HTTPError) as exc:
            LOGGER.warning("Generation request failed: %s", exc)
            details: Dict[str, Any] = {"reason": str(exc) or type(exc).__name__}
            status = getattr(exc, "status_code", None)
            if status is not None:
                details["status_code"] = status
            raise GenerationFailure(details=details) from exc

    async def _complete(self, payload: Mapping[str, Any]) -> str:
        response: Any = None
        async for attempt in self._retrying():
            with attempt:
                response = await self._client.chat.completions.create(**payload)
        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        text = (content or "").strip()
        if not text:
            raise GenerationFailure(
                message="The generation service returned an empty response",
                details={"model": self._settings.model},
            )
        LOGGER.debug("Completion received: %d chars", len(text))
        return text

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=settings.api_key or "unset",
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )

    def _build_payload(self, messages: Sequence[Mapping[str, str]]) -> Dict[str, Any]:
        if not messages:
            raise ValueError("At least one message is required")
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": [dict(message) for message in messages],
        }
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        if self._settings.max_completion_tokens is not None:
            payload["max_completion_tokens"] = self._settings.max_completion_tokens
        return payload

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(
                (
                    APIConnectionError,
                    RateLimitError,
                    InternalServerError,
                    httpx.TimeoutException,
                )
            ),
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Generation payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Generation payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        await self._client.close()


__all__ = ["ClientSettings", "GenerationClient", "Generator"]
