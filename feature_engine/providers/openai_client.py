"""OpenAI-backed embedding and reasoning providers."""
from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError as SchemaValidationError

from feature_engine import config
from feature_engine.errors import MalformedResponseError, ProviderError
from feature_engine.observability import record_provider_call
from feature_engine.providers.base import ResponseT

logger = logging.getLogger("feature_engine.providers")

_SYSTEM_PROMPT = (
    "You analyze software product documentation evidence. "
    "Always respond with a single JSON object matching the requested shape."
)


def _retry_after(exc: openai.APIStatusError) -> float | None:
    header = exc.response.headers.get("retry-after") if exc.response is not None else None
    if not header:
        return None
    try:
        return float(header)
    except ValueError:
        return None


def translate_openai_error(exc: Exception) -> ProviderError:
    """Map an openai SDK exception onto the engine's ProviderError kinds."""
    if isinstance(exc, openai.RateLimitError):
        return ProviderError(str(exc), kind="rate_limited", retry_after=_retry_after(exc))
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(str(exc), kind="timeout")
    return ProviderError(str(exc), kind="other")


class OpenAIEmbeddingProvider:
    def __init__(self, client: AsyncOpenAI | None = None, model: str = config.EMBEDDING_MODEL):
        self.client = client or AsyncOpenAI()
        self.model = model

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = await self.client.embeddings.create(model=self.model, input=list(texts))
        except openai.APIError as exc:
            error = translate_openai_error(exc)
            record_provider_call("openai", "embed", error.kind)
            raise error from exc

        record_provider_call("openai", "embed", "ok")
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


class OpenAIReasoningProvider:
    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = config.REASONING_MODEL,
        temperature: float = config.REASONING_TEMPERATURE,
    ):
        self.client = client or AsyncOpenAI()
        self.model = model
        self.temperature = temperature

    async def complete(self, prompt: str, response_model: type[ResponseT]) -> ResponseT:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
            )
        except openai.APIError as exc:
            error = translate_openai_error(exc)
            record_provider_call("openai", "complete", error.kind)
            raise error from exc

        content = response.choices[0].message.content if response.choices else None
        try:
            payload: Any = json.loads(content or "")
            result = response_model.model_validate(payload)
        except (json.JSONDecodeError, SchemaValidationError) as exc:
            record_provider_call("openai", "complete", "malformed")
            logger.warning("Malformed %s response: %s", response_model.__name__, exc)
            raise MalformedResponseError(f"Malformed {response_model.__name__} response: {exc}") from exc

        record_provider_call("openai", "complete", "ok")
        return result
