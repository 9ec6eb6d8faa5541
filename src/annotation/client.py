"""Completion service clients (OpenAI chat completions, Anthropic messages).

Both adapters expose the same ``complete`` call and translate SDK failures
into the pipeline's retryable error types, so the unit runner never needs
to know which provider is behind a model identifier.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import anthropic
import openai
from anthropic import Anthropic
from anthropic.types import TextBlock
from openai import OpenAI

from src.errors import EmptyResponseError, TransientCallError

if TYPE_CHECKING:
    from src.config import Settings

Message = dict[str, str]


class CompletionClient(Protocol):
    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 16384,
    ) -> str: ...


def _require_text(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise EmptyResponseError("Empty response content")
    return text


class OpenAICompletionClient:
    """Chat completions against the OpenAI API."""

    def __init__(self, api_key: str, client: Any | None = None) -> None:
        self._client = client or OpenAI(api_key=api_key)

    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 16384,
    ) -> str:
        try:
            response = self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APIError as e:
            raise TransientCallError(f"OpenAI request failed: {e}") from e

        if not response.choices:
            raise EmptyResponseError("Response contained no choices")
        return _require_text(response.choices[0].message.content)


class AnthropicCompletionClient:
    """Messages API against Anthropic; system messages go in ``system=``."""

    def __init__(self, api_key: str, client: Any | None = None) -> None:
        self._client = client or Anthropic(api_key=api_key)

    def complete(
        self,
        messages: list[Message],
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 16384,
    ) -> str:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        chat = [m for m in messages if m["role"] != "system"]

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": chat,
        }
        if system:
            kwargs["system"] = system

        try:
            response = self._client.messages.create(**kwargs)
        except anthropic.APIError as e:
            raise TransientCallError(f"Anthropic request failed: {e}") from e

        text = "".join(block.text for block in response.content if isinstance(block, TextBlock))
        return _require_text(text)


def build_completion_client(settings: Settings) -> CompletionClient:
    """Pick a provider from the model identifier.

    Models containing ``claude`` go to Anthropic, everything else to OpenAI.

    Raises:
        ValueError: If the resolved provider has no API key configured.
    """
    if "claude" in settings.llm_model.lower():
        if not settings.anthropic_api_key:
            raise ValueError(f"Model '{settings.llm_model}' needs ANTHROPIC_API_KEY to be set")
        return AnthropicCompletionClient(settings.anthropic_api_key)

    if not settings.openai_api_key:
        raise ValueError(f"Model '{settings.llm_model}' needs OPENAI_API_KEY to be set")
    return OpenAICompletionClient(settings.openai_api_key)
