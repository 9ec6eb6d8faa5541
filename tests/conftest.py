"""Shared fixtures: a scripted completion client and a recording sleep."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from src.annotation.store import ArtifactStore
from src.context import ExecutionContext


class ScriptedClient:
    """Completion client returning queued responses (or raising queued errors).

    When the queue is empty, ``fallback`` is called with the messages.
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        fallback: Callable[[list[dict[str, str]]], str] | None = None,
    ) -> None:
        self.responses = list(responses or [])
        self.fallback = fallback
        self.calls: list[dict[str, Any]] = []

    def complete(
        self,
        messages: list[dict[str, str]],
        *,
        model: str,
        temperature: float = 0.0,
        max_tokens: int = 16384,
    ) -> str:
        self.calls.append({"messages": messages, "model": model, "temperature": temperature})
        if self.responses:
            item = self.responses.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        if self.fallback is not None:
            return self.fallback(messages)
        raise AssertionError("ScriptedClient ran out of responses")


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def sentence(start: float, end: float, text: str = "text", teacher: float = 1.0) -> dict[str, Any]:
    return {
        "start": start,
        "end": end,
        "text": text,
        "speaker_probabilities": {"teacher": teacher, "student": round(1.0 - teacher, 4)},
    }


def fenced(data: Any) -> str:
    return "```json\n" + json.dumps(data, ensure_ascii=False) + "\n```"


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "batches", tmp_path / "out")


@pytest.fixture
def make_context(store: ArtifactStore, sleep: RecordingSleep) -> Callable[..., ExecutionContext]:
    def _make(client: Any, **overrides: Any) -> ExecutionContext:
        params: dict[str, Any] = {
            "client": client,
            "store": store,
            "model": "gpt-4o",
            "retry_delay": 5.0,
            "batch_delay": 1.0,
            "sleep": sleep,
        }
        params.update(overrides)
        return ExecutionContext(**params)

    return _make
