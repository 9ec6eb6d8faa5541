"""Execution context passed explicitly to every pipeline component."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from src.annotation.client import CompletionClient, build_completion_client
from src.annotation.store import ArtifactStore
from src.config import Settings


@dataclass(frozen=True)
class ExecutionContext:
    """Credentials-bearing client, model settings and artifact store for one run."""

    client: CompletionClient
    store: ArtifactStore
    model: str = "gpt-4o"
    temperature: float = 0.0
    max_tokens: int = 16384
    max_attempts: int = 3
    retry_delay: float = 5.0
    batch_delay: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)


def build_context(settings: Settings, client: CompletionClient | None = None) -> ExecutionContext:
    """Build an :class:`ExecutionContext` from validated settings."""
    return ExecutionContext(
        client=client or build_completion_client(settings),
        store=ArtifactStore(settings.artifact_dir, settings.output_dir),
        model=settings.llm_model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay_seconds,
        batch_delay=settings.batch_delay_seconds,
    )
