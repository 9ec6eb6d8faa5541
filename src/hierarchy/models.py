"""Data models for the hierarchical (task / event) pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from src.transcript.models import AnnotatedSentence


@dataclass(frozen=True)
class Window:
    """An overlapping slice of the flat sentence sequence.

    ``start``/``end`` are global indices (end exclusive); the first
    ``overlap`` sentences repeat the tail of the previous window.
    """

    index: int
    start: int
    end: int
    overlap: int
    sentences: tuple[AnnotatedSentence, ...] = field(repr=False)

    @property
    def overlap_positions(self) -> range:
        """Global indices of the leading sentences shared with the previous window."""
        return range(self.start, self.start + self.overlap)


@dataclass(frozen=True)
class EventNode:
    """A teaching activity: one contiguous run of sentences."""

    event_type: str
    summary: str
    sentences: tuple[AnnotatedSentence, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "summary": self.summary,
            "sentences": [s.to_dict() for s in self.sentences],
        }


@dataclass(frozen=True)
class TaskNode:
    """A teaching module grouping consecutive events."""

    title: str
    events: tuple[EventNode, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_title": self.title,
            "events": [e.to_dict() for e in self.events],
        }
