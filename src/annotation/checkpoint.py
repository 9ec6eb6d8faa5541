"""Per-unit status tracking for resumable passes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class UnitStatus(StrEnum):
    PENDING = "pending"
    COMPLETE = "complete"
    EXHAUSTED = "exhausted"


@dataclass
class Checkpoint:
    """State machine over the unit indices of one pass.

    Every index starts ``pending`` and moves exactly once to ``complete``
    or ``exhausted``; ``cursor`` is the next index to be processed.
    ``resumed`` records indices completed from artifacts already on disk.
    """

    kind: str
    total: int
    statuses: dict[int, UnitStatus] = field(default_factory=dict)
    resumed: set[int] = field(default_factory=set)
    cursor: int = 0

    def __post_init__(self) -> None:
        for index in range(self.total):
            self.statuses.setdefault(index, UnitStatus.PENDING)

    def status(self, index: int) -> UnitStatus:
        return self.statuses[index]

    def _transition(self, index: int, status: UnitStatus) -> None:
        current = self.statuses[index]
        if current is not UnitStatus.PENDING:
            raise ValueError(f"{self.kind} {index + 1} is already {current}")
        self.statuses[index] = status
        self.cursor = max(self.cursor, index + 1)

    def mark_complete(self, index: int, *, resumed: bool = False) -> None:
        self._transition(index, UnitStatus.COMPLETE)
        if resumed:
            self.resumed.add(index)

    def mark_exhausted(self, index: int) -> None:
        self._transition(index, UnitStatus.EXHAUSTED)

    @property
    def completed(self) -> list[int]:
        return [i for i in range(self.total) if self.statuses[i] is UnitStatus.COMPLETE]

    @property
    def omitted(self) -> list[int]:
        return [i for i in range(self.total) if self.statuses[i] is UnitStatus.EXHAUSTED]

    @property
    def finished(self) -> bool:
        return all(s is not UnitStatus.PENDING for s in self.statuses.values())

    def summary(self) -> dict[str, object]:
        """Counts and 1-based omitted indices, matching artifact file names."""
        return {
            "total": self.total,
            "complete": len(self.completed),
            "resumed": len(self.resumed),
            "omitted": [i + 1 for i in self.omitted],
        }
