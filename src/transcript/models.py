"""Data models for transcript segments and annotated sentences."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

_MARKER_SEPARATOR = ":"


@dataclass(frozen=True)
class Segment:
    """One timestamped unit of the raw transcript.

    ``raw_text`` is the unit exactly as it appears in the transcript,
    including its ``<start>s - <end>s:`` marker.
    """

    start: float
    end: float
    raw_text: str

    @property
    def text(self) -> str:
        """The unit body without its timestamp marker."""
        _, _, body = self.raw_text.partition(_MARKER_SEPARATOR)
        return body.strip()


@dataclass(frozen=True)
class SpeakerProbabilities:
    teacher: float
    student: float

    @property
    def total(self) -> float:
        return self.teacher + self.student


@dataclass(frozen=True)
class AnnotatedSentence:
    """A segment after correction and teacher/student labelling."""

    start: float
    end: float
    text: str
    speaker_probabilities: SpeakerProbabilities

    @property
    def key(self) -> tuple[float, float]:
        """Identity used to match a sentence across windows."""
        return (self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "text": self.text,
            "speaker_probabilities": {
                "teacher": self.speaker_probabilities.teacher,
                "student": self.speaker_probabilities.student,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnnotatedSentence:
        probs = data["speaker_probabilities"]
        return cls(
            start=float(data["start"]),
            end=float(data["end"]),
            text=data["text"],
            speaker_probabilities=SpeakerProbabilities(
                teacher=float(probs["teacher"]),
                student=float(probs["student"]),
            ),
        )
