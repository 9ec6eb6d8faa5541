"""Structural validation of model payloads.

Model output is treated as untrusted wire data: it is parsed with Pydantic,
checked for ordering, and its speaker probabilities are handled according
to the configured :class:`~src.pipeline_config.ProbabilityPolicy`. Any
violation raises :class:`~src.errors.MalformedPayloadError`, which the unit
runner retries like any other transient failure.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from src.errors import MalformedPayloadError
from src.hierarchy.models import EventNode, TaskNode
from src.pipeline_config import ProbabilityPolicy
from src.transcript.models import AnnotatedSentence, SpeakerProbabilities

logger = logging.getLogger(__name__)

PROBABILITY_TOLERANCE = 1e-3


class SpeakerProbabilitiesPayload(BaseModel):
    # json.loads accepts NaN and Infinity; neither may reach the outputs.
    teacher: float = Field(allow_inf_nan=False)
    student: float = Field(allow_inf_nan=False)


class SentencePayload(BaseModel):
    start: float = Field(ge=0.0, allow_inf_nan=False)
    end: float = Field(ge=0.0, allow_inf_nan=False)
    text: str
    speaker_probabilities: SpeakerProbabilitiesPayload


class EventPayload(BaseModel):
    event_type: str
    summary: str = ""
    sentences: list[SentencePayload]


class TaskPayload(BaseModel):
    task_title: str
    events: list[EventPayload]


_SENTENCES = TypeAdapter(list[SentencePayload])
_TASKS = TypeAdapter(list[TaskPayload])


def parse_payload(text: str) -> Any:
    """Parse an extracted payload string as JSON."""
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"Payload is not valid JSON: {e}") from e


def _needs_attention(teacher: float, student: float) -> bool:
    in_range = 0.0 <= teacher <= 1.0 and 0.0 <= student <= 1.0
    return not in_range or not math.isclose(
        teacher + student, 1.0, abs_tol=PROBABILITY_TOLERANCE
    )


def normalize_probabilities(teacher: float, student: float) -> SpeakerProbabilities:
    """Clamp both values to [0, 1] and rescale them to sum to one.

    Teacher is rounded to four places and student is its complement, so
    the stored pair always sums to exactly one.
    """
    teacher = min(max(teacher, 0.0), 1.0)
    student = min(max(student, 0.0), 1.0)
    total = teacher + student
    if total == 0:
        return SpeakerProbabilities(teacher=0.5, student=0.5)
    teacher = round(teacher / total, 4)
    return SpeakerProbabilities(teacher=teacher, student=round(1.0 - teacher, 4))


def apply_probability_policy(
    sentence: SentencePayload, policy: ProbabilityPolicy
) -> SpeakerProbabilities:
    teacher = sentence.speaker_probabilities.teacher
    student = sentence.speaker_probabilities.student

    if not _needs_attention(teacher, student):
        return SpeakerProbabilities(teacher=teacher, student=student)

    if policy is ProbabilityPolicy.REJECT:
        raise MalformedPayloadError(
            f"Invalid speaker probabilities at {sentence.start}s: "
            f"teacher={teacher}, student={student}"
        )
    if policy is ProbabilityPolicy.NORMALIZE:
        return normalize_probabilities(teacher, student)

    logger.warning(
        "Keeping invalid speaker probabilities at %ss: teacher=%s, student=%s",
        sentence.start,
        teacher,
        student,
    )
    return SpeakerProbabilities(teacher=teacher, student=student)


def _to_sentence(payload: SentencePayload, policy: ProbabilityPolicy) -> AnnotatedSentence:
    if payload.start > payload.end:
        raise MalformedPayloadError(
            f"Sentence starts after it ends: {payload.start}s > {payload.end}s"
        )
    return AnnotatedSentence(
        start=payload.start,
        end=payload.end,
        text=payload.text,
        speaker_probabilities=apply_probability_policy(payload, policy),
    )


def check_order(sentences: Iterable[AnnotatedSentence]) -> None:
    """Raise if sentence start times ever decrease."""
    previous: AnnotatedSentence | None = None
    for sentence in sentences:
        if previous is not None and sentence.start < previous.start:
            raise MalformedPayloadError(
                f"Sentences out of order: {sentence.start}s follows {previous.start}s"
            )
        previous = sentence


def validate_sentences(data: Any, policy: ProbabilityPolicy) -> list[AnnotatedSentence]:
    """Validate a first-pass payload (a JSON array of annotated sentences)."""
    try:
        payloads = _SENTENCES.validate_python(data)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid sentence payload: {e}") from e

    sentences = [_to_sentence(p, policy) for p in payloads]
    check_order(sentences)
    return sentences


def validate_tasks(data: Any, policy: ProbabilityPolicy) -> list[TaskNode]:
    """Validate a hierarchy payload (a JSON array of tasks)."""
    try:
        payloads = _TASKS.validate_python(data)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid task payload: {e}") from e

    tasks = [
        TaskNode(
            title=task.task_title,
            events=tuple(
                EventNode(
                    event_type=event.event_type,
                    summary=event.summary,
                    sentences=tuple(_to_sentence(s, policy) for s in event.sentences),
                )
                for event in task.events
            ),
        )
        for task in payloads
    ]
    check_order(s for task in tasks for event in task.events for s in event.sentences)
    return tasks
