"""First annotation pass: fixed-size batches over the transcript segments.

Each batch is sent to the completion service once per attempt, at most
``max_attempts`` times. A batch whose validated payload already exists on
disk is never sent again, which makes the whole pass resumable after a
crash or interrupt. A batch that runs out of attempts is logged and
skipped; the pass always continues with the next batch.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from functools import partial

from src.annotation.checkpoint import Checkpoint
from src.annotation.prompts import build_annotation_messages
from src.annotation.runner import UnitRunner
from src.annotation.store import UnitKey
from src.annotation.validation import validate_sentences
from src.context import ExecutionContext
from src.errors import MalformedPayloadError, PersistenceError, UnitExhaustedError
from src.pipeline_config import PipelineConfig
from src.transcript.models import AnnotatedSentence, Segment
from src.transcript.segmenter import render_segments

logger = logging.getLogger(__name__)

BATCH_KIND = "batch"


@dataclass(frozen=True)
class Batch:
    """A contiguous, disjoint range of segments. Identity is ``index``."""

    index: int
    segments: tuple[Segment, ...]

    @property
    def key(self) -> UnitKey:
        return UnitKey(BATCH_KIND, self.index)


def plan_batches(segments: Sequence[Segment], batch_size: int = 100) -> list[Batch]:
    """Partition *segments* into ``ceil(N / batch_size)`` ordered batches."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    return [
        Batch(index=i, segments=tuple(segments[i * batch_size : (i + 1) * batch_size]))
        for i in range(math.ceil(len(segments) / batch_size))
    ]


def serialize_sentences(sentences: list[AnnotatedSentence]) -> list[dict]:
    return [s.to_dict() for s in sentences]


class BatchScheduler:
    """Drives the first pass over all batches, strictly in index order."""

    def __init__(self, context: ExecutionContext, config: PipelineConfig | None = None) -> None:
        self.context = context
        self.config = config or PipelineConfig()
        self.runner: UnitRunner[list[AnnotatedSentence]] = UnitRunner(
            context,
            self.config,
            validate=partial(validate_sentences, policy=self.config.probability_policy),
            serialize=serialize_sentences,
        )

    def run(self, batches: Sequence[Batch]) -> Checkpoint:
        """Process every batch and return the pass checkpoint."""
        checkpoint = Checkpoint(kind=BATCH_KIND, total=len(batches))
        logger.info("Total batches: %d", len(batches))

        for batch in batches:
            if self._resume(batch, checkpoint):
                continue

            self._process(batch, checkpoint)
            # Pacing between service calls, independent of the retry backoff.
            self.context.sleep(self.context.batch_delay)

        if checkpoint.omitted:
            logger.warning(
                "First pass incomplete: batches %s were omitted",
                ", ".join(str(i + 1) for i in checkpoint.omitted),
            )
        else:
            logger.info("First pass complete: %d batches", checkpoint.total)
        return checkpoint

    def _resume(self, batch: Batch, checkpoint: Checkpoint) -> bool:
        try:
            stored = self.runner.load(batch.key)
        except (MalformedPayloadError, PersistenceError) as e:
            logger.warning("%s: stored payload unusable (%s), reprocessing", batch.key.label, e)
            return False
        if stored is None:
            return False

        logger.info("%s already exists, skipping", batch.key.label)
        self._check_coverage(batch, stored)
        checkpoint.mark_complete(batch.index, resumed=True)
        return True

    def _check_coverage(self, batch: Batch, stored: list[AnnotatedSentence]) -> None:
        """Warn when a stored payload lies outside the batch's time range.

        Artifacts are keyed by index only, so a payload written with a
        different batch size covers other segments but is still reused.
        """
        if not batch.segments or not stored:
            return
        low = min(s.start for s in batch.segments)
        high = max(max(s.start, s.end) for s in batch.segments)
        outside = [s for s in stored if s.start < low or s.end > high]
        if outside:
            logger.warning(
                "%s: %d stored sentence(s) fall outside %ss ~ %ss; "
                "the artifact may come from a run with a different batch size",
                batch.key.label,
                len(outside),
                low,
                high,
            )

    def _process(self, batch: Batch, checkpoint: Checkpoint) -> None:
        messages = build_annotation_messages(
            render_segments(list(batch.segments)),
            count=len(batch.segments),
            noise_filtering=self.config.noise_filtering,
        )
        try:
            sentences = self.runner.run(batch.key, messages)
        except UnitExhaustedError as e:
            logger.error("%s: max retries reached, skipping (%s)", batch.key.label, e.last_error)
            checkpoint.mark_exhausted(batch.index)
        except PersistenceError:
            logger.exception("%s: could not persist artifacts, skipping", batch.key.label)
            checkpoint.mark_exhausted(batch.index)
        else:
            logger.info("%s completed with %d sentences", batch.key.label, len(sentences))
            checkpoint.mark_complete(batch.index)
