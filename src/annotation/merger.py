"""Merge completed batch payloads into one flat sentence sequence."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from src.annotation.checkpoint import Checkpoint, UnitStatus
from src.annotation.scheduler import BATCH_KIND
from src.annotation.store import ArtifactStore, UnitKey
from src.annotation.validation import validate_sentences
from src.errors import MalformedPayloadError, PersistenceError
from src.pipeline_config import ProbabilityPolicy
from src.transcript.models import AnnotatedSentence

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    sentences: list[AnnotatedSentence] = field(default_factory=list)
    omitted: list[int] = field(default_factory=list)

    def to_list(self) -> list[dict]:
        return [s.to_dict() for s in self.sentences]


def merge_batches(
    store: ArtifactStore,
    checkpoint: Checkpoint,
    policy: ProbabilityPolicy = ProbabilityPolicy.NORMALIZE,
) -> MergeResult:
    """Concatenate batch payloads in ascending index order.

    Payloads are always read back from the store, so freshly processed and
    resumed batches go through the same path and the merged output is
    byte-identical across runs. Exhausted or unreadable batches are skipped
    with a warning and reported in :attr:`MergeResult.omitted` (0-based).

    Args:
        store: Artifact store holding the batch payloads.
        checkpoint: First-pass checkpoint with per-batch statuses.
        policy: Probability policy used when re-validating stored payloads.

    Returns:
        The flat sentence sequence and the omitted batch indices.
    """
    result = MergeResult()

    for index in range(checkpoint.total):
        key = UnitKey(BATCH_KIND, index)
        if checkpoint.status(index) is not UnitStatus.COMPLETE:
            logger.warning("%s was not completed, skipping in merge", key.label)
            result.omitted.append(index)
            continue

        try:
            data = store.read_payload(key)
            if data is None:
                raise PersistenceError(f"{store.payload_path(key)} is missing")
            sentences = validate_sentences(data, policy)
        except (MalformedPayloadError, PersistenceError) as e:
            logger.error("Failed to load %s, skipping in merge: %s", key.label, e)
            result.omitted.append(index)
            continue

        if result.sentences and sentences and sentences[0].start < result.sentences[-1].start:
            logger.warning(
                "%s starts at %ss, before the previous sentence at %ss",
                key.label,
                sentences[0].start,
                result.sentences[-1].start,
            )
        result.sentences.extend(sentences)

    if result.omitted:
        logger.warning(
            "Merged %d sentences; batches %s are missing from the output",
            len(result.sentences),
            ", ".join(str(i + 1) for i in result.omitted),
        )
    else:
        logger.info("Merged %d sentences from %d batches", len(result.sentences), checkpoint.total)
    return result
