"""Second pass: group each window into tasks/events and merge the windows.

Windows go through the same retry/extract/persist runner as first-pass
batches. Because adjacent windows share their overlap sentences, the
per-window trees are reconciled afterwards according to the configured
:class:`~src.pipeline_config.OverlapPolicy`.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import partial

from src.annotation.checkpoint import Checkpoint
from src.annotation.runner import UnitRunner
from src.annotation.store import UnitKey
from src.annotation.validation import validate_tasks
from src.context import ExecutionContext
from src.errors import MalformedPayloadError, PersistenceError, UnitExhaustedError
from src.hierarchy.models import EventNode, TaskNode, Window
from src.hierarchy.prompts import build_hierarchy_messages
from src.pipeline_config import OverlapPolicy, PipelineConfig
from src.transcript.models import AnnotatedSentence

logger = logging.getLogger(__name__)

WINDOW_KIND = "window"


def serialize_tasks(tasks: list[TaskNode]) -> list[dict]:
    return [t.to_dict() for t in tasks]


@dataclass
class HierarchyResult:
    tasks: list[TaskNode] = field(default_factory=list)
    checkpoint: Checkpoint | None = None

    @property
    def omitted(self) -> list[int]:
        return self.checkpoint.omitted if self.checkpoint else []

    def to_list(self) -> list[dict]:
        return serialize_tasks(self.tasks)


class HierarchicalReconciler:
    """Runs the hierarchy pass over windows and reconciles the results."""

    def __init__(self, context: ExecutionContext, config: PipelineConfig | None = None) -> None:
        self.context = context
        self.config = config or PipelineConfig()
        self.runner: UnitRunner[list[TaskNode]] = UnitRunner(
            context,
            self.config,
            validate=partial(validate_tasks, policy=self.config.probability_policy),
            serialize=serialize_tasks,
        )

    def run(self, windows: Sequence[Window], namespace: str = "") -> HierarchyResult:
        """Process every window in order, then merge them into one tree.

        Args:
            windows: Windows from :func:`~src.hierarchy.planner.plan_windows`.
            namespace: Artifact namespace; a digest of the flat input so that
                window artifacts are only reused for the same sentences.
        """
        checkpoint = Checkpoint(kind=WINDOW_KIND, total=len(windows))
        outputs: dict[int, list[TaskNode]] = {}

        for window in windows:
            key = UnitKey(WINDOW_KIND, window.index, namespace)
            logger.info(
                "Window %d/%d: sentences %d ~ %d",
                window.index + 1,
                len(windows),
                window.start,
                window.end,
            )

            stored = self._resume(key)
            if stored is not None:
                logger.info("%s already exists, skipping", key.label)
                outputs[window.index] = stored
                checkpoint.mark_complete(window.index, resumed=True)
                continue

            try:
                outputs[window.index] = self.runner.run(key, build_hierarchy_messages(window))
            except UnitExhaustedError as e:
                logger.error("%s: max retries reached, skipping (%s)", key.label, e.last_error)
                checkpoint.mark_exhausted(window.index)
            except PersistenceError:
                logger.exception("%s: could not persist artifacts, skipping", key.label)
                checkpoint.mark_exhausted(window.index)
            else:
                logger.info("%s saved", key.label)
                checkpoint.mark_complete(window.index)

            self.context.sleep(self.context.batch_delay)

        if checkpoint.omitted:
            logger.warning(
                "Hierarchy pass incomplete: windows %s were omitted",
                ", ".join(str(i + 1) for i in checkpoint.omitted),
            )

        tasks = reconcile(windows, outputs, self.config.overlap_policy)
        return HierarchyResult(tasks=tasks, checkpoint=checkpoint)

    def _resume(self, key: UnitKey) -> list[TaskNode] | None:
        try:
            return self.runner.load(key)
        except (MalformedPayloadError, PersistenceError) as e:
            logger.warning("%s: stored payload unusable (%s), reprocessing", key.label, e)
            return None


def _resolve(tasks: list[TaskNode], window: Window) -> tuple[list[TaskNode], list[int | None]]:
    """Map model-echoed sentences onto the window's own sentences.

    Returns the rewritten tasks and, in tree order, the global position of
    every sentence (None for sentences the window does not contain).
    Several window sentences may share a ``(start, end)`` key; each is
    used once, exact copies first, otherwise in window order.
    """
    pending: dict[tuple[float, float], deque[int]] = defaultdict(deque)
    for offset, s in enumerate(window.sentences):
        pending[s.key].append(offset)

    positions: list[int | None] = []

    def pick(sentence: AnnotatedSentence) -> AnnotatedSentence:
        queue = pending.get(sentence.key)
        if not queue:
            positions.append(None)
            return sentence
        offset = next((o for o in queue if window.sentences[o] == sentence), queue[0])
        queue.remove(offset)
        positions.append(window.start + offset)
        return window.sentences[offset]

    result = [
        TaskNode(
            title=task.title,
            events=tuple(
                EventNode(e.event_type, e.summary, tuple(pick(s) for s in e.sentences))
                for e in task.events
            ),
        )
        for task in tasks
    ]
    unknown = positions.count(None)
    if unknown:
        logger.warning(
            "Window %d: %d sentence(s) not found in the window input", window.index + 1, unknown
        )
    return result, positions


def canonicalize(tasks: list[TaskNode], window: Window) -> list[TaskNode]:
    """Swap model-echoed sentences for the window's own copies.

    Sentences are matched by ``(start, end)``; ones the window does not
    contain are kept as returned and reported.
    """
    return _resolve(tasks, window)[0]


def _drop_sentences(
    tasks: list[TaskNode], positions: list[int | None], drop: set[int]
) -> tuple[list[TaskNode], list[int | None]]:
    placed = iter(positions)
    result: list[TaskNode] = []
    kept_positions: list[int | None] = []
    for task in tasks:
        events = []
        for event in task.events:
            kept = []
            for s in event.sentences:
                position = next(placed)
                if position not in drop:
                    kept.append(s)
                    kept_positions.append(position)
            if kept:
                events.append(EventNode(event.event_type, event.summary, tuple(kept)))
        if events:
            result.append(TaskNode(task.title, tuple(events)))
    return result, kept_positions


def _continue_last(tree: list[TaskNode], task: TaskNode) -> None:
    """Fold *task* into the last task of *tree* (same title)."""
    last = tree[-1]
    events = list(task.events)
    head_events = last.events
    if head_events and events and events[0].event_type == head_events[-1].event_type:
        tail = head_events[-1]
        joined = EventNode(tail.event_type, tail.summary, tail.sentences + events.pop(0).sentences)
        head_events = head_events[:-1] + (joined,)
    tree[-1] = TaskNode(last.title, head_events + tuple(events))


def reconcile(
    windows: Sequence[Window],
    outputs: dict[int, list[TaskNode]],
    policy: OverlapPolicy = OverlapPolicy.DEDUPLICATE,
) -> list[TaskNode]:
    """Concatenate per-window trees in window order.

    Sentences are tracked by their position in the flat sequence, so two
    sentences sharing a time range stay distinct. With ``keep`` the trees
    are simply concatenated and the number of repeated overlap sentences
    is logged. With ``deduplicate`` a sentence from a window's leading
    overlap that was already emitted is dropped, empty events/tasks are
    removed, and a window whose first task (or event) continues the
    previous one under the same title (or type) is folded into it.
    """
    tree: list[TaskNode] = []
    emitted: set[int] = set()
    duplicated = 0

    for window in windows:
        if window.index not in outputs:
            continue

        tasks, positions = _resolve(outputs[window.index], window)
        repeated = set(window.overlap_positions) & emitted

        if policy is OverlapPolicy.DEDUPLICATE:
            tasks, positions = _drop_sentences(tasks, positions, repeated)
            if tree and tasks and tasks[0].title == tree[-1].title:
                _continue_last(tree, tasks.pop(0))
        else:
            duplicated += sum(1 for p in positions if p in repeated)

        tree.extend(tasks)
        emitted.update(p for p in positions if p is not None)

    if duplicated:
        logger.warning(
            "Overlap kept: %d sentence(s) appear in more than one task/event", duplicated
        )
    return tree
