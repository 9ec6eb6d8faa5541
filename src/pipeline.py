"""End-to-end pipeline: segment -> annotate -> merge -> window -> organise.

Entry point
-----------
Run as a module::

    python -m src.pipeline transcript.txt \\
        --artifact-dir batches \\
        --output-dir .

Running the same command again resumes: batches and windows whose payload
is already on disk are not sent to the completion service again.
Use ``--help`` for full argument documentation.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import ValidationError

from src.annotation.merger import merge_batches
from src.annotation.scheduler import BatchScheduler, plan_batches
from src.annotation.store import content_digest, dump_json
from src.config import Settings, get_settings
from src.context import ExecutionContext, build_context
from src.errors import AnnotationError
from src.hierarchy.models import TaskNode
from src.hierarchy.planner import plan_windows
from src.hierarchy.reconciler import HierarchicalReconciler
from src.pipeline_config import OverlapPolicy, PipelineConfig, ProbabilityPolicy
from src.transcript.models import AnnotatedSentence
from src.transcript.segmenter import segment_transcript

logger = logging.getLogger(__name__)

FLAT_OUTPUT = "output.json"
TASKS_OUTPUT = "output_tasks.json"


@dataclass
class PipelineResult:
    """Outputs of one run plus what was left out of them (0-based indices)."""

    sentences: list[AnnotatedSentence] = field(default_factory=list)
    tasks: list[TaskNode] = field(default_factory=list)
    omitted_batches: list[int] = field(default_factory=list)
    omitted_windows: list[int] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.omitted_batches and not self.omitted_windows


def run_pipeline(
    transcript: str,
    context: ExecutionContext,
    config: PipelineConfig | None = None,
    batch_size: int = 100,
    window_size: int = 300,
    overlap: int = 30,
    hierarchy: bool = True,
) -> PipelineResult:
    """Run both annotation passes over *transcript* and write the outputs.

    Args:
        transcript: Raw timestamped transcript text.
        context: Client, model settings and artifact store for this run.
        config: Pipeline variant; defaults to :class:`PipelineConfig()`.
        batch_size: Segments per first-pass batch.
        window_size: New sentences per hierarchy window.
        overlap: Context sentences repeated at the start of each window.
        hierarchy: If False, stop after writing the flat output.

    Returns:
        The flat sentences, the task tree and any omitted unit indices.

    Raises:
        SegmentationError: If the transcript is empty.
    """
    config = config or PipelineConfig()
    store = context.store

    # 1. Segment
    segments = segment_transcript(transcript)
    logger.info("Split transcript into %d segments", len(segments))

    # 2. First pass
    batches = plan_batches(segments, batch_size)
    batch_checkpoint = BatchScheduler(context, config).run(batches)

    # 3. Merge
    merged = merge_batches(store, batch_checkpoint, config.probability_policy)
    flat = merged.to_list()
    store.write_output(FLAT_OUTPUT, flat)

    result = PipelineResult(sentences=merged.sentences, omitted_batches=merged.omitted)
    summary: dict[str, object] = {"batches": batch_checkpoint.summary()}

    # 4. Second pass
    if hierarchy:
        windows = plan_windows(merged.sentences, window_size, overlap)
        logger.info("Planned %d windows over %d sentences", len(windows), len(merged.sentences))
        outcome = HierarchicalReconciler(context, config).run(
            windows, namespace=content_digest(dump_json(flat))
        )
        store.write_output(TASKS_OUTPUT, outcome.to_list())
        result.tasks = outcome.tasks
        result.omitted_windows = outcome.omitted
        if outcome.checkpoint is not None:
            summary["windows"] = outcome.checkpoint.summary()

    store.write_summary(summary)

    if result.complete:
        logger.info("All done: %d sentences, %d tasks", len(result.sentences), len(result.tasks))
    else:
        logger.warning(
            "Run finished with omissions: batches %s, windows %s (see run_summary.json)",
            [i + 1 for i in result.omitted_batches] or "none",
            [i + 1 for i in result.omitted_windows] or "none",
        )
    return result


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m src.pipeline",
        description=(
            "Turn a timestamped lesson transcript into corrected, speaker-scored "
            "sentences and a task/event hierarchy."
        ),
    )
    parser.add_argument("transcript", metavar="TRANSCRIPT", help="Path to the transcript text file.")
    parser.add_argument(
        "--artifact-dir",
        metavar="DIR",
        default=None,
        help="Directory for per-batch/window artifacts (default: ARTIFACT_DIR or 'batches').",
    )
    parser.add_argument(
        "--output-dir",
        metavar="DIR",
        default=None,
        help="Directory for output.json and output_tasks.json (default: OUTPUT_DIR or '.').",
    )
    parser.add_argument(
        "--flat-only",
        action="store_true",
        default=False,
        help="Stop after the first pass (no task/event hierarchy).",
    )
    parser.add_argument(
        "--keep-overlap",
        action="store_true",
        default=False,
        help="Concatenate windows without removing the sentences they share.",
    )
    parser.add_argument(
        "--no-noise-filtering",
        action="store_true",
        default=False,
        help="Ask the model to keep every segment instead of dropping noise.",
    )
    parser.add_argument(
        "--no-raw",
        action="store_true",
        default=False,
        help="Do not save raw model responses next to the payloads.",
    )
    parser.add_argument(
        "--probability-policy",
        choices=[p.value for p in ProbabilityPolicy],
        default=ProbabilityPolicy.NORMALIZE.value,
        help="How to handle teacher/student probabilities that do not sum to 1.",
    )
    return parser


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)

    try:
        settings = settings or get_settings()
    except ValidationError as exc:
        print(f"ERROR: invalid configuration: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        k: v
        for k, v in {"artifact_dir": args.artifact_dir, "output_dir": args.output_dir}.items()
        if v is not None
    }
    settings = settings.model_copy(update=overrides)

    config = PipelineConfig(
        persist_raw_response=not args.no_raw,
        noise_filtering=not args.no_noise_filtering,
        probability_policy=ProbabilityPolicy(args.probability_policy),
        overlap_policy=OverlapPolicy.KEEP if args.keep_overlap else OverlapPolicy.DEDUPLICATE,
    )

    try:
        transcript = Path(args.transcript).read_text(encoding="utf-8")
        context = build_context(settings)
        run_pipeline(
            transcript,
            context,
            config,
            batch_size=settings.batch_size,
            window_size=settings.window_size,
            overlap=settings.window_overlap,
            hierarchy=not args.flat_only,
        )
    except (OSError, ValueError, AnnotationError) as exc:
        logger.error("Pipeline failed: %s", exc)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
