"""Pipeline configuration: strategy enums and PipelineConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ExtractionStrategy(str, Enum):
    """How a structured payload is recovered from free-form model text."""

    LAYERED = "layered"
    FENCE_STRIP = "fence_strip"
    RAW = "raw"


class ProbabilityPolicy(str, Enum):
    """What to do with speaker probabilities that do not sum to one."""

    REJECT = "reject"
    NORMALIZE = "normalize"
    PASS_THROUGH = "pass_through"


class OverlapPolicy(str, Enum):
    """How sentences shared by adjacent windows are merged into the tree."""

    DEDUPLICATE = "deduplicate"
    KEEP = "keep"


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable pipeline variant, selected once at startup.

    Defaults persist raw responses, ask the model to drop noise sentences,
    use layered payload extraction, normalize speaker probabilities and
    deduplicate the overlap between hierarchy windows.
    """

    persist_raw_response: bool = True
    noise_filtering: bool = True
    extraction_strategy: ExtractionStrategy = ExtractionStrategy.LAYERED
    probability_policy: ProbabilityPolicy = ProbabilityPolicy.NORMALIZE
    overlap_policy: OverlapPolicy = OverlapPolicy.DEDUPLICATE
