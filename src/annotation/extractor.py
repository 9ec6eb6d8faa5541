"""Recover a JSON payload from free-form completion text.

The completion service does not always follow formatting instructions, so
the payload is looked for in decreasing order of confidence:

1. the body of a fenced block labelled ``json``;
2. the body of any other fenced block;
3. the whole text with a leading/trailing fence marker stripped.

Nothing here checks that the result is valid JSON; callers parse it and
treat a parse failure as a malformed payload.
"""

from __future__ import annotations

import re

from src.pipeline_config import ExtractionStrategy

LABELED_FENCE_RE = re.compile(r"```json[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
# The optional info string (e.g. ``javascript``) on the opening line is not part of the body.
# Without a line break the body starts right after the fence (```[1]```).
GENERIC_FENCE_RE = re.compile(r"```(?:[^\n`]*\n)?(.*?)```", re.DOTALL)
LEADING_FENCE_RE = re.compile(r"^```(?:json)?[ \t]*\n?", re.IGNORECASE)
TRAILING_FENCE_RE = re.compile(r"\n?```$")


def strip_fences(text: str) -> str:
    """Strip a single leading and trailing fence marker, then trim."""
    text = text.strip()
    text = LEADING_FENCE_RE.sub("", text)
    text = TRAILING_FENCE_RE.sub("", text)
    return text.strip()


def extract_json_payload(
    content: str,
    strategy: ExtractionStrategy = ExtractionStrategy.LAYERED,
) -> str:
    """Return the part of *content* believed to be the JSON payload.

    Args:
        content: Raw model response text.
        strategy: ``layered`` tries fenced blocks before stripping,
            ``fence_strip`` only strips boundary fences, ``raw`` only trims.

    Returns:
        The trimmed candidate payload string.
    """
    if strategy is ExtractionStrategy.RAW:
        return content.strip()

    if strategy is ExtractionStrategy.LAYERED:
        labeled = LABELED_FENCE_RE.search(content)
        if labeled and labeled.group(1).strip():
            return labeled.group(1).strip()

        generic = GENERIC_FENCE_RE.search(content)
        if generic and generic.group(1).strip():
            return generic.group(1).strip()

    return strip_fences(content)
