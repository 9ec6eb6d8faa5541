"""Split a raw timestamped transcript into ordered segments."""

from __future__ import annotations

import logging
import re

from src.errors import SegmentationError
from src.transcript.models import Segment

logger = logging.getLogger(__name__)

# A unit starts at a line beginning with e.g. ``12.5s - 17.0s:``
MARKER_RE = re.compile(r"^(\d+\.\d)s\s*-\s*(\d+\.\d)s:", re.MULTILINE)


def segment_transcript(content: str) -> list[Segment]:
    """Split transcript text immediately before every timestamp marker.

    Text preceding the first marker is discarded. Units are not validated
    here: a marker with ``start >= end`` is passed through unchanged and
    left for the annotation pass to deal with.

    Args:
        content: Raw transcript text.

    Returns:
        Segments in transcript order.

    Raises:
        SegmentationError: If the transcript is empty or whitespace only.
    """
    if not content or not content.strip():
        raise SegmentationError("Transcript is empty")

    text = content.replace("\r\n", "\n").replace("\r", "\n")
    matches = list(MARKER_RE.finditer(text))

    if not matches:
        logger.warning("No timestamp markers found in transcript (%d chars)", len(text))
        return []

    preamble = text[: matches[0].start()].strip()
    if preamble:
        logger.warning("Discarding %d chars before the first timestamp marker", len(preamble))

    segments: list[Segment] = []
    for i, match in enumerate(matches):
        end_pos = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        segments.append(
            Segment(
                start=float(match.group(1)),
                end=float(match.group(2)),
                raw_text=text[match.start() : end_pos].rstrip(),
            )
        )

    return segments


def render_segments(segments: list[Segment]) -> str:
    """Join segments back into transcript text for a prompt."""
    return "\n".join(s.raw_text for s in segments)
