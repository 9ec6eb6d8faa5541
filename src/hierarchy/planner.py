"""Overlapping window planning for the hierarchical pass."""

from __future__ import annotations

import math
from collections.abc import Sequence

from src.hierarchy.models import Window
from src.transcript.models import AnnotatedSentence


def plan_windows(
    sentences: Sequence[AnnotatedSentence],
    window_size: int = 300,
    overlap: int = 30,
) -> list[Window]:
    """Cut the flat sentence sequence into overlapping windows.

    Window ``k`` covers ``[max(0, k*W - O), min(N, (k+1)*W))``: every window
    after the first is prefixed with the last *overlap* sentences of the
    previous one so a task or event spanning the boundary is still visible
    as a whole. The overlap is sent to the model as-is; duplicates are
    resolved after the model responds.

    Args:
        sentences: Flat annotated sentences in order.
        window_size: Number of new sentences per window (``W``).
        overlap: Number of leading context sentences (``O``).

    Returns:
        Windows in index order; empty if there are no sentences.
    """
    if window_size <= 0:
        raise ValueError(f"window_size must be positive, got {window_size}")
    if not 0 <= overlap < window_size:
        raise ValueError(
            f"overlap must satisfy 0 <= overlap < window_size, got {overlap} (window_size={window_size})"
        )

    total = len(sentences)
    windows: list[Window] = []
    for k in range(math.ceil(total / window_size)):
        start = max(0, k * window_size - overlap)
        end = min(total, (k + 1) * window_size)
        windows.append(
            Window(
                index=k,
                start=start,
                end=end,
                overlap=k * window_size - start,
                sentences=tuple(sentences[start:end]),
            )
        )
    return windows
