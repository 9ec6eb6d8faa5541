"""Exception hierarchy for the annotation pipeline.

Errors are contained at batch/window granularity: only configuration
problems and :class:`SegmentationError` are allowed to stop a run.
"""

from __future__ import annotations


class AnnotationError(Exception):
    """Base class for every pipeline error."""


class SegmentationError(AnnotationError):
    """The transcript could not be split (empty input)."""


class RetryableError(AnnotationError):
    """A unit failure that is retried within the unit's attempt budget."""


class TransientCallError(RetryableError):
    """The completion service failed (network, rate limit, 5xx, ...)."""


class EmptyResponseError(RetryableError):
    """The completion service returned no text."""


class MalformedPayloadError(RetryableError):
    """The response did not yield a well-formed structured payload."""


class PersistenceError(AnnotationError):
    """An artifact could not be read or written. Fatal for the current unit only."""


class UnitExhaustedError(AnnotationError):
    """A unit spent its whole retry budget without producing a payload."""

    kind = "unit"

    def __init__(self, index: int, attempts: int, last_error: BaseException | None = None) -> None:
        self.index = index
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{self.kind} {index + 1} failed after {attempts} attempt(s): {last_error}"
        )


class BatchExhaustedError(UnitExhaustedError):
    kind = "batch"


class WindowExhaustedError(UnitExhaustedError):
    kind = "window"
