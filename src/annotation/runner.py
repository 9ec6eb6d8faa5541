"""Bounded-retry execution of a single batch or window.

One attempt is: call the completion service, persist the raw response,
extract the payload, parse and validate it, persist the validated payload.
Any :class:`~src.errors.RetryableError` in that chain consumes an attempt
and waits a fixed delay before the next one (never after the last).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.annotation.client import Message
from src.annotation.extractor import extract_json_payload
from src.annotation.store import UnitKey
from src.annotation.validation import parse_payload
from src.context import ExecutionContext
from src.errors import (
    BatchExhaustedError,
    RetryableError,
    UnitExhaustedError,
    WindowExhaustedError,
)
from src.pipeline_config import PipelineConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

EXHAUSTED_ERRORS: dict[str, type[UnitExhaustedError]] = {
    "batch": BatchExhaustedError,
    "window": WindowExhaustedError,
}


class UnitRunner(Generic[T]):
    """Runs call → extract → validate → persist for one unit with retries.

    ``validate`` turns parsed JSON into domain objects and raises
    :class:`~src.errors.MalformedPayloadError` when it cannot;
    ``serialize`` turns them back into the JSON stored on disk.
    """

    def __init__(
        self,
        context: ExecutionContext,
        config: PipelineConfig,
        validate: Callable[[object], T],
        serialize: Callable[[T], object],
    ) -> None:
        self.context = context
        self.config = config
        self.validate = validate
        self.serialize = serialize

    def load(self, key: UnitKey) -> T | None:
        """Return the stored, still-valid payload for *key*, if any."""
        data = self.context.store.read_payload(key)
        if data is None:
            return None
        return self.validate(data)

    def run(self, key: UnitKey, messages: list[Message]) -> T:
        """Process one unit, retrying retryable failures.

        Raises:
            UnitExhaustedError: The attempt budget ran out
                (:class:`BatchExhaustedError` or :class:`WindowExhaustedError`).
            PersistenceError: An artifact could not be written.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.context.max_attempts),
            wait=wait_fixed(self.context.retry_delay),
            retry=retry_if_exception_type(RetryableError),
            sleep=self.context.sleep,
            before_sleep=self._log_retry(key),
            reraise=True,
        )
        try:
            return retrying(self._attempt, key, messages)
        except RetryableError as e:
            exhausted = EXHAUSTED_ERRORS.get(key.kind, UnitExhaustedError)
            raise exhausted(key.index, self.context.max_attempts, e) from e

    def _attempt(self, key: UnitKey, messages: list[Message]) -> T:
        logger.info("%s: calling %s", key.label, self.context.model)
        content = self.context.client.complete(
            messages,
            model=self.context.model,
            temperature=self.context.temperature,
            max_tokens=self.context.max_tokens,
        )
        if self.config.persist_raw_response:
            self.context.store.write_raw(key, content)

        payload = extract_json_payload(content, self.config.extraction_strategy)
        result = self.validate(parse_payload(payload))
        self.context.store.write_payload(key, self.serialize(result))
        return result

    def _log_retry(self, key: UnitKey) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.0fs",
                key.label,
                state.attempt_number,
                self.context.max_attempts,
                error,
                self.context.retry_delay,
            )

        return before_sleep
