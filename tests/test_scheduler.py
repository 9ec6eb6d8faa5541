"""Tests for batch planning, bounded retry, resume and merge."""

from __future__ import annotations

import json
from collections.abc import Callable

import pytest
from conftest import RecordingSleep, ScriptedClient, fenced, sentence

from src.annotation.checkpoint import Checkpoint, UnitStatus
from src.annotation.merger import merge_batches
from src.annotation.scheduler import Batch, BatchScheduler, plan_batches
from src.annotation.store import ArtifactStore, UnitKey
from src.context import ExecutionContext
from src.errors import EmptyResponseError, PersistenceError, TransientCallError
from src.pipeline_config import PipelineConfig, ProbabilityPolicy
from src.transcript.models import Segment


def _segments(n: int) -> list[Segment]:
    return [Segment(float(i), float(i + 1), f"{i}.0s - {i + 1}.0s: s{i}") for i in range(n)]


def _payload(*starts: int) -> str:
    return fenced([sentence(float(s), float(s + 1), f"s{s}") for s in starts])


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


class TestPlanBatches:
    def test_ceil_division(self) -> None:
        batches = plan_batches(_segments(250), batch_size=100)
        assert [len(b.segments) for b in batches] == [100, 100, 50]
        assert [b.index for b in batches] == [0, 1, 2]

    def test_contiguous_and_disjoint(self) -> None:
        segments = _segments(7)
        batches = plan_batches(segments, batch_size=3)
        flattened = [s for b in batches for s in b.segments]
        assert flattened == segments

    def test_empty(self) -> None:
        assert plan_batches([], batch_size=10) == []

    @pytest.mark.parametrize("size", [0, -1])
    def test_invalid_size(self, size: int) -> None:
        with pytest.raises(ValueError):
            plan_batches(_segments(3), batch_size=size)


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestRetry:
    def test_retry_then_succeed(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        sleep: RecordingSleep,
    ) -> None:
        client = ScriptedClient(
            [TransientCallError("503"), "Sorry, I cannot comply.", _payload(0, 1)]
        )
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(2), 10))

        assert checkpoint.status(0) is UnitStatus.COMPLETE
        assert len(client.calls) == 3
        assert sleep.calls.count(5.0) == 2
        assert sleep.calls[-1] == 1.0  # pacing after the batch
        assert store.payload_path(UnitKey("batch", 0)).is_file()
        assert len(store.read_payload(UnitKey("batch", 0))) == 2

    def test_exhaustion_continues_with_next_batch(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        sleep: RecordingSleep,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        client = ScriptedClient(
            [
                TransientCallError("down"),
                EmptyResponseError("empty"),
                "[not json",
                _payload(2, 3),
            ]
        )
        with caplog.at_level("WARNING"):
            checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(4), 2))

        assert checkpoint.status(0) is UnitStatus.EXHAUSTED
        assert checkpoint.status(1) is UnitStatus.COMPLETE
        assert checkpoint.omitted == [0]
        assert not store.has_payload(UnitKey("batch", 0))
        # two backoffs for batch 1 (never after the last attempt), one pacing delay per batch
        assert sleep.calls == [5.0, 5.0, 1.0, 1.0]
        assert "batch 1" in caplog.text
        assert "omitted" in caplog.text

    def test_raw_response_persisted_even_when_unparseable(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        client = ScriptedClient(["no json here", "still none", "nope"])
        BatchScheduler(make_context(client)).run(plan_batches(_segments(1), 1))

        key = UnitKey("batch", 0)
        assert store.raw_path(key).read_text(encoding="utf-8") == "nope"
        assert not store.has_payload(key)

    def test_raw_response_not_persisted_when_disabled(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        client = ScriptedClient([_payload(0)])
        config = PipelineConfig(persist_raw_response=False)
        BatchScheduler(make_context(client), config).run(plan_batches(_segments(1), 1))

        key = UnitKey("batch", 0)
        assert store.has_payload(key)
        assert not store.raw_path(key).exists()

    def test_probability_reject_policy_retries(
        self, make_context: Callable[..., ExecutionContext], sleep: RecordingSleep
    ) -> None:
        bad = fenced(
            [{"start": 0.0, "end": 1.0, "text": "x", "speaker_probabilities": {"teacher": 0.7, "student": 0.4}}]
        )
        client = ScriptedClient([bad, _payload(0)])
        config = PipelineConfig(probability_policy=ProbabilityPolicy.REJECT)
        checkpoint = BatchScheduler(make_context(client), config).run(plan_batches(_segments(1), 1))

        assert checkpoint.status(0) is UnitStatus.COMPLETE
        assert len(client.calls) == 2
        assert sleep.calls.count(5.0) == 1

    def test_nan_probability_retried(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        nan = (
            '```json\n[{"start": 0.0, "end": 1.0, "text": "x", '
            '"speaker_probabilities": {"teacher": NaN, "student": 0.5}}]\n```'
        )
        client = ScriptedClient([nan, _payload(0)])
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(1), 1))

        assert checkpoint.status(0) is UnitStatus.COMPLETE
        assert len(client.calls) == 2
        stored = store.payload_path(UnitKey("batch", 0)).read_text(encoding="utf-8")
        assert "NaN" not in stored

    def test_persistence_error_skips_unit_only(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        client = ScriptedClient([_payload(0), _payload(1)])
        original = store.write_payload
        calls = {"n": 0}

        def flaky_write(key: UnitKey, data: object):  # type: ignore[no-untyped-def]
            calls["n"] += 1
            if calls["n"] == 1:
                raise PersistenceError("disk full")
            return original(key, data)

        store.write_payload = flaky_write  # type: ignore[method-assign]
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(2), 1))

        assert checkpoint.status(0) is UnitStatus.EXHAUSTED
        assert checkpoint.status(1) is UnitStatus.COMPLETE
        assert len(client.calls) == 2  # persistence failures are not retried

    def test_prompt_contains_batch_text_and_pinned_temperature(
        self, make_context: Callable[..., ExecutionContext]
    ) -> None:
        client = ScriptedClient([_payload(0, 1)])
        BatchScheduler(make_context(client)).run(plan_batches(_segments(2), 5))

        call = client.calls[0]
        prompt = call["messages"][0]["content"]
        assert call["temperature"] == 0.0
        assert call["messages"][0]["role"] == "user"
        assert "0.0s - 1.0s: s0\n1.0s - 2.0s: s1" in prompt
        assert "Drop noise" in prompt

    def test_noise_filtering_off_changes_prompt(
        self, make_context: Callable[..., ExecutionContext]
    ) -> None:
        client = ScriptedClient([_payload(0)])
        config = PipelineConfig(noise_filtering=False)
        BatchScheduler(make_context(client), config).run(plan_batches(_segments(1), 5))

        prompt = client.calls[0]["messages"][0]["content"]
        assert "Drop noise" not in prompt
        assert "even when it is only noise" in prompt


# ---------------------------------------------------------------------------
# Resume
# ---------------------------------------------------------------------------


class TestResume:
    def test_completed_batches_not_resent(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        sleep: RecordingSleep,
    ) -> None:
        batches = plan_batches(_segments(4), 2)
        first = ScriptedClient([_payload(0, 1), _payload(2, 3)])
        BatchScheduler(make_context(first)).run(batches)

        sleep.calls.clear()
        second = ScriptedClient()
        checkpoint = BatchScheduler(make_context(second)).run(batches)

        assert second.calls == []
        assert sleep.calls == []
        assert checkpoint.resumed == {0, 1}
        assert checkpoint.finished

    def test_only_missing_batch_is_processed(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        batches = plan_batches(_segments(4), 2)
        store.write_payload(UnitKey("batch", 0), json.loads(_payload(0, 1)[8:-4]))

        client = ScriptedClient([_payload(2, 3)])
        checkpoint = BatchScheduler(make_context(client)).run(batches)

        assert len(client.calls) == 1
        assert "2.0s - 3.0s" in client.calls[0]["messages"][0]["content"]
        assert checkpoint.resumed == {0}

    def test_payload_from_other_batch_size_warns(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        # written by a run with batch_size=4, resumed with batch_size=2
        store.write_payload(UnitKey("batch", 1), json.loads(_payload(4, 5, 6, 7)[8:-4]))
        client = ScriptedClient([_payload(0, 1)])

        with caplog.at_level("WARNING"):
            checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(4), 2))

        assert checkpoint.resumed == {1}
        assert "batch 2: 4 stored sentence(s) fall outside" in caplog.text
        assert "different batch size" in caplog.text

    def test_matching_payload_does_not_warn(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        store.write_payload(UnitKey("batch", 0), json.loads(_payload(0, 1)[8:-4]))

        with caplog.at_level("WARNING"):
            BatchScheduler(make_context(ScriptedClient())).run(plan_batches(_segments(2), 2))

        assert "fall outside" not in caplog.text

    def test_corrupt_payload_is_reprocessed(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        path = store.payload_path(UnitKey("batch", 0))
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("[{broken", encoding="utf-8")

        client = ScriptedClient([_payload(0)])
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(1), 1))

        assert len(client.calls) == 1
        assert checkpoint.status(0) is UnitStatus.COMPLETE
        assert checkpoint.resumed == set()


# ---------------------------------------------------------------------------
# Checkpoint
# ---------------------------------------------------------------------------


class TestCheckpoint:
    def test_starts_pending(self) -> None:
        checkpoint = Checkpoint(kind="batch", total=3)
        assert all(checkpoint.status(i) is UnitStatus.PENDING for i in range(3))
        assert not checkpoint.finished

    def test_transitions_once(self) -> None:
        checkpoint = Checkpoint(kind="batch", total=2)
        checkpoint.mark_complete(0)
        with pytest.raises(ValueError):
            checkpoint.mark_exhausted(0)

    def test_summary_uses_one_based_indices(self) -> None:
        checkpoint = Checkpoint(kind="batch", total=3)
        checkpoint.mark_complete(0, resumed=True)
        checkpoint.mark_exhausted(1)
        checkpoint.mark_complete(2)
        assert checkpoint.cursor == 3
        assert checkpoint.summary() == {"total": 3, "complete": 2, "resumed": 1, "omitted": [2]}


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMergeBatches:
    def test_concatenates_in_index_order(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        client = ScriptedClient([_payload(0, 1), _payload(2), _payload(4, 5)])
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(6), 2))

        result = merge_batches(store, checkpoint)
        starts = [s.start for s in result.sentences]
        assert starts == [0.0, 1.0, 2.0, 4.0, 5.0]
        assert all(a <= b for a, b in zip(starts, starts[1:], strict=False))
        assert result.omitted == []

    def test_gap_logged_not_raised(
        self,
        make_context: Callable[..., ExecutionContext],
        store: ArtifactStore,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        client = ScriptedClient(["x", "y", "z", _payload(2, 3)])
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(4), 2))

        with caplog.at_level("WARNING"):
            result = merge_batches(store, checkpoint)
        assert [s.start for s in result.sentences] == [2.0, 3.0]
        assert result.omitted == [0]
        assert "batches 1 are missing" in caplog.text

    def test_merge_is_repeatable(
        self, make_context: Callable[..., ExecutionContext], store: ArtifactStore
    ) -> None:
        client = ScriptedClient([_payload(0, 1), _payload(2, 3)])
        checkpoint = BatchScheduler(make_context(client)).run(plan_batches(_segments(4), 2))

        assert merge_batches(store, checkpoint).to_list() == merge_batches(store, checkpoint).to_list()

    def test_batch_identity(self) -> None:
        batch = Batch(index=4, segments=())
        assert batch.key == UnitKey("batch", 4)
        assert batch.key.filename == "batch_5.json"
