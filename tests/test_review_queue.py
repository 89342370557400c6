"""Tests for the review queue — proves escalations follow the state machine
and human decisions are applied exactly once.

Covers:
- Escalation creation (one per answer, unknown answer, empty reason)
- Newest-first paging with has_more and a capped limit
- Resolution: verdict override, single human_review event, invalid leaves
  the answer alone, terminal flags and lost races raise Conflict
"""

import pytest
from pathlib import Path

from crowdcheck.errors import Conflict, InvalidInput, NotFound
from crowdcheck.models.answer import Question, QuestionType, VerdictSource
from crowdcheck.models.review import FlagStatus
from crowdcheck.models.validation import SignalKind
from crowdcheck.persistence.store import PipelineStore
from crowdcheck.policy.resolver import PolicyResolver
from crowdcheck.review.queue import ReviewQueue


CONFIG_DIR = Path(__file__).resolve().parents[1] / "src" / "crowdcheck" / "policy"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def store() -> PipelineStore:
    s = PipelineStore.in_memory()
    s.add_question(Question("q1", "Describe the market", QuestionType.OPEN_TEXT))
    s.add_contributor("c1", 50.0)
    for i in range(1, 4):
        s.add_answer(f"a{i}", "q1", "c1", f"answer number {i}")
    return s


@pytest.fixture
def queue(resolver: PolicyResolver, store: PipelineStore) -> ReviewQueue:
    return ReviewQueue(resolver, store)


# ---------------------------------------------------------------------------
# Escalate
# ---------------------------------------------------------------------------

class TestEscalate:
    def test_creates_pending_flag(self, queue: ReviewQueue) -> None:
        flag = queue.escalate("a1", "Looks copied")
        assert flag.status == FlagStatus.PENDING
        assert flag.answer_id == "a1"
        assert flag.reason == "Looks copied"
        assert not flag.is_terminal

    def test_second_flag_for_same_answer_conflicts(self, queue: ReviewQueue) -> None:
        queue.escalate("a1", "first")
        with pytest.raises(Conflict):
            queue.escalate("a1", "second")

    def test_unknown_answer(self, queue: ReviewQueue) -> None:
        with pytest.raises(NotFound):
            queue.escalate("nope", "reason")

    def test_empty_reason(self, queue: ReviewQueue) -> None:
        with pytest.raises(InvalidInput):
            queue.escalate("a1", "   ")


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------

class TestList:
    def test_newest_first_with_has_more(self, queue: ReviewQueue) -> None:
        for answer_id in ("a1", "a2", "a3"):
            queue.escalate(answer_id, "check")

        first = queue.list(limit=2)
        assert [f.answer_id for f in first.items] == ["a3", "a2"]
        assert first.has_more is True

        second = queue.list(limit=2, offset=2)
        assert [f.answer_id for f in second.items] == ["a1"]
        assert second.has_more is False

    def test_default_and_capped_limit(self, queue: ReviewQueue) -> None:
        assert queue.list().limit == 50
        assert queue.list(limit=10_000).limit == 200

    def test_filters_by_status(self, queue: ReviewQueue) -> None:
        flag = queue.escalate("a1", "check")
        queue.escalate("a2", "check")
        queue.resolve(flag.flag_id, "invalid", "r1")

        assert [f.answer_id for f in queue.list().items] == ["a2"]
        assert [f.answer_id for f in queue.list(status="invalid").items] == ["a1"]

    def test_bad_arguments(self, queue: ReviewQueue) -> None:
        with pytest.raises(InvalidInput):
            queue.list(status="archived")
        with pytest.raises(InvalidInput):
            queue.list(limit=0)
        with pytest.raises(InvalidInput):
            queue.list(offset=-1)


# ---------------------------------------------------------------------------
# Resolve
# ---------------------------------------------------------------------------

class TestResolve:
    def test_resolved_overrides_verdict(self, queue: ReviewQueue, store: PipelineStore) -> None:
        flag = queue.escalate("a1", "check")
        updated, answer = queue.resolve(
            flag.flag_id, "resolved", "r1", correct=True, notes="verified on site",
        )

        assert updated.status == FlagStatus.RESOLVED
        assert updated.resolved_by == "r1"
        assert updated.resolved_at is not None
        assert updated.resolution_notes == "verified on site"

        assert answer.is_valid is True
        assert answer.confidence_score == 100.0
        assert answer.verdict_source == VerdictSource.HUMAN_REVIEW

        events = store.list_validation_events("a1")
        human = [e for e in events if e.signal_type == SignalKind.HUMAN_REVIEW]
        assert len(human) == 1
        assert human[0].confidence_score == 100.0
        assert human[0].reviewer_id == "r1"

    def test_resolved_incorrect(self, queue: ReviewQueue) -> None:
        flag = queue.escalate("a1", "check")
        _, answer = queue.resolve(flag.flag_id, "resolved", "r1", correct=False)
        assert answer.is_valid is False
        assert answer.confidence_score == 0.0

    def test_invalid_leaves_answer_untouched(
        self, queue: ReviewQueue, store: PipelineStore,
    ) -> None:
        flag = queue.escalate("a1", "check")
        updated, answer = queue.resolve(flag.flag_id, "invalid", "r1")
        assert updated.status == FlagStatus.INVALID
        assert answer is None
        assert store.get_answer("a1").is_valid is None
        assert store.list_validation_events("a1") == []

    def test_double_resolve_conflicts(self, queue: ReviewQueue, store: PipelineStore) -> None:
        flag = queue.escalate("a1", "check")
        queue.resolve(flag.flag_id, "resolved", "r1", correct=True)
        with pytest.raises(Conflict):
            queue.resolve(flag.flag_id, "resolved", "r2", correct=False)

        assert store.get_answer("a1").is_valid is True
        assert store.get_flag(flag.flag_id).resolved_by == "r1"
        human = [
            e for e in store.list_validation_events("a1")
            if e.signal_type == SignalKind.HUMAN_REVIEW
        ]
        assert len(human) == 1

    def test_lost_race_conflicts(
        self, queue: ReviewQueue, store: PipelineStore, monkeypatch,
    ) -> None:
        flag = queue.escalate("a1", "check")
        monkeypatch.setattr(store, "transition_flag", lambda *a, **k: False)
        with pytest.raises(Conflict):
            queue.resolve(flag.flag_id, "resolved", "r1", correct=True)

    def test_resolved_requires_correct(self, queue: ReviewQueue) -> None:
        flag = queue.escalate("a1", "check")
        with pytest.raises(InvalidInput):
            queue.resolve(flag.flag_id, "resolved", "r1")

    @pytest.mark.parametrize("resolution", ["pending", "approved", ""])
    def test_bad_resolution(self, queue: ReviewQueue, resolution: str) -> None:
        flag = queue.escalate("a1", "check")
        with pytest.raises(InvalidInput):
            queue.resolve(flag.flag_id, resolution, "r1", correct=True)

    def test_unknown_flag(self, queue: ReviewQueue) -> None:
        with pytest.raises(NotFound):
            queue.resolve(999, "invalid", "r1")
