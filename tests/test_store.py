"""Tests for the pipeline store — proves conditional writes are at-most-once.

Covers:
- Collaborator CRUD and its error kinds
- Sibling query excludes the candidate
- Verdict write: once only, events and flag in the same transaction
- Trust compare-and-set
- Flag listing and status-keyed transitions
"""

import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError

from crowdcheck.errors import Conflict, InvalidInput, NotFound, UpstreamUnavailable
from crowdcheck.models.answer import Question, QuestionType, VerdictSource
from crowdcheck.models.ledger import RewardGrant, RewardStatus, RewardType
from crowdcheck.models.review import FlagStatus
from crowdcheck.models.validation import Signal, SignalKind, ValidationOutcome
from crowdcheck.persistence.store import PipelineStore


@pytest.fixture
def store() -> PipelineStore:
    s = PipelineStore.in_memory()
    s.add_question(Question("q1", "Which crop?", QuestionType.MULTIPLE_CHOICE))
    s.add_contributor("c1", 50.0)
    s.add_contributor("c2", 50.0)
    s.add_answer("a1", "q1", "c1", "Maize")
    s.add_answer("a2", "q1", "c2", "Cassava")
    return s


def _outcome(should_flag: bool = False) -> ValidationOutcome:
    return ValidationOutcome(
        is_valid=True,
        confidence_score=72.0,
        should_flag=should_flag,
        flag_reason="Uncertain confidence (72.0%)" if should_flag else None,
        signals=[
            Signal(SignalKind.AGREEMENT, 40.0, {"sibling_count": 5}),
            Signal(SignalKind.MAJORITY_VOTE, 100.0, {"majority_value": "maize"}),
        ],
    )


class TestCrud:
    def test_round_trip_answer(self, store: PipelineStore) -> None:
        answer = store.get_answer("a1")
        assert answer.answer_text == "Maize"
        assert answer.is_scored is False
        assert answer.created_at is not None

    def test_duplicate_contributor(self, store: PipelineStore) -> None:
        with pytest.raises(Conflict):
            store.add_contributor("c1", 60.0)

    def test_trust_out_of_range(self, store: PipelineStore) -> None:
        with pytest.raises(InvalidInput):
            store.add_contributor("c3", 101.0)

    def test_answer_requires_question_and_contributor(self, store: PipelineStore) -> None:
        with pytest.raises(NotFound):
            store.add_answer("a9", "missing", "c1", "x")
        with pytest.raises(NotFound):
            store.add_answer("a9", "q1", "missing", "x")

    def test_duplicate_answer(self, store: PipelineStore) -> None:
        with pytest.raises(Conflict):
            store.add_answer("a1", "q1", "c1", "again")

    def test_missing_rows_return_none(self, store: PipelineStore) -> None:
        assert store.get_answer("nope") is None
        assert store.get_question("nope") is None
        assert store.get_contributor("nope") is None
        assert store.get_flag(42) is None

    @pytest.mark.parametrize("read", [
        lambda s: s.get_answer("a1"),
        lambda s: s.get_question("q1"),
        lambda s: s.get_contributor("c1"),
        lambda s: s.get_flag(1),
        lambda s: s.get_flag_for_answer("a1"),
    ])
    def test_read_failure_is_upstream_unavailable(self, store: PipelineStore, read) -> None:
        with patch.object(
            store, "_sessions", side_effect=OperationalError("SELECT", {}, Exception("down")),
        ):
            with pytest.raises(UpstreamUnavailable):
                read(store)


class TestSiblings:
    def test_excludes_candidate(self, store: PipelineStore) -> None:
        assert store.sibling_texts("q1", "a1") == ["Cassava"]

    def test_read_failure_is_upstream_unavailable(self, store: PipelineStore) -> None:
        with patch.object(
            store, "_sessions", side_effect=OperationalError("SELECT", {}, Exception("down")),
        ):
            with pytest.raises(UpstreamUnavailable):
                store.sibling_texts("q1", "a1")


class TestRecordVerdict:
    def test_writes_verdict_and_events(self, store: PipelineStore) -> None:
        write = store.record_verdict("a1", _outcome())
        assert write.written is True
        assert write.flag is None

        answer = store.get_answer("a1")
        assert answer.is_valid is True
        assert answer.confidence_score == 72.0
        assert answer.agreement_score == 40.0
        assert answer.model_confidence_score is None
        assert answer.verdict_source == VerdictSource.AUTOMATIC

        events = store.list_validation_events("a1")
        assert [e.signal_type for e in events] == [SignalKind.AGREEMENT, SignalKind.MAJORITY_VOTE]
        assert events[1].metadata == {"majority_value": "maize"}

    def test_second_write_is_noop(self, store: PipelineStore) -> None:
        store.record_verdict("a1", _outcome())
        write = store.record_verdict("a1", _outcome(should_flag=True))
        assert write.written is False
        assert len(store.list_validation_events("a1")) == 2
        assert store.get_flag_for_answer("a1") is None

    def test_flag_created_with_verdict(self, store: PipelineStore) -> None:
        write = store.record_verdict("a1", _outcome(should_flag=True))
        assert write.flag is not None
        assert write.flag.status == FlagStatus.PENDING
        assert store.get_flag_for_answer("a1").reason == "Uncertain confidence (72.0%)"

    def test_existing_manual_flag_kept(self, store: PipelineStore) -> None:
        manual = store.insert_flag("a1", "Reported by client")
        write = store.record_verdict("a1", _outcome(should_flag=True))
        assert write.written is True
        assert write.flag is None
        assert store.get_flag_for_answer("a1").flag_id == manual.flag_id


class TestTrustCas:
    def test_matching_expected_writes_rating(self, store: PipelineStore) -> None:
        rating = store.compare_and_set_trust("c1", 50.0, 53.0, reason="test", answer_id="a1")
        assert rating is not None
        assert rating.rating_change == 3.0
        assert store.get_contributor("c1").trust_score == 53.0

    def test_stale_expected_writes_nothing(self, store: PipelineStore) -> None:
        assert store.compare_and_set_trust("c1", 49.0, 52.0, reason="stale") is None
        assert store.get_contributor("c1").trust_score == 50.0
        assert store.list_ratings("c1") == []


class TestRewards:
    def test_add_and_list(self, store: PipelineStore) -> None:
        grant = RewardGrant("c1", RewardType.MOBILE_MONEY, 15.0)
        reward = store.add_reward(grant, answer_id="a1")
        assert reward.status == RewardStatus.AWARDED
        listed = store.list_rewards("c1")
        assert [r.reward_id for r in listed] == [reward.reward_id]
        assert listed[0].reward_type == RewardType.MOBILE_MONEY
        assert listed[0].value == 15.0
        assert store.list_rewards("c2") == []


class TestFlags:
    def test_transition_keyed_on_status(self, store: PipelineStore) -> None:
        flag = store.insert_flag("a1", "check")
        assert store.transition_flag(flag.flag_id, FlagStatus.PENDING, FlagStatus.INVALID, "r1")
        assert not store.transition_flag(flag.flag_id, FlagStatus.PENDING, FlagStatus.RESOLVED, "r2")
        assert store.get_flag(flag.flag_id).status == FlagStatus.INVALID

    def test_list_has_more(self, store: PipelineStore) -> None:
        store.insert_flag("a1", "check")
        store.insert_flag("a2", "check")
        items, has_more = store.list_flags(FlagStatus.PENDING, limit=1, offset=0)
        assert len(items) == 1 and has_more is True
        items, has_more = store.list_flags(FlagStatus.PENDING, limit=5, offset=0)
        assert len(items) == 2 and has_more is False
