"""Tests for the multi-layer validator — proves signals combine into the
right verdict and that doubtful answers are escalated.

Covers:
- Which signals are computed for each question type
- Weighted combination and the correctness threshold
- Monotonicity of the combiner
- Flagging: signal disagreement, uncertain band, low-trust widening
- Provisional verdicts when an answer has no peers and no model
"""

import pytest
from pathlib import Path

from crowdcheck.models.answer import Question, QuestionType
from crowdcheck.models.validation import ModelConfidence, Signal, SignalKind
from crowdcheck.policy.resolver import PolicyResolver
from crowdcheck.quality.validator import MultiLayerValidator


CONFIG_DIR = Path(__file__).resolve().parents[1] / "src" / "crowdcheck" / "policy"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def validator(resolver: PolicyResolver) -> MultiLayerValidator:
    return MultiLayerValidator(resolver)


def _choice() -> Question:
    return Question("q-choice", "Which crop?", QuestionType.MULTIPLE_CHOICE)


def _open() -> Question:
    return Question("q-open", "Describe the market", QuestionType.OPEN_TEXT)


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

class TestSignals:
    def test_open_text_has_no_majority_vote(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate("busy market", _open(), ["busy market"])
        kinds = {s.kind for s in outcome.signals}
        assert kinds == {SignalKind.AGREEMENT}

    def test_closed_form_without_siblings_has_no_majority_vote(
        self, validator: MultiLayerValidator,
    ) -> None:
        outcome = validator.validate("B", _choice(), [])
        assert outcome.signal(SignalKind.MAJORITY_VOTE) is None
        assert outcome.agreement_score == 50.0

    def test_all_signals_present(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "B", _choice(), ["B", "B", "C"],
            model_confidence=ModelConfidence(score=80.0, model="m1"),
        )
        kinds = [s.kind for s in outcome.signals]
        assert kinds == [
            SignalKind.AGREEMENT, SignalKind.MAJORITY_VOTE, SignalKind.MODEL_CONFIDENCE,
        ]
        majority = outcome.signal(SignalKind.MAJORITY_VOTE)
        assert majority.score == 100.0
        assert majority.metadata["majority_value"] == "b"
        assert majority.metadata["total_votes"] == 3
        assert outcome.model_confidence_score == 80.0
        assert outcome.signal(SignalKind.MODEL_CONFIDENCE).metadata["model"] == "m1"

    def test_model_confidence_clamped(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "x", _open(), [], model_confidence=ModelConfidence(score=140.0),
        )
        assert outcome.model_confidence_score == 100.0

    def test_breakdown_keyed_by_kind(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate("B", _choice(), ["B"])
        breakdown = outcome.breakdown()
        assert breakdown["agreement"]["score"] == 100.0
        assert breakdown["majority_vote"]["score"] == 100.0


# ---------------------------------------------------------------------------
# Combination
# ---------------------------------------------------------------------------

class TestCombination:
    def test_weighted_mean(self, validator: MultiLayerValidator) -> None:
        # agreement 66.7 (w .35), majority 100 (w .40)
        outcome = validator.validate("B", _choice(), ["B", "B", "C"])
        expected = (0.40 * 100.0 + 0.35 * 200.0 / 3) / 0.75
        assert outcome.confidence_score == pytest.approx(expected)
        assert outcome.is_valid is True
        assert outcome.should_flag is False

    def test_minority_answer_invalid(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate("C", _choice(), ["B", "B", "B"])
        assert outcome.confidence_score == 0.0
        assert outcome.is_valid is False
        assert outcome.should_flag is False

    def test_single_signal_passes_through(self, validator: MultiLayerValidator) -> None:
        signals = [Signal(kind=SignalKind.AGREEMENT, score=60.0)]
        assert validator.combine(signals) == pytest.approx(60.0)

    def test_no_weighted_signals_returns_neutral(self, validator: MultiLayerValidator) -> None:
        assert validator.combine([]) == 50.0

    @pytest.mark.parametrize("kind", [
        SignalKind.AGREEMENT, SignalKind.MAJORITY_VOTE, SignalKind.MODEL_CONFIDENCE,
    ])
    def test_combiner_is_monotonic(self, validator: MultiLayerValidator, kind: SignalKind) -> None:
        base = {
            SignalKind.AGREEMENT: 40.0,
            SignalKind.MAJORITY_VOTE: 0.0,
            SignalKind.MODEL_CONFIDENCE: 55.0,
        }
        previous = -1.0
        for raised in (0.0, 25.0, 50.0, 75.0, 100.0):
            scores = dict(base)
            scores[kind] = raised
            combined = validator.combine([Signal(k, v) for k, v in scores.items()])
            assert combined >= previous
            previous = combined


# ---------------------------------------------------------------------------
# Flagging
# ---------------------------------------------------------------------------

class TestFlagging:
    def test_signal_gap_flags_even_when_confident(self, validator: MultiLayerValidator) -> None:
        # Majority 100 but only 40% agreement: gap 60 > 50.
        outcome = validator.validate("B", _choice(), ["B", "B", "C", "D", "E"])
        assert outcome.confidence_score == pytest.approx(72.0)
        assert outcome.is_valid is True
        assert outcome.should_flag is True
        assert "disagree" in outcome.flag_reason

    def test_uncertain_band_flags(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate("first answer", _open(), [])
        assert outcome.confidence_score == 50.0
        assert outcome.is_valid is False
        assert outcome.should_flag is True
        assert outcome.flag_reason.startswith("Uncertain confidence")

    def test_clearly_high_not_flagged(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "first answer", _open(), [],
            model_confidence=ModelConfidence(score=100.0),
            contributor_trust_score=70.0,
        )
        # (0.35 * 50 + 0.25 * 100) / 0.60
        assert outcome.confidence_score == pytest.approx(70.8333, abs=1e-3)
        assert outcome.should_flag is False

    def test_low_trust_widens_band(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "first answer", _open(), [],
            model_confidence=ModelConfidence(score=100.0),
            contributor_trust_score=30.0,
        )
        assert outcome.should_flag is True
        assert "low-trust" in outcome.flag_reason

    def test_low_trust_does_not_flag_clear_failure(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "C", _choice(), ["B", "B", "B"], contributor_trust_score=10.0,
        )
        assert outcome.should_flag is False

    def test_unknown_trust_uses_plain_band(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "first answer", _open(), [],
            model_confidence=ModelConfidence(score=100.0),
            contributor_trust_score=None,
        )
        assert outcome.should_flag is False


class TestProvisional:
    def test_lone_answer_is_provisional(self, validator: MultiLayerValidator) -> None:
        assert validator.validate("first answer", _open(), []).is_provisional is True
        assert validator.validate("B", _choice(), []).is_provisional is True

    def test_peers_make_verdict_final(self, validator: MultiLayerValidator) -> None:
        assert validator.validate("busy market", _open(), ["quiet market"]).is_provisional is False

    def test_model_signal_makes_verdict_final(self, validator: MultiLayerValidator) -> None:
        outcome = validator.validate(
            "first answer", _open(), [], model_confidence=ModelConfidence(score=30.0),
        )
        assert outcome.is_provisional is False
