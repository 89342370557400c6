"""Multi-layer validator — folds agreement, majority vote and model
confidence into one verdict and decides whether a human should look.

Pure computation. No side effects, no persistence, no audit events.
The service layer handles all of that; this engine only computes.

Design mirrors AgreementScorer: stateless methods, PolicyResolver for
all thresholds.

Signals (each 0-100, present only when computed):
  - agreement: AgreementScorer against siblings (always present)
  - majority_vote: 100 if the answer matches the sibling majority, else 0
    (closed-form questions with at least one sibling)
  - model_confidence: opaque external score (when supplied)

Combination:
  confidence = sum(w_k * s_k) / sum(w_k) over present signals k
  Weights are non-negative, so raising any one signal never lowers the
  combined score.

Verdict:
  is_valid = confidence >= correctness_threshold

Flagging:
  - majority_vote and agreement differ by more than max_signal_gap, or
  - confidence falls in the uncertain band [low, high). A low-trust
    contributor widens the band's upper edge by a margin.
"""

from __future__ import annotations

from typing import Optional, Sequence

from crowdcheck.models.answer import Question
from crowdcheck.models.validation import (
    ModelConfidence,
    Signal,
    SignalKind,
    ValidationOutcome,
)
from crowdcheck.policy.resolver import PolicyResolver
from crowdcheck.quality.agreement import AgreementScorer
from crowdcheck.quality.majority import in_majority, majority_vote


def _clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    """Clamp a value to [lo, hi]."""
    return max(lo, min(hi, value))


class MultiLayerValidator:
    """Combines validation signals into a verdict.

    Usage:
        validator = MultiLayerValidator(resolver)
        outcome = validator.validate(
            answer_text="B",
            question=question,
            sibling_texts=["B", "B", "C"],
            model_confidence=ModelConfidence(score=82.0, model="m1"),
            contributor_trust_score=55.0,
        )
        # outcome.signals → one ValidationEvent each
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        scorer: Optional[AgreementScorer] = None,
    ) -> None:
        self._resolver = resolver
        self._scorer = scorer or AgreementScorer(resolver)

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    def validate(
        self,
        answer_text: str,
        question: Question,
        sibling_texts: Sequence[str],
        model_confidence: Optional[ModelConfidence] = None,
        contributor_trust_score: Optional[float] = None,
    ) -> ValidationOutcome:
        """Validate one answer against its siblings.

        Args:
            answer_text: The candidate answer.
            question: The question it answers (type decides which signals apply).
            sibling_texts: Every other answer to the question, excluding this one.
            model_confidence: External model score, or None if unavailable.
            contributor_trust_score: Used to widen the uncertain band for
                low-trust contributors. None means unknown.

        Returns:
            ValidationOutcome with only the signals that were computed.
        """
        signals = self.collect_signals(
            answer_text, question, sibling_texts, model_confidence,
        )
        confidence = self.combine(signals)
        is_valid = confidence >= self._resolver.correctness_threshold()
        flag_reason = self._flag_reason(signals, confidence, contributor_trust_score)

        return ValidationOutcome(
            is_valid=is_valid,
            confidence_score=confidence,
            should_flag=flag_reason is not None,
            flag_reason=flag_reason,
            signals=signals,
        )

    def collect_signals(
        self,
        answer_text: str,
        question: Question,
        sibling_texts: Sequence[str],
        model_confidence: Optional[ModelConfidence] = None,
    ) -> list[Signal]:
        """Compute every applicable signal. Unavailable ones are omitted."""
        signals: list[Signal] = []

        signals.append(Signal(
            kind=SignalKind.AGREEMENT,
            score=self._scorer.score(answer_text, sibling_texts, question.question_type),
            metadata={
                "sibling_count": len(sibling_texts),
                "neutral": not sibling_texts,
            },
        ))

        if question.question_type.is_closed_form and sibling_texts:
            vote = majority_vote(sibling_texts, question.question_type)
            matches = in_majority(answer_text, vote, question.question_type)
            signals.append(Signal(
                kind=SignalKind.MAJORITY_VOTE,
                score=100.0 if matches else 0.0,
                metadata={
                    "majority_value": vote.majority_value,
                    "vote_share": vote.vote_share,
                    "vote_count": vote.vote_count,
                    "total_votes": vote.total_votes,
                },
            ))

        if model_confidence is not None:
            signals.append(Signal(
                kind=SignalKind.MODEL_CONFIDENCE,
                score=_clamp(model_confidence.score),
                metadata={"model": model_confidence.model},
            ))

        return signals

    def combine(self, signals: Sequence[Signal]) -> float:
        """Weighted mean of the present signals.

        A signal kind with no configured weight does not contribute.
        If no weighted signal is present, returns the neutral score.
        """
        weights = self._resolver.signal_weights()
        weighted_sum = 0.0
        total_weight = 0.0
        for s in signals:
            w = weights.get(s.kind.value, 0.0)
            weighted_sum += w * s.score
            total_weight += w

        if total_weight == 0.0:
            return self._resolver.neutral_agreement_score()
        return _clamp(weighted_sum / total_weight)

    # ------------------------------------------------------------------
    # Private: flagging
    # ------------------------------------------------------------------

    def _flag_reason(
        self,
        signals: Sequence[Signal],
        confidence: float,
        contributor_trust_score: Optional[float],
    ) -> Optional[str]:
        """Return why the answer needs a human, or None if it does not."""
        by_kind = {s.kind: s for s in signals}
        majority = by_kind.get(SignalKind.MAJORITY_VOTE)
        agreement = by_kind.get(SignalKind.AGREEMENT)

        if majority is not None and agreement is not None:
            gap = abs(majority.score - agreement.score)
            if gap > self._resolver.max_signal_gap():
                return (
                    f"Majority vote ({majority.score:.1f}) and agreement "
                    f"({agreement.score:.1f}) disagree by {gap:.1f} points"
                )

        low, high = self._resolver.uncertain_band()
        low_trust, margin = self._resolver.low_trust_flagging()
        is_low_trust = (
            contributor_trust_score is not None
            and contributor_trust_score < low_trust
        )
        if is_low_trust:
            high += margin

        if low <= confidence < high:
            if is_low_trust:
                return (
                    f"Uncertain confidence ({confidence:.1f}%) from low-trust "
                    f"contributor ({contributor_trust_score:.1f})"
                )
            return f"Uncertain confidence ({confidence:.1f}%)"

        return None
