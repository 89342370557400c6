"""Trust score ledger — bounded, additive contributor trust.

Update rule:
  correct:   delta = +correct_bonus (+ consensus_bonus if agreement >= consensus_threshold)
  incorrect: delta = -incorrect_penalty
  new_score = clamp(old_score + delta, min_score, max_score)

Every mutation writes exactly one Rating holding the delta actually
applied after clamping, so summing a contributor's ratings reproduces
their score movement.

Writes are optimistic compare-and-set against the value read; a lost race
re-reads and retries up to max_update_attempts times. The ledger is not
idempotent: callers guarantee one call per scored answer.

Tier projection is read-only and never stored.
"""

from __future__ import annotations

import logging
from typing import Optional

from crowdcheck.errors import Conflict, InvalidInput, NotFound
from crowdcheck.models.ledger import TrustTier
from crowdcheck.persistence.store import PipelineStore
from crowdcheck.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


class TrustScoreLedger:
    """Applies verdict outcomes to contributor trust.

    Usage:
        ledger = TrustScoreLedger(resolver, store)
        new_score = ledger.apply_outcome("c1", is_correct=True, agreement_score=92.0)
        tier = ledger.tier_for(new_score)
    """

    def __init__(self, resolver: PolicyResolver, store: PipelineStore) -> None:
        self._resolver = resolver
        self._store = store

    # ------------------------------------------------------------------
    # Update rule (pure)
    # ------------------------------------------------------------------

    def compute_delta(self, is_correct: bool, agreement_score: float) -> float:
        """Unclamped delta for one verdict."""
        rule = self._resolver.trust_rule()
        if not is_correct:
            return -rule.incorrect_penalty
        delta = rule.correct_bonus
        if agreement_score >= rule.consensus_threshold:
            delta += rule.consensus_bonus
        return delta

    def clamp(self, score: float) -> float:
        rule = self._resolver.trust_rule()
        return max(rule.min_score, min(rule.max_score, score))

    @staticmethod
    def outcome_reason(is_correct: bool, agreement_score: float) -> str:
        verdict = "Correct" if is_correct else "Incorrect"
        return f"{verdict} answer with {agreement_score:.1f}% consensus"

    # ------------------------------------------------------------------
    # Update (persisted)
    # ------------------------------------------------------------------

    def apply_outcome(
        self,
        contributor_id: str,
        is_correct: bool,
        agreement_score: float,
        question_id: Optional[str] = None,
        answer_id: Optional[str] = None,
    ) -> float:
        """Apply one verdict to a contributor's trust. Returns the new score.

        Raises:
            NotFound: the contributor does not exist.
            Conflict: every compare-and-set attempt lost to a concurrent writer.
        """
        delta = self.compute_delta(is_correct, agreement_score)
        reason = self.outcome_reason(is_correct, agreement_score)
        attempts = self._resolver.max_trust_update_attempts()

        for attempt in range(1, attempts + 1):
            contributor = self._store.get_contributor(contributor_id)
            if contributor is None:
                raise NotFound(f"Contributor not found: {contributor_id}")

            current = contributor.trust_score
            new_score = self.clamp(current + delta)
            rating = self._store.compare_and_set_trust(
                contributor_id,
                expected=current,
                new_score=new_score,
                reason=reason,
                question_id=question_id,
                answer_id=answer_id,
            )
            if rating is not None:
                logger.info(
                    "Trust for %s: %.1f -> %.1f (%s)",
                    contributor_id, current, new_score, reason,
                )
                return new_score

            logger.info(
                "Trust update for %s lost a race (attempt %d/%d)",
                contributor_id, attempt, attempts,
            )

        raise Conflict(
            f"Trust update for {contributor_id} did not converge after {attempts} attempts"
        )

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def tier_for(self, score: float) -> TrustTier:
        """Highest tier whose min_score the score reaches."""
        tiers = self._resolver.trust_tiers()
        for tier in tiers:
            if score >= tier.min_score:
                return tier
        return tiers[-1]

    def accessible_difficulties(self, score: float) -> tuple[str, ...]:
        return self.tier_for(score).difficulties

    def initial_score_from_onboarding(self, correct: int, total: int) -> float:
        """Starting trust for a contributor who took the onboarding test."""
        if total < 0 or correct < 0 or correct > total:
            raise InvalidInput(
                f"Onboarding result must satisfy 0 <= correct <= total, got {correct}/{total}"
            )
        if total == 0:
            return self._resolver.initial_trust_score()

        percentage = 100.0 * correct / total
        for min_percentage, score in self._resolver.onboarding_bands():
            if percentage >= min_percentage:
                return score
        return self._resolver.initial_trust_score()
