"""CrowdCheck service — unified facade for the answer quality pipeline.

This is the primary interface for programmatic access to the pipeline.
It orchestrates all subsystems:
- Scoring (agreement, majority vote, model confidence → verdict)
- Trust management (bounded additive updates with an audit trail)
- Rewards (entitlements for valid answers)
- Escalation (human review queue)
- Persistence (the relational pipeline store)

All operations produce typed results. Engines raise PipelineError; this
facade catches it at the boundary and returns a failed ServiceResult
carrying the error kind.

Scoring happens at most once per answer. The verdict, its validation
events and any escalation are committed together. Trust and reward are
secondary effects applied after that commit: if they fail the verdict
stands, and the failure is reported in `warnings`. A provisional verdict
(no peers, no model) is escalated but never moves trust or earns a reward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from crowdcheck.config import Settings
from crowdcheck.errors import NotFound, PipelineError
from crowdcheck.models.answer import (
    Answer,
    Contributor,
    Difficulty,
    Question,
    QuestionType,
    VerdictSource,
)
from crowdcheck.models.ledger import Reward, RewardType
from crowdcheck.models.review import FlaggedAnswer
from crowdcheck.models.validation import ModelConfidence, ValidationOutcome
from crowdcheck.persistence.store import PipelineStore
from crowdcheck.policy.resolver import PolicyResolver
from crowdcheck.quality.model_confidence import ConfidenceProvider, ModelConfidenceClient
from crowdcheck.quality.validator import MultiLayerValidator
from crowdcheck.review.queue import ReviewQueue
from crowdcheck.rewards.allocator import RewardAllocator
from crowdcheck.trust.ledger import TrustScoreLedger

logger = logging.getLogger(__name__)


@dataclass
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error_kind: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: PipelineError) -> ServiceResult:
        return cls(success=False, errors=[str(error)], error_kind=error.kind)


class AnswerQualityService:
    """Unified answer quality facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = AnswerQualityService(resolver, PipelineStore.in_memory())

        service.add_question("q1", "Pick one", "multiple_choice")
        service.register_contributor("c1")
        service.submit_answer("a1", "q1", "c1", "B")
        result = service.score_answer("a1")
        if result.success:
            print(result.data["is_valid"], result.data["confidence_score"])
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        store: PipelineStore,
        model: Optional[ConfidenceProvider] = None,
        reward_type: Optional[RewardType] = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._model = model
        self._reward_type = reward_type
        self._validator = MultiLayerValidator(resolver)
        self._ledger = TrustScoreLedger(resolver, store)
        self._rewards = RewardAllocator(resolver)
        self._queue = ReviewQueue(resolver, store)

    @classmethod
    def from_settings(cls, settings: Settings) -> AnswerQualityService:
        """Build a service wired to the configured store and model endpoint."""
        resolver = PolicyResolver.from_config_dir(settings.config_dir)
        store = PipelineStore.from_url(settings.database_url)
        store.create_schema()
        model = None
        if settings.model_url:
            model = ModelConfidenceClient(settings.model_url, timeout=settings.model_timeout)
        return cls(resolver, store, model=model)

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver

    @property
    def store(self) -> PipelineStore:
        return self._store

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_answer(self, answer_id: str) -> ServiceResult:
        """Score one answer, at most once.

        An answer that already carries a verdict (automatic or human) is
        returned as-is with already_scored=True and nothing is written.
        """
        try:
            answer = self._store.get_answer(answer_id)
            if answer is None:
                raise NotFound(f"Answer not found: {answer_id}")
            if answer.is_scored:
                return ServiceResult(success=True, data=self._stored_verdict(answer))

            question = self._store.get_question(answer.question_id)
            if question is None:
                raise NotFound(f"Question not found: {answer.question_id}")
            contributor = self._store.get_contributor(answer.contributor_id)
            if contributor is None:
                raise NotFound(f"Contributor not found: {answer.contributor_id}")

            siblings = self._store.sibling_texts(question.question_id, answer.answer_id)
            model_confidence = self._fetch_model_confidence(question, answer)

            outcome = self._validator.validate(
                answer_text=answer.answer_text,
                question=question,
                sibling_texts=siblings,
                model_confidence=model_confidence,
                contributor_trust_score=contributor.trust_score,
            )
            write = self._store.record_verdict(answer.answer_id, outcome)
        except PipelineError as e:
            logger.info("Scoring %s failed: %s", answer_id, e)
            return ServiceResult.failure(e)

        if not write.written:
            # A concurrent scorer or a reviewer got there first.
            logger.info("Answer %s was scored concurrently; returning stored verdict", answer_id)
            try:
                stored = self._store.get_answer(answer_id)
                return ServiceResult(success=True, data=self._stored_verdict(stored))
            except PipelineError as e:
                return ServiceResult.failure(e)

        logger.info(
            "Scored %s: valid=%s confidence=%.1f agreement=%.1f flagged=%s",
            answer_id, outcome.is_valid, outcome.confidence_score,
            outcome.agreement_score, outcome.should_flag,
        )

        data = self._verdict_data(answer_id, outcome, write.flag)
        warnings: list[str] = []

        if outcome.is_provisional:
            # No peers and no model: the verdict is a placeholder until review.
            logger.info("Answer %s scored without peers; trust and reward skipped", answer_id)
            return ServiceResult(success=True, warnings=warnings, data=data)

        try:
            data["new_trust_score"] = self._ledger.apply_outcome(
                answer.contributor_id,
                is_correct=outcome.is_valid,
                agreement_score=outcome.agreement_score,
                question_id=question.question_id,
                answer_id=answer_id,
            )
        except Exception as e:
            logger.exception("Trust update failed for answer %s", answer_id)
            warnings.append(f"Trust update failed: {e}")

        if outcome.is_valid:
            try:
                grant = self._rewards.allocate(
                    answer.contributor_id,
                    outcome.agreement_score,
                    reward_type=self._reward_type,
                )
                reward = self._store.add_reward(grant, answer_id=answer_id)
                data["reward"] = self._reward_data(reward)
            except Exception as e:
                logger.exception("Reward allocation failed for answer %s", answer_id)
                warnings.append(f"Reward allocation failed: {e}")

        return ServiceResult(success=True, warnings=warnings, data=data)

    def _fetch_model_confidence(
        self, question: Question, answer: Answer,
    ) -> Optional[ModelConfidence]:
        if self._model is None:
            return None
        try:
            return self._model.confidence(question.text, answer.answer_text)
        except Exception:
            logger.warning("Model confidence provider raised; scoring without it", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # Escalations
    # ------------------------------------------------------------------

    def list_escalations(
        self,
        status: str = "pending",
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ServiceResult:
        try:
            page = self._queue.list(status=status, limit=limit, offset=offset)
        except PipelineError as e:
            return ServiceResult.failure(e)
        return ServiceResult(success=True, data={
            "escalations": [self._flag_data(f) for f in page.items],
            "limit": page.limit,
            "offset": page.offset,
            "has_more": page.has_more,
        })

    def resolve_escalation(
        self,
        flag_id: int,
        resolution: str,
        reviewer_id: str,
        correct: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> ServiceResult:
        """Close an escalation. Human review does not touch trust or rewards."""
        try:
            flag, answer = self._queue.resolve(
                flag_id, resolution, reviewer_id, correct=correct, notes=notes,
            )
        except PipelineError as e:
            return ServiceResult.failure(e)
        data: dict[str, Any] = {"escalation": self._flag_data(flag)}
        if answer is not None:
            data["answer"] = self._answer_data(answer)
        return ServiceResult(success=True, data=data)

    def flag_answer(self, answer_id: str, reason: str) -> ServiceResult:
        """Manually escalate an answer for human review."""
        try:
            flag = self._queue.escalate(answer_id, reason)
        except PipelineError as e:
            return ServiceResult.failure(e)
        return ServiceResult(success=True, data={"escalation": self._flag_data(flag)})

    # ------------------------------------------------------------------
    # Questions, contributors, answers
    # ------------------------------------------------------------------

    def register_contributor(
        self,
        contributor_id: str,
        onboarding_correct: Optional[int] = None,
        onboarding_total: Optional[int] = None,
    ) -> ServiceResult:
        """Register a contributor with a starting trust score.

        Without an onboarding result the configured initial score is used.
        """
        try:
            if onboarding_correct is None and onboarding_total is None:
                score = self._resolver.initial_trust_score()
            else:
                score = self._ledger.initial_score_from_onboarding(
                    onboarding_correct or 0, onboarding_total or 0,
                )
            contributor = self._store.add_contributor(contributor_id, score)
        except PipelineError as e:
            return ServiceResult.failure(e)
        return ServiceResult(success=True, data=self._profile_data(contributor))

    def add_question(
        self,
        question_id: str,
        text: str,
        question_type: str,
        difficulty: str = "easy",
    ) -> ServiceResult:
        try:
            question = Question(
                question_id=question_id,
                text=text,
                question_type=QuestionType(question_type),
                difficulty=Difficulty(difficulty),
            )
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)], error_kind="invalid_input")
        try:
            self._store.add_question(question)
        except PipelineError as e:
            return ServiceResult.failure(e)
        return ServiceResult(success=True, data={"question_id": question_id})

    def submit_answer(
        self,
        answer_id: str,
        question_id: str,
        contributor_id: str,
        answer_text: str,
    ) -> ServiceResult:
        try:
            answer = self._store.add_answer(answer_id, question_id, contributor_id, answer_text)
        except PipelineError as e:
            return ServiceResult.failure(e)
        return ServiceResult(success=True, data=self._answer_data(answer))

    def get_answer(self, answer_id: str) -> Optional[Answer]:
        return self._store.get_answer(answer_id)

    def get_contributor(self, contributor_id: str) -> Optional[Contributor]:
        return self._store.get_contributor(contributor_id)

    def contributor_profile(self, contributor_id: str) -> ServiceResult:
        try:
            contributor = self._store.get_contributor(contributor_id)
        except PipelineError as e:
            return ServiceResult.failure(e)
        if contributor is None:
            return ServiceResult.failure(NotFound(f"Contributor not found: {contributor_id}"))
        data = self._profile_data(contributor)
        data["rewards"] = [
            self._reward_data(r) for r in self._store.list_rewards(contributor_id)
        ]
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Response shaping
    # ------------------------------------------------------------------

    def _verdict_data(
        self,
        answer_id: str,
        outcome: ValidationOutcome,
        flag: Optional[FlaggedAnswer],
    ) -> dict[str, Any]:
        return {
            "answer_id": answer_id,
            "is_valid": outcome.is_valid,
            "confidence_score": outcome.confidence_score,
            "agreement_score": outcome.agreement_score,
            "model_confidence_score": outcome.model_confidence_score,
            "verdict_source": VerdictSource.AUTOMATIC.value,
            "should_flag": outcome.should_flag,
            "flag_reason": outcome.flag_reason,
            "flag_id": flag.flag_id if flag is not None else None,
            "signals": outcome.breakdown(),
            "already_scored": False,
            "provisional": outcome.is_provisional,
        }

    def _stored_verdict(self, answer: Answer) -> dict[str, Any]:
        flag = self._store.get_flag_for_answer(answer.answer_id)
        events = self._store.list_validation_events(answer.answer_id)
        return {
            "answer_id": answer.answer_id,
            "is_valid": answer.is_valid,
            "confidence_score": answer.confidence_score,
            "agreement_score": answer.agreement_score,
            "model_confidence_score": answer.model_confidence_score,
            "verdict_source": answer.verdict_source.value if answer.verdict_source else None,
            "should_flag": flag is not None,
            "flag_reason": flag.reason if flag is not None else None,
            "flag_id": flag.flag_id if flag is not None else None,
            "signals": {
                e.signal_type.value: {"score": e.confidence_score, **e.metadata}
                for e in events
            },
            "already_scored": True,
        }

    def _profile_data(self, contributor: Contributor) -> dict[str, Any]:
        tier = self._ledger.tier_for(contributor.trust_score)
        return {
            "contributor_id": contributor.contributor_id,
            "trust_score": contributor.trust_score,
            "tier": tier.name,
            "tier_label": tier.label,
            "accessible_difficulties": list(tier.difficulties),
        }

    def _reward_data(self, reward: Reward) -> dict[str, Any]:
        return {
            "reward_id": reward.reward_id,
            "reward_type": reward.reward_type.value,
            "display_name": self._rewards.display_name(reward.reward_type),
            "value": reward.value,
            "formatted": self._rewards.format_value(reward.value, reward.reward_type),
            "status": reward.status.value,
        }

    @staticmethod
    def _flag_data(flag: FlaggedAnswer) -> dict[str, Any]:
        return {
            "flag_id": flag.flag_id,
            "answer_id": flag.answer_id,
            "reason": flag.reason,
            "status": flag.status.value,
            "resolved_by": flag.resolved_by,
            "resolved_at": flag.resolved_at.isoformat() if flag.resolved_at else None,
            "resolution_notes": flag.resolution_notes,
            "created_at": flag.created_at.isoformat() if flag.created_at else None,
        }

    @staticmethod
    def _answer_data(answer: Answer) -> dict[str, Any]:
        return {
            "answer_id": answer.answer_id,
            "question_id": answer.question_id,
            "contributor_id": answer.contributor_id,
            "answer_text": answer.answer_text,
            "agreement_score": answer.agreement_score,
            "model_confidence_score": answer.model_confidence_score,
            "confidence_score": answer.confidence_score,
            "is_valid": answer.is_valid,
            "verdict_source": answer.verdict_source.value if answer.verdict_source else None,
        }
