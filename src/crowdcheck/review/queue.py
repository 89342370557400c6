"""Review queue — escalations awaiting a human decision.

State machine (see crowdcheck.models.review.ALLOWED_TRANSITIONS):
  pending → resolved   human decided correctness; verdict is overwritten
  pending → invalid    escalation was spurious; answer untouched

Every transition is a conditional update keyed on the current status, so
two reviewers resolving the same flag cannot both succeed: the loser gets
Conflict and nothing it asked for is written.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from crowdcheck.errors import Conflict, InvalidInput, NotFound
from crowdcheck.models.answer import Answer
from crowdcheck.models.review import (
    ALLOWED_TRANSITIONS,
    EscalationPage,
    FlaggedAnswer,
    FlagStatus,
)
from crowdcheck.persistence.store import PipelineStore
from crowdcheck.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


class ReviewQueue:
    """Usage:
        queue = ReviewQueue(resolver, store)
        flag = queue.escalate("a1", "Uncertain confidence (52.0%)")
        page = queue.list()
        flag, answer = queue.resolve(flag.flag_id, "resolved", "reviewer-1", correct=True)
    """

    def __init__(self, resolver: PolicyResolver, store: PipelineStore) -> None:
        self._resolver = resolver
        self._store = store

    def escalate(self, answer_id: str, reason: str) -> FlaggedAnswer:
        """Open a pending escalation.

        Raises:
            InvalidInput: empty reason.
            NotFound: unknown answer.
            Conflict: the answer already has an escalation.
        """
        if not reason or not reason.strip():
            raise InvalidInput("Escalation reason must not be empty")
        flag = self._store.insert_flag(answer_id, reason.strip())
        logger.info("Answer %s escalated (flag %d): %s", answer_id, flag.flag_id, flag.reason)
        return flag

    def list(
        self,
        status: Union[FlagStatus, str] = FlagStatus.PENDING,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> EscalationPage:
        """Newest-first page of escalations in the given status."""
        try:
            status = FlagStatus(status)
        except ValueError as e:
            raise InvalidInput(f"Unknown escalation status: {status}") from e

        default_limit, max_limit = self._resolver.page_size_limits()
        if limit is None:
            limit = default_limit
        if limit < 1:
            raise InvalidInput(f"limit must be >= 1, got {limit}")
        if offset < 0:
            raise InvalidInput(f"offset must be >= 0, got {offset}")
        limit = min(limit, max_limit)

        items, has_more = self._store.list_flags(status, limit, offset)
        return EscalationPage(items=items, limit=limit, offset=offset, has_more=has_more)

    def resolve(
        self,
        flag_id: int,
        resolution: Union[FlagStatus, str],
        reviewer_id: str,
        correct: Optional[bool] = None,
        notes: Optional[str] = None,
    ) -> tuple[FlaggedAnswer, Optional[Answer]]:
        """Close an escalation.

        A "resolved" decision force-sets the answer's verdict from the
        human, in the same transaction as the flag transition. An
        "invalid" decision only closes the flag.

        Returns:
            (updated flag, updated answer or None when resolution is invalid)

        Raises:
            InvalidInput: bad resolution, missing reviewer, or resolved without `correct`.
            NotFound: unknown flag.
            Conflict: the flag is already terminal, or another reviewer won the race.
        """
        try:
            target = FlagStatus(resolution)
        except ValueError as e:
            raise InvalidInput(f"Unknown resolution: {resolution}") from e
        if target not in ALLOWED_TRANSITIONS[FlagStatus.PENDING]:
            raise InvalidInput(
                f"Resolution must be one of "
                f"{sorted(s.value for s in ALLOWED_TRANSITIONS[FlagStatus.PENDING])}"
            )
        if not reviewer_id:
            raise InvalidInput("reviewer_id is required")
        if target == FlagStatus.RESOLVED and correct is None:
            raise InvalidInput("A resolved escalation requires 'correct'")

        flag = self._store.get_flag(flag_id)
        if flag is None:
            raise NotFound(f"Escalation not found: {flag_id}")
        if target not in ALLOWED_TRANSITIONS[flag.status]:
            raise Conflict(
                f"Escalation {flag_id} is already {flag.status.value}"
            )

        human_verdict = correct if target == FlagStatus.RESOLVED else None
        won = self._store.transition_flag(
            flag_id,
            from_status=FlagStatus.PENDING,
            to_status=target,
            reviewer_id=reviewer_id,
            notes=notes,
            human_verdict=human_verdict,
            human_confidence=self._resolver.human_confidence(),
        )
        if not won:
            logger.info("Escalation %d was closed concurrently", flag_id)
            raise Conflict(f"Escalation {flag_id} was closed by another reviewer")

        logger.info(
            "Escalation %d %s by %s (correct=%s)",
            flag_id, target.value, reviewer_id, human_verdict,
        )
        updated = self._store.get_flag(flag_id)
        answer = None
        if target == FlagStatus.RESOLVED:
            answer = self._store.get_answer(flag.answer_id)
        return updated, answer
