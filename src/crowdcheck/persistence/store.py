"""Pipeline store — relational persistence for answers, verdicts, trust,
rewards and escalations.

The relational store is the only shared resource between request
handlers and the source of truth for "has this answer been scored".
Every write that must happen at most once is a conditional update whose
row count says whether this caller won:

- verdicts:    UPDATE answers ... WHERE is_valid IS NULL
- trust:       UPDATE contributors ... WHERE trust_score = <value read>
- escalations: UPDATE flagged_answers ... WHERE status = <expected>

Rows are converted to the frozen dataclasses in crowdcheck.models on the
way out; callers never hold ORM objects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crowdcheck.errors import Conflict, InvalidInput, NotFound, UpstreamUnavailable
from crowdcheck.models.answer import (
    Answer,
    Contributor,
    Difficulty,
    Question,
    QuestionType,
    VerdictSource,
)
from crowdcheck.models.ledger import (
    Rating,
    Reward,
    RewardGrant,
    RewardStatus,
    RewardType,
)
from crowdcheck.models.review import FlaggedAnswer, FlagStatus
from crowdcheck.models.validation import (
    SignalKind,
    ValidationEvent,
    ValidationOutcome,
)
from crowdcheck.persistence.schema import (
    AnswerRow,
    Base,
    ContributorRow,
    FlaggedAnswerRow,
    QuestionRow,
    RatingRow,
    RewardRow,
    ValidationEventRow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerdictWrite:
    """Result of PipelineStore.record_verdict()."""
    written: bool
    flag: Optional[FlaggedAnswer] = None


class PipelineStore:
    """SQLAlchemy-backed store.

    Usage:
        store = PipelineStore.from_url("postgresql+psycopg2://...")
        store.create_schema()

        # Tests and single-process tools:
        store = PipelineStore.in_memory()
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._sessions = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False, future=True,
        )

    @classmethod
    def from_url(cls, database_url: str) -> PipelineStore:
        return cls(create_engine(database_url, future=True, pool_pre_ping=True))

    @classmethod
    def in_memory(cls) -> PipelineStore:
        """A private SQLite database with the schema already created."""
        engine = create_engine(
            "sqlite://",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = cls(engine)
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self._engine)

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """One transaction: commit on success, roll back on any error."""
        with self._sessions.begin() as session:
            yield session

    @contextmanager
    def _reading(self, what: str) -> Iterator[Session]:
        """A read-only session; store failures surface as UpstreamUnavailable."""
        try:
            with self._sessions() as session:
                yield session
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(f"Could not read {what}") from e

    # ------------------------------------------------------------------
    # Questions, contributors, answers (collaborator CRUD)
    # ------------------------------------------------------------------

    def add_question(self, question: Question) -> Question:
        try:
            with self._transaction() as session:
                session.add(QuestionRow(
                    question_id=question.question_id,
                    text=question.text,
                    question_type=question.question_type.value,
                    difficulty=question.difficulty.value,
                ))
        except IntegrityError as e:
            raise Conflict(f"Question already exists: {question.question_id}") from e
        return question

    def get_question(self, question_id: str) -> Optional[Question]:
        with self._reading(f"question {question_id}") as session:
            row = session.get(QuestionRow, question_id)
            return _to_question(row) if row is not None else None

    def add_contributor(self, contributor_id: str, trust_score: float) -> Contributor:
        if not (0.0 <= trust_score <= 100.0):
            raise InvalidInput(f"Trust score must be in [0, 100], got {trust_score}")
        try:
            with self._transaction() as session:
                session.add(ContributorRow(
                    contributor_id=contributor_id, trust_score=trust_score,
                ))
        except IntegrityError as e:
            raise Conflict(f"Contributor already exists: {contributor_id}") from e
        return Contributor(contributor_id=contributor_id, trust_score=trust_score)

    def get_contributor(self, contributor_id: str) -> Optional[Contributor]:
        with self._reading(f"contributor {contributor_id}") as session:
            row = session.get(ContributorRow, contributor_id)
            if row is None:
                return None
            return Contributor(contributor_id=row.contributor_id, trust_score=row.trust_score)

    def add_answer(
        self,
        answer_id: str,
        question_id: str,
        contributor_id: str,
        answer_text: str,
    ) -> Answer:
        try:
            with self._transaction() as session:
                if session.get(QuestionRow, question_id) is None:
                    raise NotFound(f"Question not found: {question_id}")
                if session.get(ContributorRow, contributor_id) is None:
                    raise NotFound(f"Contributor not found: {contributor_id}")
                row = AnswerRow(
                    answer_id=answer_id,
                    question_id=question_id,
                    contributor_id=contributor_id,
                    answer_text=answer_text,
                )
                session.add(row)
                session.flush()
                answer = _to_answer(row)
        except IntegrityError as e:
            raise Conflict(f"Answer already exists: {answer_id}") from e
        return answer

    def get_answer(self, answer_id: str) -> Optional[Answer]:
        with self._reading(f"answer {answer_id}") as session:
            row = session.get(AnswerRow, answer_id)
            return _to_answer(row) if row is not None else None

    def sibling_texts(self, question_id: str, exclude_answer_id: str) -> list[str]:
        """Every other answer to the question, oldest first.

        Raises UpstreamUnavailable if the store cannot be read: scoring
        against a silently partial sibling set is worse than not scoring.
        """
        try:
            with self._sessions() as session:
                rows = session.execute(
                    select(AnswerRow.answer_text)
                    .where(
                        AnswerRow.question_id == question_id,
                        AnswerRow.answer_id != exclude_answer_id,
                    )
                    .order_by(AnswerRow.created_at, AnswerRow.answer_id)
                ).scalars().all()
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(
                f"Could not fetch sibling answers for question {question_id}"
            ) from e
        return list(rows)

    # ------------------------------------------------------------------
    # Verdicts
    # ------------------------------------------------------------------

    def record_verdict(
        self,
        answer_id: str,
        outcome: ValidationOutcome,
    ) -> VerdictWrite:
        """Write an automatic verdict, its signal events and any escalation.

        All in one transaction, and only if the answer has no verdict yet.
        Returns written=False (and writes nothing) when another scorer or a
        human got there first.
        """
        try:
            return self._write_verdict(answer_id, outcome)
        except SQLAlchemyError as e:
            raise UpstreamUnavailable(f"Could not record verdict for answer {answer_id}") from e

    def _write_verdict(self, answer_id: str, outcome: ValidationOutcome) -> VerdictWrite:
        with self._transaction() as session:
            result = session.execute(
                update(AnswerRow)
                .where(
                    AnswerRow.answer_id == answer_id,
                    AnswerRow.is_valid.is_(None),
                )
                .values(
                    agreement_score=outcome.agreement_score,
                    model_confidence_score=outcome.model_confidence_score,
                    confidence_score=outcome.confidence_score,
                    is_valid=outcome.is_valid,
                    verdict_source=VerdictSource.AUTOMATIC.value,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return VerdictWrite(written=False)

            for signal in outcome.signals:
                session.add(ValidationEventRow(
                    answer_id=answer_id,
                    signal_type=signal.kind.value,
                    confidence_score=signal.score,
                    details=dict(signal.metadata),
                ))

            flag = None
            if outcome.should_flag:
                existing = session.execute(
                    select(FlaggedAnswerRow).where(FlaggedAnswerRow.answer_id == answer_id)
                ).scalar_one_or_none()
                if existing is None:
                    row = FlaggedAnswerRow(
                        answer_id=answer_id,
                        reason=outcome.flag_reason or "Low confidence score",
                        status=FlagStatus.PENDING.value,
                    )
                    session.add(row)
                    session.flush()
                    flag = _to_flag(row)
                else:
                    logger.info("Answer %s already escalated (flag %s)", answer_id, existing.id)

        return VerdictWrite(written=True, flag=flag)

    def list_validation_events(self, answer_id: str) -> list[ValidationEvent]:
        with self._sessions() as session:
            rows = session.execute(
                select(ValidationEventRow)
                .where(ValidationEventRow.answer_id == answer_id)
                .order_by(ValidationEventRow.id)
            ).scalars().all()
            return [_to_event(r) for r in rows]

    # ------------------------------------------------------------------
    # Trust
    # ------------------------------------------------------------------

    def compare_and_set_trust(
        self,
        contributor_id: str,
        expected: float,
        new_score: float,
        reason: str,
        question_id: Optional[str] = None,
        answer_id: Optional[str] = None,
    ) -> Optional[Rating]:
        """Move trust from expected to new_score and log the Rating.

        Returns None, writing nothing, if the stored score is no longer
        `expected` (a concurrent writer moved it).
        """
        with self._transaction() as session:
            result = session.execute(
                update(ContributorRow)
                .where(
                    ContributorRow.contributor_id == contributor_id,
                    ContributorRow.trust_score == expected,
                )
                .values(trust_score=new_score)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None

            row = RatingRow(
                contributor_id=contributor_id,
                question_id=question_id,
                answer_id=answer_id,
                rating_change=new_score - expected,
                reason=reason,
            )
            session.add(row)
            session.flush()
            return _to_rating(row)

    def list_ratings(self, contributor_id: str) -> list[Rating]:
        with self._sessions() as session:
            rows = session.execute(
                select(RatingRow)
                .where(RatingRow.contributor_id == contributor_id)
                .order_by(RatingRow.id)
            ).scalars().all()
            return [_to_rating(r) for r in rows]

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    def add_reward(self, grant: RewardGrant, answer_id: Optional[str] = None) -> Reward:
        with self._transaction() as session:
            row = RewardRow(
                contributor_id=grant.contributor_id,
                answer_id=answer_id,
                reward_type=grant.reward_type.value,
                value=grant.value,
                status=grant.status.value,
            )
            session.add(row)
            session.flush()
            return _to_reward(row)

    def list_rewards(self, contributor_id: str) -> list[Reward]:
        with self._sessions() as session:
            rows = session.execute(
                select(RewardRow)
                .where(RewardRow.contributor_id == contributor_id)
                .order_by(RewardRow.id)
            ).scalars().all()
            return [_to_reward(r) for r in rows]

    # ------------------------------------------------------------------
    # Escalations
    # ------------------------------------------------------------------

    def insert_flag(self, answer_id: str, reason: str) -> FlaggedAnswer:
        """Create a pending escalation. Raises Conflict if one exists."""
        try:
            with self._transaction() as session:
                if session.get(AnswerRow, answer_id) is None:
                    raise NotFound(f"Answer not found: {answer_id}")
                row = FlaggedAnswerRow(
                    answer_id=answer_id,
                    reason=reason,
                    status=FlagStatus.PENDING.value,
                )
                session.add(row)
                session.flush()
                flag = _to_flag(row)
        except IntegrityError as e:
            raise Conflict(f"Answer {answer_id} is already escalated") from e
        return flag

    def get_flag(self, flag_id: int) -> Optional[FlaggedAnswer]:
        with self._reading(f"escalation {flag_id}") as session:
            row = session.get(FlaggedAnswerRow, flag_id)
            return _to_flag(row) if row is not None else None

    def get_flag_for_answer(self, answer_id: str) -> Optional[FlaggedAnswer]:
        with self._reading(f"escalation for answer {answer_id}") as session:
            row = session.execute(
                select(FlaggedAnswerRow).where(FlaggedAnswerRow.answer_id == answer_id)
            ).scalar_one_or_none()
            return _to_flag(row) if row is not None else None

    def list_flags(
        self,
        status: FlagStatus,
        limit: int,
        offset: int,
    ) -> tuple[list[FlaggedAnswer], bool]:
        """Return (page, has_more), newest first."""
        with self._sessions() as session:
            rows = session.execute(
                select(FlaggedAnswerRow)
                .where(FlaggedAnswerRow.status == status.value)
                .order_by(FlaggedAnswerRow.created_at.desc(), FlaggedAnswerRow.id.desc())
                .offset(offset)
                .limit(limit + 1)
            ).scalars().all()
            flags = [_to_flag(r) for r in rows]
        return flags[:limit], len(flags) > limit

    def transition_flag(
        self,
        flag_id: int,
        from_status: FlagStatus,
        to_status: FlagStatus,
        reviewer_id: str,
        notes: Optional[str] = None,
        human_verdict: Optional[bool] = None,
        human_confidence: float = 100.0,
    ) -> bool:
        """Move a flag between states, keyed on its current status.

        When human_verdict is given, the same transaction force-sets the
        answer's verdict and appends one human_review event. Returns False
        (writing nothing) if the flag was not in from_status.
        """
        now = datetime.now(timezone.utc)
        with self._transaction() as session:
            result = session.execute(
                update(FlaggedAnswerRow)
                .where(
                    FlaggedAnswerRow.id == flag_id,
                    FlaggedAnswerRow.status == from_status.value,
                )
                .values(
                    status=to_status.value,
                    resolved_by=reviewer_id,
                    resolved_at=now,
                    resolution_notes=notes,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            if human_verdict is not None:
                answer_id = session.execute(
                    select(FlaggedAnswerRow.answer_id).where(FlaggedAnswerRow.id == flag_id)
                ).scalar_one()
                session.execute(
                    update(AnswerRow)
                    .where(AnswerRow.answer_id == answer_id)
                    .values(
                        is_valid=human_verdict,
                        confidence_score=100.0 if human_verdict else 0.0,
                        verdict_source=VerdictSource.HUMAN_REVIEW.value,
                    )
                    .execution_options(synchronize_session=False)
                )
                session.add(ValidationEventRow(
                    answer_id=answer_id,
                    signal_type=SignalKind.HUMAN_REVIEW.value,
                    confidence_score=human_confidence,
                    details={
                        "resolution": to_status.value,
                        "correct": human_verdict,
                        "notes": notes,
                    },
                    reviewer_id=reviewer_id,
                ))
        return True


# ----------------------------------------------------------------------
# Row → model conversion
# ----------------------------------------------------------------------

def _to_question(row: QuestionRow) -> Question:
    return Question(
        question_id=row.question_id,
        text=row.text,
        question_type=QuestionType(row.question_type),
        difficulty=Difficulty(row.difficulty),
    )


def _to_answer(row: AnswerRow) -> Answer:
    return Answer(
        answer_id=row.answer_id,
        question_id=row.question_id,
        contributor_id=row.contributor_id,
        answer_text=row.answer_text,
        agreement_score=row.agreement_score,
        model_confidence_score=row.model_confidence_score,
        confidence_score=row.confidence_score,
        is_valid=row.is_valid,
        verdict_source=VerdictSource(row.verdict_source) if row.verdict_source else None,
        created_at=row.created_at,
    )


def _to_event(row: ValidationEventRow) -> ValidationEvent:
    details: dict[str, Any] = dict(row.details or {})
    return ValidationEvent(
        event_id=row.id,
        answer_id=row.answer_id,
        signal_type=SignalKind(row.signal_type),
        confidence_score=row.confidence_score,
        metadata=details,
        reviewer_id=row.reviewer_id,
        created_at=row.created_at,
    )


def _to_flag(row: FlaggedAnswerRow) -> FlaggedAnswer:
    return FlaggedAnswer(
        flag_id=row.id,
        answer_id=row.answer_id,
        reason=row.reason,
        status=FlagStatus(row.status),
        resolved_by=row.resolved_by,
        resolved_at=row.resolved_at,
        resolution_notes=row.resolution_notes,
        created_at=row.created_at,
    )


def _to_rating(row: RatingRow) -> Rating:
    return Rating(
        rating_id=row.id,
        contributor_id=row.contributor_id,
        rating_change=row.rating_change,
        reason=row.reason,
        question_id=row.question_id,
        answer_id=row.answer_id,
        created_at=row.created_at,
    )


def _to_reward(row: RewardRow) -> Reward:
    return Reward(
        reward_id=row.id,
        contributor_id=row.contributor_id,
        reward_type=RewardType(row.reward_type),
        value=row.value,
        status=RewardStatus(row.status),
        answer_id=row.answer_id,
        created_at=row.created_at,
    )
