"""Relational schema for the answer quality pipeline.

The store upholds the invariants the pipeline relies on:
- contributors.trust_score is bounded to [0, 100] (CHECK constraint).
- flagged_answers.answer_id is UNIQUE: at most one escalation per answer.
- validation_events and ratings are append-only; nothing updates or
  deletes them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class QuestionRow(Base):
    __tablename__ = "questions"
    question_id: Mapped[str] = mapped_column(String, primary_key=True)
    text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[str] = mapped_column(String)
    difficulty: Mapped[str] = mapped_column(String)


class ContributorRow(Base):
    __tablename__ = "contributors"
    __table_args__ = (
        CheckConstraint(
            "trust_score >= 0 AND trust_score <= 100",
            name="ck_contributors_trust_score_bounds",
        ),
    )
    contributor_id: Mapped[str] = mapped_column(String, primary_key=True)
    trust_score: Mapped[float] = mapped_column(Float)


class AnswerRow(Base):
    __tablename__ = "answers"
    answer_id: Mapped[str] = mapped_column(String, primary_key=True)
    question_id: Mapped[str] = mapped_column(String, ForeignKey("questions.question_id"), index=True)
    contributor_id: Mapped[str] = mapped_column(String, ForeignKey("contributors.contributor_id"))
    answer_text: Mapped[str] = mapped_column(Text)
    agreement_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    model_confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_valid: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    verdict_source: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ValidationEventRow(Base):
    __tablename__ = "validation_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    answer_id: Mapped[str] = mapped_column(String, ForeignKey("answers.answer_id"), index=True)
    signal_type: Mapped[str] = mapped_column(String)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    reviewer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class FlaggedAnswerRow(Base):
    __tablename__ = "flagged_answers"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    answer_id: Mapped[str] = mapped_column(
        String, ForeignKey("answers.answer_id"), unique=True,
    )
    reason: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String, index=True)
    resolved_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class RatingRow(Base):
    __tablename__ = "ratings"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contributor_id: Mapped[str] = mapped_column(
        String, ForeignKey("contributors.contributor_id"), index=True,
    )
    question_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    answer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    rating_change: Mapped[float] = mapped_column(Float)
    reason: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class RewardRow(Base):
    __tablename__ = "rewards"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contributor_id: Mapped[str] = mapped_column(
        String, ForeignKey("contributors.contributor_id"), index=True,
    )
    answer_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    reward_type: Mapped[str] = mapped_column(String)
    value: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
