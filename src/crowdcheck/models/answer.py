"""Question, answer and contributor data models.

Questions are authored by clients and are read-only to the pipeline.
Answers are written by contributors; the pipeline only ever fills in
the scoring fields (agreement, model confidence, combined confidence,
verdict). Contributors carry the bounded trust score; their access tier
is never stored, it is always projected from the score.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class QuestionType(str, enum.Enum):
    """How an answer to the question is shaped."""
    OPEN_TEXT = "open_text"
    RATING = "rating"
    MULTIPLE_CHOICE = "multiple_choice"
    AUDIO = "audio"

    @property
    def is_closed_form(self) -> bool:
        """Closed-form answers can be compared by exact match and voted on."""
        return self in (QuestionType.RATING, QuestionType.MULTIPLE_CHOICE)


class Difficulty(str, enum.Enum):
    """Difficulty tiers gated by contributor trust."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class VerdictSource(str, enum.Enum):
    """Who produced the current verdict on an answer."""
    AUTOMATIC = "automatic"
    HUMAN_REVIEW = "human_review"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Question:
    question_id: str
    text: str
    question_type: QuestionType
    difficulty: Difficulty = Difficulty.EASY


@dataclass(frozen=True)
class Answer:
    """One contributor's response to one question.

    Scoring fields are None until the pipeline has scored the answer.
    Once is_valid is set it is only rewritten by a human resolution
    (verdict_source == HUMAN_REVIEW).
    """
    answer_id: str
    question_id: str
    contributor_id: str
    answer_text: str
    agreement_score: Optional[float] = None        # 0-100
    model_confidence_score: Optional[float] = None  # 0-100, opaque
    confidence_score: Optional[float] = None        # 0-100, combined
    is_valid: Optional[bool] = None
    verdict_source: Optional[VerdictSource] = None
    created_at: Optional[datetime] = None

    @property
    def is_scored(self) -> bool:
        return self.is_valid is not None


@dataclass(frozen=True)
class Contributor:
    """The subset of a platform user the pipeline reads and mutates."""
    contributor_id: str
    trust_score: float  # invariant: 0 <= trust_score <= 100
