"""Majority voting for closed-form questions (ratings, multiple choice).

Pure computation. Values are normalized before counting: choices compare
case- and whitespace-insensitively, ratings compare numerically.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from crowdcheck.models.answer import QuestionType

Normalized = Union[str, float]


def normalize_closed(value: str, question_type: QuestionType) -> Normalized:
    """Normalize a closed-form answer for comparison.

    Ratings that do not parse as numbers fall back to string comparison
    rather than being coerced to zero.
    """
    text = " ".join(str(value).split()).lower()
    if question_type == QuestionType.RATING:
        try:
            return float(text)
        except ValueError:
            return text
    return text


@dataclass(frozen=True)
class VoteResult:
    """Outcome of a majority vote over sibling answers.

    majority_values holds every value tied for the top count; the first
    one (in order of first appearance) is reported as majority_value.
    """
    majority_value: Optional[Normalized]
    majority_values: frozenset
    vote_count: int
    total_votes: int

    @property
    def vote_share(self) -> float:
        """Percentage of votes held by the majority value."""
        if self.total_votes == 0:
            return 0.0
        return 100.0 * self.vote_count / self.total_votes


def majority_vote(
    sibling_texts: Sequence[str],
    question_type: QuestionType,
) -> VoteResult:
    """Count normalized sibling answers and return the most common."""
    counts: Counter = Counter(
        normalize_closed(t, question_type) for t in sibling_texts
    )
    if not counts:
        return VoteResult(
            majority_value=None,
            majority_values=frozenset(),
            vote_count=0,
            total_votes=0,
        )

    top = max(counts.values())
    # Counter preserves first-seen order, so ties resolve deterministically.
    leaders = [value for value, n in counts.items() if n == top]
    return VoteResult(
        majority_value=leaders[0],
        majority_values=frozenset(leaders),
        vote_count=top,
        total_votes=sum(counts.values()),
    )


def in_majority(
    answer_text: str,
    result: VoteResult,
    question_type: QuestionType,
) -> bool:
    """True if the answer matches any value tied for the majority."""
    if result.total_votes == 0:
        return False
    return normalize_closed(answer_text, question_type) in result.majority_values
