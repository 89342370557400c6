"""Validation models — signals, verdicts and the audit events behind them.

A verdict is reached by folding over whichever signals were available for
an answer. Each signal is a tagged variant (kind, score, metadata) rather
than a positional field, so new signal kinds only need a weight in config.

Every signal that was actually computed is persisted as one immutable
ValidationEvent. Signals that were unavailable leave no event.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


class SignalKind(str, enum.Enum):
    """Kinds of validation signal. HUMAN_REVIEW is only written by the review queue."""
    MAJORITY_VOTE = "majority_vote"
    AGREEMENT = "agreement"
    MODEL_CONFIDENCE = "model_confidence"
    HUMAN_REVIEW = "human_review"


@dataclass(frozen=True)
class Signal:
    """One validation signal on a 0-100 scale."""
    kind: SignalKind
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelConfidence:
    """Opaque confidence returned by an external scoring model."""
    score: float
    model: str = "external"


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of MultiLayerValidator.validate().

    confidence_score is the weighted combination of the present signals.
    is_valid compares it against the correctness threshold. should_flag
    asks for human review; flag_reason says why.
    """
    is_valid: bool
    confidence_score: float
    should_flag: bool
    flag_reason: Optional[str]
    signals: list[Signal]

    def signal(self, kind: SignalKind) -> Optional[Signal]:
        """Return the signal of the given kind, if it was computed."""
        for s in self.signals:
            if s.kind == kind:
                return s
        return None

    @property
    def is_provisional(self) -> bool:
        """True when the only evidence is the neutral no-peers agreement.

        Such a verdict says nothing about the contributor, so it must not
        move trust or earn a reward; it goes to review instead.
        """
        if len(self.signals) != 1:
            return False
        only = self.signals[0]
        return only.kind == SignalKind.AGREEMENT and bool(only.metadata.get("neutral"))

    @property
    def agreement_score(self) -> Optional[float]:
        s = self.signal(SignalKind.AGREEMENT)
        return s.score if s is not None else None

    @property
    def model_confidence_score(self) -> Optional[float]:
        s = self.signal(SignalKind.MODEL_CONFIDENCE)
        return s.score if s is not None else None

    def breakdown(self) -> dict[str, dict[str, Any]]:
        """Per-signal breakdown keyed by signal kind, for responses."""
        return {
            s.kind.value: {"score": s.score, **s.metadata}
            for s in self.signals
        }


@dataclass(frozen=True)
class ValidationEvent:
    """Immutable audit record of one signal applied to one answer."""
    event_id: int
    answer_id: str
    signal_type: SignalKind
    confidence_score: Optional[float]
    metadata: dict[str, Any]
    reviewer_id: Optional[str] = None
    created_at: Optional[datetime] = None
