"""Escalation models — answers waiting for a human decision.

PENDING → RESOLVED (human decided final correctness)
PENDING → INVALID  (the escalation itself was spurious)

Both targets are terminal. At most one escalation exists per answer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class FlagStatus(str, enum.Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    INVALID = "invalid"


# Allowed transitions. Anything not listed is rejected at the boundary.
ALLOWED_TRANSITIONS: dict[FlagStatus, frozenset[FlagStatus]] = {
    FlagStatus.PENDING: frozenset({FlagStatus.RESOLVED, FlagStatus.INVALID}),
    FlagStatus.RESOLVED: frozenset(),
    FlagStatus.INVALID: frozenset(),
}


@dataclass(frozen=True)
class FlaggedAnswer:
    flag_id: int
    answer_id: str
    reason: str
    status: FlagStatus = FlagStatus.PENDING
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]


@dataclass(frozen=True)
class EscalationPage:
    """One page of escalations, newest first."""
    items: list[FlaggedAnswer]
    limit: int
    offset: int
    has_more: bool
