"""Trust and reward ledger models.

Ratings are the audit trail of trust: every mutation of a contributor's
trust score has exactly one Rating carrying the signed delta actually
applied. Rewards record an entitlement; redemption happens elsewhere.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


class RewardType(str, enum.Enum):
    AIRTIME = "airtime"
    MOBILE_MONEY = "mobile_money"
    GROCERY_VOUCHER = "grocery_voucher"


class RewardStatus(str, enum.Enum):
    PENDING = "pending"
    AWARDED = "awarded"
    REDEEMED = "redeemed"


@dataclass(frozen=True)
class Rating:
    rating_id: int
    contributor_id: str
    rating_change: float
    reason: str
    question_id: Optional[str] = None
    answer_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RewardGrant:
    """What RewardAllocator decided. Persisted as a Reward."""
    contributor_id: str
    reward_type: RewardType
    value: float
    status: RewardStatus = RewardStatus.AWARDED


@dataclass(frozen=True)
class Reward:
    reward_id: int
    contributor_id: str
    reward_type: RewardType
    value: float
    status: RewardStatus
    answer_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class TrustTier:
    """Read-side projection of a trust score."""
    name: str
    label: str
    min_score: float
    difficulties: tuple[str, ...]
