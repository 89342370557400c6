"""Reward allocator — what a valid answer earns.

  value = base_reward + (high_consensus_bonus if agreement >= high_consensus_threshold)

Allocation is pure; the service persists the grant. Rewards are never
clawed back, even if a human later reverses the verdict.
"""

from __future__ import annotations

from typing import Optional, Union

from crowdcheck.errors import InvalidInput
from crowdcheck.models.ledger import RewardGrant, RewardStatus, RewardType
from crowdcheck.policy.resolver import PolicyResolver


class RewardAllocator:
    """Usage:
        allocator = RewardAllocator(resolver)
        grant = allocator.allocate("c1", agreement_score=95.0)   # value 15.0
        allocator.format_value(grant.value, grant.reward_type)    # "15.00 USD"
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver

    def allocate(
        self,
        contributor_id: str,
        agreement_score: float,
        reward_type: Optional[Union[RewardType, str]] = None,
    ) -> RewardGrant:
        rule = self._resolver.reward_rule()
        resolved_type = self._resolve_type(reward_type, rule.default_reward_type)

        value = rule.base_reward
        if agreement_score >= rule.high_consensus_threshold:
            value += rule.high_consensus_bonus

        return RewardGrant(
            contributor_id=contributor_id,
            reward_type=resolved_type,
            value=value,
            status=RewardStatus.AWARDED,
        )

    def display_name(self, reward_type: Union[RewardType, str]) -> str:
        return self._display(reward_type)["display_name"]

    def format_value(self, value: float, reward_type: Union[RewardType, str]) -> str:
        return f"{value:.2f} {self._display(reward_type)['unit']}"

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _display(self, reward_type: Union[RewardType, str]) -> dict[str, str]:
        resolved = self._resolve_type(reward_type, None)
        try:
            return self._resolver.reward_type_display(resolved)
        except ValueError as e:
            raise InvalidInput(str(e)) from e

    @staticmethod
    def _resolve_type(
        reward_type: Optional[Union[RewardType, str]],
        default: Optional[RewardType],
    ) -> RewardType:
        if reward_type is None:
            if default is None:
                raise InvalidInput("Reward type is required")
            return default
        try:
            return RewardType(reward_type)
        except ValueError as e:
            raise InvalidInput(f"Unknown reward type: {reward_type}") from e
