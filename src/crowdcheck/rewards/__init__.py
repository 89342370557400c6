"""Rewards module — reward entitlements for valid answers."""

from crowdcheck.rewards.allocator import RewardAllocator

__all__ = ["RewardAllocator"]
