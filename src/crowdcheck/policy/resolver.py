"""Policy resolver — loads pipeline_params.json and exposes every
threshold, weight and bonus as a typed method call.

No magic. No defaults. If a value is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from crowdcheck.models.ledger import RewardType, TrustTier


@dataclass(frozen=True)
class TrustRule:
    """Resolved trust update rule."""
    correct_bonus: float
    consensus_bonus: float
    consensus_threshold: float
    incorrect_penalty: float
    min_score: float
    max_score: float


@dataclass(frozen=True)
class RewardRule:
    """Resolved reward value rule."""
    base_reward: float
    high_consensus_bonus: float
    high_consensus_threshold: float
    default_reward_type: RewardType


class PolicyResolver:
    """Loads and resolves all pipeline policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(DEFAULT_CONFIG_DIR)
        threshold = resolver.correctness_threshold()
        rule = resolver.trust_rule()
    """

    PARAMS_FILE = "pipeline_params.json"

    def __init__(self, params: dict[str, Any]) -> None:
        self._params = params
        self._validate_version()
        self._validate_weights()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / cls.PARAMS_FILE))

    def _validate_version(self) -> None:
        if "version" not in self._params:
            raise ValueError(f"{self.PARAMS_FILE} missing version")

    def _validate_weights(self) -> None:
        # Negative weights would break monotonicity of the combiner.
        for kind, weight in self.signal_weights().items():
            if weight < 0:
                raise ValueError(f"Signal weight for {kind} must be >= 0, got {weight}")
        low, high = self.uncertain_band()
        if low > high:
            raise ValueError(f"Uncertain band is inverted: [{low}, {high})")

    @property
    def version(self) -> str:
        return self._params["version"]

    # ------------------------------------------------------------------
    # Agreement
    # ------------------------------------------------------------------

    def neutral_agreement_score(self) -> float:
        """Score given to an answer that has no peers to agree with."""
        return self._params["agreement"]["neutral_score"]

    def min_token_length(self) -> int:
        """Shortest word token that counts towards text similarity."""
        return self._params["agreement"]["min_token_length"]

    def fuzzy_max_tokens(self) -> int:
        """Answers this short (in tokens) also compare by character similarity."""
        return self._params["agreement"]["fuzzy_max_tokens"]

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def signal_weights(self) -> dict[str, float]:
        """Return per-signal-kind weights for the confidence combiner."""
        return dict(self._params["validation"]["signal_weights"])

    def correctness_threshold(self) -> float:
        return self._params["validation"]["correctness_threshold"]

    def uncertain_band(self) -> tuple[float, float]:
        """Return (low, high). Scores in [low, high) need a human."""
        band = self._params["validation"]["uncertain_band"]
        return band["low"], band["high"]

    def max_signal_gap(self) -> float:
        """Largest tolerated gap between majority vote and agreement."""
        return self._params["validation"]["max_signal_gap"]

    def low_trust_flagging(self) -> tuple[float, float]:
        """Return (low_trust_threshold, band_margin)."""
        v = self._params["validation"]
        return v["low_trust_threshold"], v["low_trust_band_margin"]

    # ------------------------------------------------------------------
    # Trust
    # ------------------------------------------------------------------

    def trust_rule(self) -> TrustRule:
        t = self._params["trust"]
        return TrustRule(
            correct_bonus=t["correct_bonus"],
            consensus_bonus=t["consensus_bonus"],
            consensus_threshold=t["consensus_threshold"],
            incorrect_penalty=t["incorrect_penalty"],
            min_score=t["min_score"],
            max_score=t["max_score"],
        )

    def initial_trust_score(self) -> float:
        return self._params["trust"]["initial_score"]

    def max_trust_update_attempts(self) -> int:
        """Compare-and-set retries before a trust update gives up."""
        return self._params["trust"]["max_update_attempts"]

    def trust_tiers(self) -> list[TrustTier]:
        """Return tiers ordered from highest min_score to lowest."""
        tiers = [
            TrustTier(
                name=t["name"],
                label=t["label"],
                min_score=t["min_score"],
                difficulties=tuple(t["difficulties"]),
            )
            for t in self._params["trust"]["tiers"]
        ]
        if not tiers:
            raise ValueError("trust.tiers must not be empty")
        return sorted(tiers, key=lambda t: t.min_score, reverse=True)

    def onboarding_bands(self) -> list[tuple[float, float]]:
        """Return (min_percentage, score) pairs, highest percentage first."""
        bands = self._params["trust"]["onboarding"]["bands"]
        pairs = [(b["min_percentage"], b["score"]) for b in bands]
        return sorted(pairs, key=lambda p: p[0], reverse=True)

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    def reward_rule(self) -> RewardRule:
        r = self._params["rewards"]
        return RewardRule(
            base_reward=r["base_reward"],
            high_consensus_bonus=r["high_consensus_bonus"],
            high_consensus_threshold=r["high_consensus_threshold"],
            default_reward_type=RewardType(r["default_reward_type"]),
        )

    def reward_type_display(self, reward_type: RewardType) -> dict[str, str]:
        """Return {"display_name", "unit"} for a reward type."""
        types = self._params["rewards"]["reward_types"]
        entry = types.get(reward_type.value)
        if entry is None:
            raise ValueError(f"Unknown reward type: {reward_type.value}")
        return dict(entry)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def human_confidence(self) -> float:
        """Confidence attached to a human_review validation event."""
        return self._params["review"]["human_confidence"]

    def page_size_limits(self) -> tuple[int, int]:
        """Return (default_page_size, max_page_size) for escalation listings."""
        r = self._params["review"]
        return r["default_page_size"], r["max_page_size"]


def _load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file or raise with clear path."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
