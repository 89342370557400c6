"""Process settings read from the environment (and a local .env file).

Pipeline policy (thresholds, weights, bonuses) lives in the
packaged crowdcheck/policy/pipeline_params.json and is read through
PolicyResolver. This module only holds deployment concerns: where the
store is, where the optional scoring model lives, and how loud to log.
"""

from __future__ import annotations

import os
from importlib import resources
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIG_DIR = Path(str(resources.files("crowdcheck.policy")))


@dataclass(frozen=True)
class Settings:
    database_url: str
    config_dir: Path
    model_url: Optional[str]
    model_timeout: float
    log_level: str


def load_settings() -> Settings:
    """Read settings from the environment."""
    return Settings(
        database_url=os.getenv("CROWDCHECK_DATABASE_URL", "sqlite:///crowdcheck.db"),
        config_dir=Path(os.getenv("CROWDCHECK_CONFIG_DIR", str(DEFAULT_CONFIG_DIR))),
        model_url=os.getenv("CROWDCHECK_MODEL_URL") or None,
        model_timeout=float(os.getenv("CROWDCHECK_MODEL_TIMEOUT", "2.0")),
        log_level=os.getenv("CROWDCHECK_LOG_LEVEL", "INFO"),
    )
