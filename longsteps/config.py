from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class LongStepsConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    join_poll_interval: float = Field(default=10.0, gt=0)
    claim_batch_size: int = Field(default=100, gt=0)
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> LongStepsConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to LONGSTEPS_CONFIG env
            variable or 'longsteps.yaml' in the current directory.
    """

    config_path = path or os.getenv("LONGSTEPS_CONFIG", "longsteps.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = LongStepsConfig(**data)
    else:
        config = LongStepsConfig()

    env_db_url = os.getenv("LONGSTEPS_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
