"""Configuration loading for buildrelay.

Reads a YAML file into pydantic models, then applies environment variable
overrides for deployment.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from buildrelay.scm import GITHUB_API

logger = logging.getLogger(__name__)


class ScmConfig(BaseModel):
    api_url: str = GITHUB_API
    timeout: float = 30.0
    user_agent: str = "buildrelay/0.1.0"

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"scm.timeout must be positive, got {v}")
        return v


class SecretsConfig(BaseModel):
    # Name of the environment variable holding the Fernet key, never the key itself
    key_env: str = "BUILDRELAY_TOKEN_KEY"


class RelayConfig(BaseModel):
    database_path: str = "buildrelay.db"
    scm: ScmConfig = Field(default_factory=ScmConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)


def load_config(config_path: Path | None = None) -> RelayConfig:
    """Load configuration from ``config_path``, or defaults when it is None.

    Environment overrides: ``BUILDRELAY_DATABASE_PATH``, ``BUILDRELAY_SCM_API_URL``.

    Raises:
        FileNotFoundError: If ``config_path`` is given but doesn't exist.
        ValueError: If config validation fails.
    """
    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"buildrelay config not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    config = RelayConfig(**raw)

    database_path = os.environ.get("BUILDRELAY_DATABASE_PATH")
    if database_path:
        config.database_path = database_path

    api_url = os.environ.get("BUILDRELAY_SCM_API_URL")
    if api_url:
        config.scm.api_url = api_url

    logger.info("Loaded buildrelay config: database=%s", config.database_path)
    return config
