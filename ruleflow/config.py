from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .constants import (
    DEFAULT_NOTIFICATION_PREVIEW_CHARS,
    DEFAULT_SESSION_TTL_SECONDS,
    DEFAULT_WEBHOOK_TIMEOUT,
)


class AgentConfig(BaseModel):
    """Models used by the executor agent and the rule classifier."""

    model: Optional[str] = None
    matcher_model: Optional[str] = None
    session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS


class DispatchConfig(BaseModel):
    """Output delivery settings."""

    webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
    notification_preview_chars: int = DEFAULT_NOTIFICATION_PREVIEW_CHARS


class RuleflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    agent: AgentConfig = AgentConfig()
    dispatch: DispatchConfig = DispatchConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> RuleflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to RULEFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("RULEFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = RuleflowConfig(**data)
    else:
        config = RuleflowConfig()

    env_db_url = os.getenv("RULEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_level = os.getenv("RULEFLOW_LOG_LEVEL")
    if env_level:
        config.log_level = env_level.upper()
    return config
