from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field


class EngineConfig(BaseModel):
    """Policy switches for the workflow engine."""

    # Advancing to a step whose office cannot be resolved fails instead of
    # leaving the request without an owning office.
    require_next_office: bool = True


class CaseflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    workflows_path: Optional[str] = None
    users_path: Optional[str] = None
    offices: Dict[str, str] = Field(default_factory=dict)
    engine: EngineConfig = EngineConfig()


def load_config(path: Optional[str] = None) -> CaseflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CASEFLOW_CONFIG env
            variable or 'caseflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CASEFLOW_CONFIG", "caseflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CaseflowConfig(**data)
    else:
        config = CaseflowConfig()

    env_db_url = os.getenv("CASEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
