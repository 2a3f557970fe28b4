"""
Engine configuration.

The YAML layout mirrors the runner's sections (scrape/limits/batch/
email_filter/logging). Every key is optional; missing sections fall back to
the defaults below.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError

from .schemas import ScrapeSettings


class ConfigError(Exception):
    """Config file missing, unreadable or invalid."""


class LimitsConfig(BaseModel):
    max_requests_per_page: int = Field(default=50, ge=1)
    wall_clock_s: float = Field(default=45.0, gt=0)
    max_profile_visits: int = Field(default=3, ge=0)
    max_pages: int = Field(default=20, ge=1)
    max_links_per_page: int = Field(default=20, ge=0)
    static_timeout_s: float = Field(default=12.0, gt=0)
    respect_robots: bool = False
    capture_max_responses: int = Field(default=50, ge=0)
    capture_max_body_bytes: int = Field(default=2_000_000, ge=0)


class BatchConfig(BaseModel):
    workers: int = Field(default=2, ge=1, le=8)


class EmailFilterConfig(BaseModel):
    # Organization inboxes (info@, contact@ ...) are kept unless this is on
    block_org_prefixes: bool = False
    allow_keywords: List[str] = Field(default_factory=list)
    allow_emails: List[str] = Field(default_factory=list)
    extra_blocked_domains: List[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    ops_json: bool = False


class EngineConfig(BaseModel):
    scrape: ScrapeSettings = Field(default_factory=ScrapeSettings)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    email_filter: EmailFilterConfig = Field(default_factory=EmailFilterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any] | None) -> "EngineConfig":
        try:
            return cls.model_validate(dict(cfg or {}))
        except ValidationError as e:
            raise ConfigError(f"invalid config values: {e}") from e


def load_config(path: Path) -> EngineConfig:
    """Read and validate a YAML config file."""
    path = Path(path)
    if not path.exists() or not path.is_file():
        raise ConfigError(f"file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"top-level YAML must be a mapping: {path}")
    return EngineConfig.from_mapping(raw)
