"""Configuration management for the Sovereign Data Engine.

Settings come from ``SOVEREIGN_*`` environment variables and an optional
``.env`` file found in the working directory, one of its parents, or the
project root.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# src/sovereign/config.py -> project root
_PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _find_env_file(max_depth: int = 5) -> Path | None:
    cwd = Path.cwd()
    for directory in [cwd, *cwd.parents][:max_depth]:
        candidate = directory / ".env"
        if candidate.is_file():
            return candidate
    candidate = _PROJECT_ROOT / ".env"
    return candidate if candidate.is_file() else None


class Settings(BaseSettings):
    """Engine settings.

    Secrets are kept out of repr. ``database_url`` of ``memory://`` keeps
    every table in-process; any other value is a SQLAlchemy async URL.
    """

    model_config = SettingsConfigDict(
        env_file=_find_env_file() or ".env",
        env_file_encoding="utf-8",
        env_prefix="SOVEREIGN_",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = "development"

    # =========================
    # Storage
    # =========================
    database_url: str = "sqlite+aiosqlite:///./sovereign.db"
    database_echo: bool = False

    # =========================
    # HTTP
    # =========================
    http_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    http_timeout_ms: int = 30_000

    # =========================
    # Fleet
    # =========================
    fleet_pause_seconds: float = 5.0
    fleet_max_parallel: int = 1
    default_max_records: int = 100
    default_min_property_value: int = 400_000
    # <fixtures_dir>/<jurisdiction_id>/{properties,documents,court_cases}.json
    fixtures_dir: str | None = None

    # =========================
    # Resolution and scoring
    # =========================
    resolution_review_floor: float = 0.70
    resolution_confidence_policy: Literal["max", "weighted_mean"] = "max"
    scoring_weights_path: str | None = None

    # =========================
    # Third-party sources
    # =========================
    skip_trace_api_url: str = "https://api.skiptrace.example.com/v1"
    skip_trace_api_key: str = Field(default="", repr=False)
    census_api_key: str = Field(default="", repr=False)
    sec_user_agent: str = "SovereignDataEngine contact@example.com"

    # =========================
    # Logging
    # =========================
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
