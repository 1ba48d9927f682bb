"""Configuration management.

Values are loaded from init arguments, environment variables, .env and
config.yaml, in that order of precedence.
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """Load config.yaml if one exists."""
    candidates = []
    explicit = os.getenv("SCHOLAR_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """Client settings."""

    # ---- remote service ----
    service_profile: str = Field(
        default="scholar",
        description="Service profile name, see transport.registry (scholar, assistant)",
    )
    service_base_url: str = Field(
        default="https://ai-server.aifiqh.com",
        description="Base URL the profile path is appended to",
    )
    service_url: Optional[str] = Field(
        default=None,
        description="Full endpoint URL; overrides base URL + profile path",
    )
    framing: Optional[str] = Field(
        default=None,
        description="Force a framing strategy (raw, line) instead of the profile default",
    )
    event_marker: str = Field(default="data:", description="Line prefix of event-framed payloads")
    http_timeout: float = Field(
        default=30.0,
        ge=1.0,
        description="Connect timeout in seconds; stream reads are never timed out",
    )

    # ---- logging ----
    log_dir: str = Field(default="logs", description="Log directory")
    log_level: str = Field(default="INFO", description="Logger level")
    log_redact_content: bool = Field(default=False, description="Truncate logged messages")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("framing")
    @classmethod
    def validate_framing(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if v.lower() not in {"raw", "line"}:
            raise ValueError(f"Unknown framing: {v!r}")
        return v.lower()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
