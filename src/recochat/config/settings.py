"""
config/settings.py — RecoChat Runtime Settings

Merges config.yaml (defaults/structure) with .env (secrets).
Pydantic-powered — all fields are validated and typed.

  - Field validators reject bad values at parse time (non-http base_url,
    negative retry counts, unknown log levels)
  - validate_all() performs cross-field startup validation and raises
    ConfigError listing every problem found
  - load_settings() respects RECOCHAT_CONFIG as a fallback when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(Exception):
    """Raised by validate_all() when one or more config problems are found."""


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AppConfig(BaseModel):
    name: str = "RecoChat"
    version: str = "1.0.0"


class ServiceConfig(BaseModel):
    base_url: str = "http://localhost:8000"
    agent_path: str = "/api/agent"
    agent_id: str = "69a2771fcc44e0dcaf39e887"
    timeout_seconds: float = 120.0

    @field_validator("base_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"service.base_url must start with http:// or https://, got '{v}'"
            )
        return v.rstrip("/")

    @field_validator("agent_path")
    @classmethod
    def _leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    @field_validator("timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("service.timeout_seconds must be > 0")
        return v


class RetryConfig(BaseModel):
    """Backoff for transient service failures: attempt × base_delay_seconds."""
    max_retries: int = 2
    base_delay_seconds: float = 2.0

    @field_validator("max_retries")
    @classmethod
    def _non_negative_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("retry.max_retries must be >= 0")
        return v

    @field_validator("base_delay_seconds")
    @classmethod
    def _non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("retry.base_delay_seconds must be >= 0")
        return v


class StorageConfig(BaseModel):
    path: str = "./data/storage.json"
    sessions_key: str = "product-rec-sessions"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 100
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    RecoChat runtime settings.

    Priority (highest to lowest):
      1. Constructor arguments (config.yaml sections, CLI overrides)
      2. Environment variables
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    agent_api_key: Optional[str] = Field(default=None, alias="AGENT_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    app: AppConfig = Field(default_factory=AppConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("agent_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null"):
            return None
        return str(v)

    # -- Convenience properties ----------------------------------------------

    @property
    def agent_id(self) -> str:
        return self.service.agent_id

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def log_json_format(self) -> bool:
        return self.logging.json_format

    @property
    def log_console_output(self) -> bool:
        return self.logging.console_output

    @property
    def storage_path(self) -> Path:
        return Path(self.storage.path).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        catches what they can't see on their own.
        """
        errors: list[str] = []

        if not self.service.agent_id.strip():
            errors.append("service.agent_id must not be empty.")

        if not self.storage.sessions_key.strip():
            errors.append("storage.sessions_key must not be empty.")

        storage_path = self.storage_path
        if storage_path.exists() and storage_path.is_dir():
            errors.append(
                f"storage.path '{self.storage.path}' is a directory; "
                f"point it at a file such as ./data/storage.json."
            )

        worst_case = sum(
            (i + 1) * self.retry.base_delay_seconds for i in range(self.retry.max_retries)
        )
        if worst_case > 10 * 60:
            errors.append(
                f"retry settings allow {worst_case:.0f}s of backoff per turn; "
                f"lower retry.max_retries or retry.base_delay_seconds."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nRecoChat startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"app", "service", "retry", "storage", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. RECOCHAT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("RECOCHAT_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(
    config_path: str | Path | None = None,
    overrides: Optional[dict[str, dict[str, Any]]] = None,
) -> Settings:
    """
    Load settings by merging config.yaml with environment variables.

    `overrides` maps section → {field: value} and wins over the YAML file
    (used for --base-url / --agent-id style CLI flags).
    """
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))

    init_kwargs: dict[str, Any] = {
        k: dict(v) if isinstance(v, dict) else v
        for k, v in yaml_data.items()
        if k in _KNOWN_SECTIONS
    }
    for section, values in (overrides or {}).items():
        merged = dict(init_kwargs.get(section) or {})
        merged.update({k: v for k, v in values.items() if v is not None})
        init_kwargs[section] = merged

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """Return the global Settings singleton, loading defaults on first use."""
    if _singleton is not None:
        return _singleton
    return load_settings()
