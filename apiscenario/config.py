# apiscenario/config.py
"""
Run configuration.

`Settings` is an immutable value handed to the engine at construction.
Sources, lowest to highest priority:

1. defaults below
2. YAML config file (`Settings.load(path)`)
3. `.env` file in the working directory
4. `APISCENARIO_*` environment variables (e.g. APISCENARIO_BASE_URL,
   APISCENARIO_TIMEOUT_SEC, APISCENARIO_VERIFY_SSL)

Config file layout (flat keys are accepted as well):

    global:
      base_url: https://api.example.com
      headers: {Accept: application/json}
      variables: {api_version: v2}
    defaults:
      http_timeout: 30s
      max_retries: 2
      retry_delay: 500ms
      follow_redirect: true
      verify_ssl: true
    environments:
      staging:
        base_url: https://staging.example.com
        variables: {user: qa}
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Type, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from apiscenario.errors import ConfigError
from apiscenario.models import parse_duration
from apiscenario.values import to_text

logger = logging.getLogger(__name__)


def _stringify_headers(v: Any) -> Dict[str, str]:
    return {str(k): to_text(val) for k, val in (v or {}).items()}


class EnvironmentConfig(BaseModel):
    """Named environment override"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    base_url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("headers", mode="before")
    @classmethod
    def _headers(cls, v: Any) -> Dict[str, str]:
        return _stringify_headers(v)


class Settings(BaseSettings):
    base_url: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    timeout_sec: float = 30.0
    max_retries: int = 0
    retry_delay_sec: float = 1.0
    follow_redirects: bool = True
    verify_ssl: bool = True
    environments: Dict[str, EnvironmentConfig] = Field(default_factory=dict)
    report_format: str = "console"
    report_output: str = ""

    model_config = SettingsConfigDict(
        env_prefix="APISCENARIO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    @field_validator("headers", mode="before")
    @classmethod
    def _headers(cls, v: Any) -> Dict[str, str]:
        return _stringify_headers(v)

    @field_validator("timeout_sec", "retry_delay_sec", mode="before")
    @classmethod
    def _durations(cls, v: Any) -> float:
        parsed = parse_duration(v)
        return 0.0 if parsed is None else parsed

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the config file (passed as init kwargs)
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    # ==================== Loading ====================

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "Settings":
        values: Dict[str, Any] = {}
        if path:
            values = _read_config_file(Path(path))
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(f"invalid configuration: {e}") from e

    # ==================== Environments ====================

    def get_environment(self, name: str) -> Optional[EnvironmentConfig]:
        return self.environments.get(name)

    def merge_environment(self, name: str) -> "Settings":
        """Return a copy with the named environment folded into the globals"""
        env = self.get_environment(name)
        if env is None:
            raise ConfigError(f"unknown environment: {name}")
        return self.model_copy(update={
            "base_url": env.base_url or self.base_url,
            "headers": {**self.headers, **env.headers},
            "variables": {**self.variables, **env.variables},
        })


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"failed to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"config file {path} must contain a mapping")

    values: Dict[str, Any] = {}
    glob = raw.get("global") or {}
    defaults = raw.get("defaults") or {}

    mapping = {
        "base_url": glob.get("base_url"),
        "headers": glob.get("headers"),
        "variables": glob.get("variables"),
        "timeout_sec": defaults.get("http_timeout", glob.get("timeout")),
        "max_retries": defaults.get("max_retries", glob.get("retries")),
        "retry_delay_sec": defaults.get("retry_delay"),
        "follow_redirects": defaults.get("follow_redirect"),
        "verify_ssl": defaults.get("verify_ssl"),
        "environments": raw.get("environments"),
    }
    for key, value in mapping.items():
        if value is not None:
            values[key] = value

    # Flat layout
    for key in Settings.model_fields:
        if key in raw and key not in values:
            values[key] = raw[key]

    logger.debug(f"Loaded config file {path} ({len(values)} keys)")
    return values
