"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# The storage layer caps every entity list it hands to the context assembler.
MAX_RECORDS_PER_ENTITY = 20


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 3
    timeout: int = 120


class AIConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 1000
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    request_timeout: float = Field(default=60.0, gt=0)  # seconds; expiry counts as model unavailable
    assistant_name: str = "Guru"


class QuotaConfig(BaseModel):
    default_role: str = "user"
    default_limit: int = Field(default=10, gt=0)
    role_limits: dict[str, int] = Field(default_factory=lambda: {"manager": 50})
    unlimited_roles: list[str] = Field(default_factory=lambda: ["admin", "developer_admin"])

    @field_validator("role_limits")
    @classmethod
    def _normalize_role_limits(cls, value: dict[str, int]) -> dict[str, int]:
        return {role.strip().lower(): limit for role, limit in value.items()}

    @field_validator("unlimited_roles")
    @classmethod
    def _normalize_unlimited_roles(cls, value: list[str]) -> list[str]:
        return [role.strip().lower() for role in value if role.strip()]

    @model_validator(mode="after")
    def _check_tier_ordering(self) -> QuotaConfig:
        for role, limit in self.role_limits.items():
            if limit < self.default_limit:
                raise ValueError(
                    f"Limit for role '{role}' ({limit}) is below the default limit ({self.default_limit})"
                )
        if self.default_role.strip().lower() in self.unlimited_roles:
            raise ValueError(f"Default role '{self.default_role}' cannot be unlimited")
        return self


class ContextConfig(BaseModel):
    max_records_per_entity: int = Field(default=MAX_RECORDS_PER_ENTITY, ge=1, le=MAX_RECORDS_PER_ENTITY)
    max_context_chars: int = Field(default=4000, ge=200)


class ReportingConfig(BaseModel):
    # Roles allowed to see every user's interaction logs; everyone else sees only their own.
    all_users_roles: list[str] = Field(default_factory=lambda: ["admin", "developer_admin", "manager"])

    @field_validator("all_users_roles")
    @classmethod
    def _normalize_roles(cls, value: list[str]) -> list[str]:
        return [role.strip().lower() for role in value if role.strip()]


class StorageConfig(BaseModel):
    db_path: str = "./data/guru_gateway.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    anthropic: Optional[AnthropicConfig] = None
    ai: AIConfig = Field(default_factory=AIConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(raw_data.get("data_dir", "./data"))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
