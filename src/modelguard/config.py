"""
Centralized engine configuration for ModelGuard.

Uses Pydantic BaseSettings for environment variable integration
and validation. Model catalogs themselves are described by
``modelguard.models.ModelConfiguration``; this module only covers the
settings of the engine evaluating them.

Configuration sources (in order of precedence):
1. Explicit constructor arguments
2. Environment variables (MODELGUARD_*)
3. .env file
4. Default values

Example:
    from modelguard.config import get_config

    config = get_config()
    print(config.admin_role)  # From MODELGUARD_ADMIN_ROLE or default

    # Override at runtime
    config = get_config(validated_cache_size=100)
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from modelguard.models import UPDATE_STRATEGIES


class ModelGuardConfig(BaseSettings):
    """
    Central configuration for the validation engine.

    All settings can be overridden via environment variables
    prefixed with MODELGUARD_.

    Example:
        export MODELGUARD_ADMIN_ROLE=_admin
        export MODELGUARD_VALIDATED_CACHE_SIZE=500
    """

    model_config = SettingsConfigDict(
        env_prefix="MODELGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service identification
    service_name: str = Field(
        default="modelguard",
        description="Service name for telemetry and log attribution",
    )

    # Validation defaults
    default_update_strategy: str = Field(
        default="",
        description="Update strategy used when a model configuration omits one",
    )
    admin_role: str = Field(
        default="_admin",
        description="Role which is always allowed to read and write",
    )
    validated_cache_size: int = Field(
        default=10000,
        ge=1,
        description="Maximum number of pending validated-document tokens",
    )
    validate_expressions: bool = Field(
        default=True,
        description="Compile every hook and constraint while resolving models",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for ModelGuard",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format (json for aggregation, text for console)",
    )
    maximum_representation_length: int = Field(
        default=1000,
        ge=3,
        description="Maximum length of a logged document representation",
    )
    maximum_representation_try_length: int = Field(
        default=1000000,
        ge=3,
        description="Documents with longer representations are not rendered",
    )

    @field_validator("default_update_strategy")
    @classmethod
    def validate_update_strategy(cls, v: str) -> str:
        """Only known update strategies are accepted."""
        if v not in UPDATE_STRATEGIES:
            raise ValueError(
                f"Unknown update strategy {v!r}, expected one of "
                f"{sorted(UPDATE_STRATEGIES)}"
            )
        return v


# Global singleton
_config: Optional[ModelGuardConfig] = None


def get_config(**overrides) -> ModelGuardConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        ModelGuardConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = ModelGuardConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
