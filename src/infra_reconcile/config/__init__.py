"""Configuration management for the reconciliation engine."""

from .models import (
    EngineConfig,
    ProjectConfig,
    ProviderConfig,
    ReconcileConfig,
    RetryConfig,
    StateConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "EngineConfig",
    "ProjectConfig",
    "ProviderConfig",
    "ReconcileConfig",
    "RetryConfig",
    "StateConfig",
    "Config",
    "ConfigValidationError",
]
