"""YAML configuration loader."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from infra_reconcile.utils.errors import ConfigurationError
from infra_reconcile.utils.yaml_loader import load_yaml

from .models import ReconcileConfig


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        self.errors = errors or []
        super().__init__(message)

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Loads reconcile.yaml and exposes the validated settings."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to reconcile.yaml
        """
        self.config_path = Path(config_path)
        self.data: Dict[str, Any] = {}
        self.settings: Optional[ReconcileConfig] = None

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = load_yaml(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        self.settings = self.validate(self.data)
        return self

    @staticmethod
    def validate(data: Dict[str, Any]) -> ReconcileConfig:
        """Validate raw configuration data.

        Args:
            data: Parsed YAML mapping

        Returns:
            Validated configuration

        Raises:
            ConfigValidationError: With one entry per failing location
        """
        try:
            return ReconcileConfig(**data)
        except ValidationError as e:
            errors = [
                {"loc": list(error["loc"]), "msg": error["msg"]}
                for error in e.errors()
            ]
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )

    def template_path(self) -> Path:
        """Template path, relative paths being relative to the config file."""
        template = Path(self._require().template)
        if template.is_absolute():
            return template
        return self.config_path.parent / template

    def state_path(self) -> Path:
        """State file path, relative paths being relative to the config file."""
        state = Path(self._require().state_path())
        if state.is_absolute():
            return state
        return self.config_path.parent / state

    def _require(self) -> ReconcileConfig:
        if self.settings is None:
            raise ConfigValidationError("Configuration not loaded. Call load() first.")
        return self.settings

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self._require().model_dump()
