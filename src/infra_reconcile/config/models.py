"""Pydantic models for configuration schema."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = Field(..., min_length=1, max_length=64, pattern="^[a-z0-9-]+$")
    description: Optional[str] = None


class ProviderConfig(BaseModel):
    """Provider settings threaded through graph building and execution.

    Frozen so a single instance can be shared by the builder, the adapters
    and the executor without anyone mutating it mid-run.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field("aws", pattern="^(aws|local)$")
    region: str = Field("us-east-1", min_length=1)
    profile: Optional[str] = None
    endpoint_url: Optional[str] = Field(
        None, description="Override endpoint, e.g. a LocalStack gateway"
    )
    poll_interval: float = Field(2.0, gt=0, description="Seconds between request status polls")
    poll_timeout: float = Field(900.0, gt=0, description="Seconds to wait for one operation")

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate region format (e.g. us-east-1, ap-southeast-2)."""
        parts = v.split("-")
        if len(parts) < 3 or not parts[-1].isdigit():
            raise ValueError(f"Invalid region: {v}. Expected a name like 'us-east-1'")
        return v


class RetryConfig(BaseModel):
    """Backoff settings for transient provider failures."""

    max_attempts: int = Field(5, ge=1, le=20)
    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    exponential_base: float = Field(2.0, ge=1)
    jitter: bool = True

    @model_validator(mode="after")
    def validate_delays(self):
        """max_delay must not be below base_delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        return self


class EngineConfig(BaseModel):
    """Executor settings."""

    max_workers: int = Field(4, ge=1, le=64)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class StateConfig(BaseModel):
    """State store settings."""

    path: Optional[str] = Field(
        None, description="State file path; defaults to .reconcile/state/<project>.json"
    )
    lock_timeout: float = Field(30.0, ge=0)


class ReconcileConfig(BaseModel):
    """Root of reconcile.yaml."""

    project: ProjectConfig
    template: str = Field("infrastructure.yaml", min_length=1)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    variables: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("variables")
    @classmethod
    def validate_variables(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """Variable names must be usable inside ${var.<name>}."""
        for key in v:
            if not key or not key.replace("_", "").replace("-", "").isalnum():
                raise ValueError(f"Invalid variable name: {key!r}")
        return v

    def state_path(self) -> str:
        """Resolved state file path."""
        return self.state.path or f".reconcile/state/{self.project.name}.json"
