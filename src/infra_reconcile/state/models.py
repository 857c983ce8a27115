"""State file data models."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


STATE_VERSION = "1"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateRecord(BaseModel):
    """Last-applied snapshot of one resource."""

    identifier: str = Field(..., description="Identifier, Type.name")
    type: str = Field(..., description="Resource type (e.g., AWS::EC2::VPC)")
    name: str = Field(..., description="Logical name")
    physical_id: Optional[str] = Field(None, description="Provider-assigned id/ARN")
    attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Declared attributes with references as expressions"
    )
    resolved_attributes: Dict[str, Any] = Field(
        default_factory=dict, description="Attributes as sent to the provider"
    )
    outputs: Dict[str, Any] = Field(
        default_factory=dict, description="Attributes reported back by the provider"
    )
    dependencies: List[str] = Field(
        default_factory=list, description="Identifiers this resource referenced when applied"
    )
    position: int = Field(0, description="Position of the declaration in its document")
    updated_at: datetime = Field(default_factory=utcnow)


class StateFile(BaseModel):
    """Complete persisted state of one project."""

    version: str = Field(STATE_VERSION, description="State file format version")
    project: str = Field("default", description="Project name")
    region: Optional[str] = Field(None, description="Provider region at last write")
    serial: int = Field(0, description="Incremented on every write")
    timestamp: datetime = Field(default_factory=utcnow, description="Last update timestamp")
    records: Dict[str, StateRecord] = Field(
        default_factory=dict, description="Records keyed by identifier, in first-applied order"
    )
    outputs: Dict[str, Any] = Field(default_factory=dict, description="Resolved template outputs")
