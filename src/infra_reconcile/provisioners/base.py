"""Base provisioner interface and registry."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.utils.errors import ErrorContext, FatalProviderError


@dataclass
class ProvisionRequest:
    """Everything an adapter needs to apply one change.

    The executor builds one request per op and reuses it across retries,
    so adapters may keep per-op progress on it. ``client_token`` is the
    idempotency token for the op's mutating call; ``request_token`` is set
    by adapters that poll an asynchronous request and want a retry to
    resume polling instead of submitting the change again.
    """
    identifier: str
    type: str
    name: str
    properties: Dict[str, Any] = field(default_factory=dict)
    physical_id: Optional[str] = None
    prior_properties: Optional[Dict[str, Any]] = None
    client_token: str = field(default_factory=lambda: str(uuid.uuid4()))
    request_token: Optional[str] = None


@dataclass
class ProvisionResult:
    """What the provider reports after a create or update."""
    physical_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)


class BaseProvisioner(ABC):
    """Base class for provider adapters.

    Adapters raise TransientProviderError for failures worth retrying and
    FatalProviderError for everything else. Raw SDK exceptions are also
    accepted; the executor classifies them.
    """

    def __init__(self, provider_config: ProviderConfig):
        """Initialize provisioner.

        Args:
            provider_config: Provider settings (region, profile, endpoint)
        """
        self.provider_config = provider_config

    @abstractmethod
    def create(self, request: ProvisionRequest) -> ProvisionResult:
        """Create the resource.

        Args:
            request: Resolved properties of the new resource

        Returns:
            ProvisionResult with the provider-assigned handle
        """

    @abstractmethod
    def update(self, request: ProvisionRequest) -> ProvisionResult:
        """Update the resource in place.

        Args:
            request: Resolved properties, the existing handle and the
                previously applied properties

        Returns:
            ProvisionResult, possibly with a new handle
        """

    @abstractmethod
    def delete(self, request: ProvisionRequest) -> None:
        """Delete the resource. Deleting an absent resource succeeds.

        Args:
            request: Handle and type of the resource to delete
        """


class ProvisionerRegistry:
    """Maps resource types to provisioners, with an optional fallback."""

    def __init__(
        self,
        provisioners: Optional[Dict[str, BaseProvisioner]] = None,
        default: Optional[BaseProvisioner] = None
    ):
        self.provisioners: Dict[str, BaseProvisioner] = dict(provisioners or {})
        self.default = default

    def register(self, resource_type: str, provisioner: BaseProvisioner) -> None:
        self.provisioners[resource_type] = provisioner

    def get(self, resource_type: str) -> BaseProvisioner:
        """Get the provisioner for a resource type.

        Raises:
            FatalProviderError: If no provisioner handles the type
        """
        provisioner = self.provisioners.get(resource_type, self.default)
        if provisioner is None:
            raise FatalProviderError(
                f"No provisioner found for resource type: {resource_type}",
                context=ErrorContext(resource_type=resource_type),
                suggestions=[f"Register a provisioner for {resource_type}"]
            )
        return provisioner
