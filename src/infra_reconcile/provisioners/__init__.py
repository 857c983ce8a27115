"""Provider adapters that apply individual resource changes."""

from infra_reconcile.config.models import ProviderConfig

from .base import BaseProvisioner, ProvisionerRegistry, ProvisionRequest, ProvisionResult
from .cloudcontrol import CloudControlProvisioner
from .local import LocalProvisioner


def create_registry(provider_config: ProviderConfig) -> ProvisionerRegistry:
    """Build the provisioner registry for a provider.

    Args:
        provider_config: Provider settings; ``name`` selects the adapter

    Returns:
        Registry whose default adapter handles every resource type
    """
    if provider_config.name == "local":
        return ProvisionerRegistry(default=LocalProvisioner(provider_config))
    return ProvisionerRegistry(default=CloudControlProvisioner(provider_config))


__all__ = [
    "BaseProvisioner",
    "CloudControlProvisioner",
    "LocalProvisioner",
    "ProvisionRequest",
    "ProvisionResult",
    "ProvisionerRegistry",
    "create_registry",
]
