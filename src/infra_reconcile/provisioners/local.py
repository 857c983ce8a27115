"""Local simulated provisioner.

Assigns deterministic fake handles and echoes properties back as outputs,
so templates can be planned and applied end to end without a cloud account.
"""

import hashlib
import threading
from typing import Any, Dict

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.utils.logging import get_logger

from .base import BaseProvisioner, ProvisionRequest, ProvisionResult

logger = get_logger(__name__)

LOCAL_ACCOUNT = "000000000000"

# Computed attributes some types report besides Arn and Id
SIMULATED_OUTPUTS = {
    "AWS::EC2::SecurityGroup": {"GroupId": "{physical_id}"},
    "AWS::ElasticLoadBalancingV2::LoadBalancer": {
        "DNSName": "{name}-{digest}.{region}.elb.localhost",
        "CanonicalHostedZoneID": "ZLOCAL{digest}",
    },
    "AWS::ECR::Repository": {
        "RepositoryUri": "{account}.dkr.ecr.{region}.localhost/{name}",
    },
}


class LocalProvisioner(BaseProvisioner):
    """Provisioner that keeps resources in memory."""

    def __init__(self, provider_config: ProviderConfig):
        super().__init__(provider_config)
        self.resources: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def create(self, request: ProvisionRequest) -> ProvisionResult:
        physical_id = self._physical_id(request)
        outputs = self._outputs(request, physical_id)

        with self._lock:
            self.resources[physical_id] = outputs

        logger.debug(f"Simulated create of {request.identifier} as {physical_id}")
        return ProvisionResult(physical_id=physical_id, outputs=outputs)

    def update(self, request: ProvisionRequest) -> ProvisionResult:
        physical_id = request.physical_id or self._physical_id(request)
        outputs = self._outputs(request, physical_id)

        with self._lock:
            self.resources[physical_id] = outputs

        logger.debug(f"Simulated update of {request.identifier} ({physical_id})")
        return ProvisionResult(physical_id=physical_id, outputs=outputs)

    def delete(self, request: ProvisionRequest) -> None:
        with self._lock:
            self.resources.pop(request.physical_id, None)

        logger.debug(f"Simulated delete of {request.identifier} ({request.physical_id})")

    def _physical_id(self, request: ProvisionRequest) -> str:
        digest = hashlib.sha1(request.identifier.encode()).hexdigest()[:12]
        slug = request.type.split("::")[-1].lower()
        return f"{slug}-{digest}"

    def _outputs(self, request: ProvisionRequest, physical_id: str) -> Dict[str, Any]:
        parts = request.type.split("::")
        service = parts[1].lower() if len(parts) > 1 else parts[0].lower()
        arn = (
            f"arn:local:{service}:{self.provider_config.region}:{LOCAL_ACCOUNT}:"
            f"{parts[-1].lower()}/{physical_id}"
        )
        fields = {
            "physical_id": physical_id,
            "name": request.name.replace("_", "-"),
            "digest": physical_id.rsplit("-", 1)[-1],
            "region": self.provider_config.region,
            "account": LOCAL_ACCOUNT,
        }
        computed = {
            key: template.format(**fields)
            for key, template in SIMULATED_OUTPUTS.get(request.type, {}).items()
        }
        return {**request.properties, **computed, "Arn": arn, "Id": physical_id}
