"""Provisioner backed by the AWS Cloud Control API.

Cloud Control exposes one create/read/update/delete surface for every
CloudFormation resource type, so a single adapter covers whole templates.
Each mutating call returns a request token that is polled until the
operation settles.
"""

import json
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import ClientError

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.utils.aws_client import AWSClientManager
from infra_reconcile.utils.errors import (
    ErrorContext,
    FatalProviderError,
    ProviderError,
    TransientProviderError,
)
from infra_reconcile.utils.logging import get_logger

from .base import BaseProvisioner, ProvisionRequest, ProvisionResult

logger = get_logger(__name__)

# ProgressEvent error codes worth retrying
TRANSIENT_EVENT_CODES = {
    'Throttling',
    'ServiceInternalError',
    'NetworkFailure',
    'ServiceTimeout',
    'InternalFailure',
    'HandlerInternalFailure',
    'ResourceConflict',
}

SETTLED_STATUSES = {'SUCCESS', 'FAILED', 'CANCEL_COMPLETE'}


def build_patch(prior: Dict[str, Any], desired: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Build an RFC 6902 patch over top-level properties.

    Args:
        prior: Properties sent on the last apply
        desired: Properties to converge to

    Returns:
        List of add/replace/remove operations
    """
    patch = []
    for key, value in desired.items():
        path = '/' + _escape(key)
        if key not in prior:
            patch.append({'op': 'add', 'path': path, 'value': value})
        elif prior[key] != value:
            patch.append({'op': 'replace', 'path': path, 'value': value})

    for key in prior:
        if key not in desired:
            patch.append({'op': 'remove', 'path': '/' + _escape(key)})

    return patch


def _escape(key: str) -> str:
    return str(key).replace('~', '~0').replace('/', '~1')


class CloudControlProvisioner(BaseProvisioner):
    """Applies resources through cloudcontrol create/update/delete_resource."""

    def __init__(
        self,
        provider_config: ProviderConfig,
        client_manager: Optional[AWSClientManager] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize provisioner.

        Args:
            provider_config: Region, profile, endpoint and polling settings
            client_manager: Shared client manager; one is built if omitted
            sleep: Function used to wait between status polls
        """
        super().__init__(provider_config)
        self.client_manager = client_manager or AWSClientManager(provider_config)
        self.sleep = sleep

    @property
    def client(self):
        return self.client_manager.get_client('cloudcontrol')

    def create(self, request: ProvisionRequest) -> ProvisionResult:
        event = self._submit(request, lambda: self.client.create_resource(
            TypeName=request.type,
            DesiredState=json.dumps(request.properties, sort_keys=True),
            ClientToken=request.client_token,
        ))
        physical_id = event['Identifier']

        return ProvisionResult(
            physical_id=physical_id,
            outputs=self._read(request.type, physical_id)
        )

    def update(self, request: ProvisionRequest) -> ProvisionResult:
        if not request.physical_id:
            raise FatalProviderError(
                f"Cannot update {request.identifier}: no physical id recorded",
                context=self._context(request, 'update')
            )

        patch = build_patch(request.prior_properties or {}, request.properties)
        if patch:
            self._submit(request, lambda: self.client.update_resource(
                TypeName=request.type,
                Identifier=request.physical_id,
                PatchDocument=json.dumps(patch),
                ClientToken=request.client_token,
            ))
        else:
            logger.debug(f"No property changes for {request.identifier}")

        return ProvisionResult(
            physical_id=request.physical_id,
            outputs=self._read(request.type, request.physical_id)
        )

    def delete(self, request: ProvisionRequest) -> None:
        if not request.physical_id:
            logger.warning(f"No physical id recorded for {request.identifier}; nothing to delete")
            return

        try:
            self._submit(request, lambda: self.client.delete_resource(
                TypeName=request.type,
                Identifier=request.physical_id,
                ClientToken=request.client_token,
            ))
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') != 'ResourceNotFoundException':
                raise
            logger.info(f"{request.identifier} is already gone")
        except FatalProviderError as e:
            if e.context.additional_info.get('error_code') != 'NotFound':
                raise
            logger.info(f"{request.identifier} is already gone")

    def _submit(
        self,
        request: ProvisionRequest,
        call: Callable[[], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Send a mutating call once per op and wait for it to settle.

        When an earlier attempt already got a request token, the retry
        polls that request again instead of calling ``call``. A request
        that settles as failed is forgotten, together with its client
        token, so the next attempt submits afresh.
        """
        if request.request_token:
            logger.info(f"Resuming {request.identifier} request {request.request_token}")
            event = self._status(request.request_token)
        else:
            logger.info(f"Submitting {request.type} {request.identifier}")
            event = call()['ProgressEvent']
            request.request_token = event.get('RequestToken')

        try:
            return self._wait(event, request)
        except ProviderError as e:
            if e.context.additional_info.get('settled'):
                request.request_token = None
                request.client_token = str(uuid.uuid4())
            raise

    def _status(self, token: str) -> Dict[str, Any]:
        return self.client.get_resource_request_status(RequestToken=token)['ProgressEvent']

    def _read(self, type_name: str, physical_id: str) -> Dict[str, Any]:
        """Current properties reported by the provider."""
        response = self.client.get_resource(TypeName=type_name, Identifier=physical_id)
        properties = response['ResourceDescription'].get('Properties') or '{}'
        return json.loads(properties)

    def _wait(self, event: Dict[str, Any], request: ProvisionRequest) -> Dict[str, Any]:
        """Poll a request until it settles.

        Returns:
            The final ProgressEvent

        Raises:
            TransientProviderError: On a retryable error code or poll timeout
            FatalProviderError: On any other failure
        """
        deadline = time.monotonic() + self.provider_config.poll_timeout
        token = event.get('RequestToken')

        while event.get('OperationStatus') not in SETTLED_STATUSES:
            if time.monotonic() > deadline:
                raise TransientProviderError(
                    f"Timed out after {self.provider_config.poll_timeout}s waiting for "
                    f"{event.get('Operation', 'operation')} of {request.identifier}",
                    context=self._context(request, event.get('Operation'), token)
                )
            self.sleep(self.provider_config.poll_interval)
            event = self._status(token)

        if event['OperationStatus'] == 'SUCCESS':
            return event

        code = event.get('ErrorCode')
        message = (
            f"{event.get('Operation', 'Operation')} of {request.identifier} "
            f"{event['OperationStatus'].lower()}: {event.get('StatusMessage') or code or 'unknown error'}"
        )
        context = self._context(request, event.get('Operation'), token)
        context.additional_info.update(error_code=code, settled=True)

        if code in TRANSIENT_EVENT_CODES:
            raise TransientProviderError(message, context=context)
        raise FatalProviderError(message, context=context)

    def _context(
        self,
        request: ProvisionRequest,
        operation: Optional[str],
        token: Optional[str] = None
    ) -> ErrorContext:
        return ErrorContext(
            resource_id=request.identifier,
            resource_type=request.type,
            operation=(operation or '').lower() or None,
            aws_service='cloudcontrol',
            aws_operation=operation,
            request_id=token,
        )
