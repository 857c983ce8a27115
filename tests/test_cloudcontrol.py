import json
import uuid
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from infra_reconcile.config.models import ProviderConfig
from infra_reconcile.provisioners import (
    CloudControlProvisioner,
    LocalProvisioner,
    ProvisionRequest,
    create_registry,
)
from infra_reconcile.provisioners import cloudcontrol
from infra_reconcile.provisioners.cloudcontrol import build_patch
from infra_reconcile.utils.errors import FatalProviderError, TransientProviderError
from infra_reconcile.utils.retry import RetryStrategy


def event(status, operation="CREATE", identifier=None, code=None, message=None):
    progress = {"RequestToken": "token-1", "Operation": operation, "OperationStatus": status}
    if identifier:
        progress["Identifier"] = identifier
    if code:
        progress["ErrorCode"] = code
    if message:
        progress["StatusMessage"] = message
    return {"ProgressEvent": progress}


@pytest.fixture
def client():
    client = MagicMock()
    client.get_resource.return_value = {
        "ResourceDescription": {"Identifier": "vpc-123", "Properties": json.dumps({"VpcId": "vpc-123", "CidrBlock": "10.0.0.0/16"})}
    }
    return client


@pytest.fixture
def provisioner(client):
    manager = MagicMock()
    manager.get_client.return_value = client
    config = ProviderConfig(region="eu-west-1", poll_interval=1, poll_timeout=60)
    return CloudControlProvisioner(config, client_manager=manager, sleep=lambda seconds: None)


@pytest.fixture
def request_():
    return ProvisionRequest(
        identifier="AWS::EC2::VPC.main",
        type="AWS::EC2::VPC",
        name="main",
        properties={"CidrBlock": "10.0.0.0/16"},
    )


def test_build_patch():
    patch = build_patch(
        {"Keep": 1, "Change": "a", "Gone": True},
        {"Keep": 1, "Change": "b", "New/Key": [1]},
    )

    assert patch == [
        {"op": "replace", "path": "/Change", "value": "b"},
        {"op": "add", "path": "/New~1Key", "value": [1]},
        {"op": "remove", "path": "/Gone"},
    ]


def test_create_polls_until_success(provisioner, client, request_):
    client.create_resource.return_value = event("IN_PROGRESS")
    client.get_resource_request_status.side_effect = [
        event("IN_PROGRESS"),
        event("SUCCESS", identifier="vpc-123"),
    ]

    result = provisioner.create(request_)

    assert result.physical_id == "vpc-123"
    assert result.outputs == {"VpcId": "vpc-123", "CidrBlock": "10.0.0.0/16"}
    client.create_resource.assert_called_once_with(
        TypeName="AWS::EC2::VPC",
        DesiredState='{"CidrBlock": "10.0.0.0/16"}',
        ClientToken=request_.client_token,
    )
    assert client.get_resource_request_status.call_count == 2
    client.get_resource.assert_called_once_with(TypeName="AWS::EC2::VPC", Identifier="vpc-123")


def test_retryable_failure_code_is_transient(provisioner, client, request_):
    client.create_resource.return_value = event("FAILED", code="Throttling", message="Rate exceeded")

    with pytest.raises(TransientProviderError) as exc_info:
        provisioner.create(request_)

    assert "Rate exceeded" in exc_info.value.message
    assert exc_info.value.context.additional_info["error_code"] == "Throttling"


def test_other_failure_code_is_fatal(provisioner, client, request_):
    client.create_resource.return_value = event("FAILED", code="InvalidRequest", message="bad CIDR")

    with pytest.raises(FatalProviderError) as exc_info:
        provisioner.create(request_)

    assert exc_info.value.context.aws_service == "cloudcontrol"
    assert exc_info.value.context.request_id == "token-1"


def test_poll_timeout_is_transient(client, request_, monkeypatch):
    manager = MagicMock()
    manager.get_client.return_value = client
    config = ProviderConfig(poll_interval=1, poll_timeout=25)
    provisioner = CloudControlProvisioner(config, client_manager=manager, sleep=lambda seconds: None)
    client.create_resource.return_value = event("IN_PROGRESS")
    client.get_resource_request_status.return_value = event("IN_PROGRESS")
    clock = iter(range(0, 1000, 10))
    monkeypatch.setattr(cloudcontrol.time, "monotonic", lambda: next(clock))

    with pytest.raises(TransientProviderError, match="Timed out"):
        provisioner.create(request_)


@pytest.fixture
def retrying():
    return RetryStrategy(max_attempts=3, base_delay=0, jitter=False, sleep=lambda delay: None)


def throttled(operation="GetResourceRequestStatus"):
    return ClientError({"Error": {"Code": "ThrottlingException", "Message": "Rate exceeded"}}, operation)


def test_throttled_poll_resumes_instead_of_creating_again(provisioner, client, request_, retrying):
    client.create_resource.return_value = event("IN_PROGRESS")
    client.get_resource_request_status.side_effect = [
        throttled(),
        event("SUCCESS", identifier="vpc-123"),
    ]

    result = retrying.execute_with_retry(lambda: provisioner.create(request_))

    assert result.physical_id == "vpc-123"
    assert client.create_resource.call_count == 1
    assert [c.kwargs for c in client.get_resource_request_status.call_args_list] == [
        {"RequestToken": "token-1"},
        {"RequestToken": "token-1"},
    ]


def test_poll_timeout_resumes_the_same_request(client, request_, retrying, monkeypatch):
    manager = MagicMock()
    manager.get_client.return_value = client
    config = ProviderConfig(poll_interval=1, poll_timeout=25)
    provisioner = CloudControlProvisioner(config, client_manager=manager, sleep=lambda seconds: None)
    client.create_resource.return_value = event("IN_PROGRESS")
    client.get_resource_request_status.side_effect = [event("IN_PROGRESS")] * 3 + [event("SUCCESS", identifier="vpc-123")]
    clock = iter(range(0, 1000, 10))
    monkeypatch.setattr(cloudcontrol.time, "monotonic", lambda: next(clock))

    result = retrying.execute_with_retry(lambda: provisioner.create(request_))

    assert result.physical_id == "vpc-123"
    assert client.create_resource.call_count == 1


def test_failed_request_is_resubmitted_with_a_new_client_token(provisioner, client, request_, retrying):
    client.create_resource.side_effect = [
        event("FAILED", code="Throttling", message="Rate exceeded"),
        {"ProgressEvent": {**event("SUCCESS", identifier="vpc-123")["ProgressEvent"], "RequestToken": "token-2"}},
    ]

    result = retrying.execute_with_retry(lambda: provisioner.create(request_))

    assert result.physical_id == "vpc-123"
    tokens = [c.kwargs["ClientToken"] for c in client.create_resource.call_args_list]
    assert len(tokens) == 2
    assert tokens[0] != tokens[1]
    client.get_resource_request_status.assert_not_called()


def test_each_request_gets_its_own_client_token(request_):
    other = ProvisionRequest(identifier=request_.identifier, type=request_.type, name=request_.name)

    assert uuid.UUID(request_.client_token)
    assert request_.client_token != other.client_token
    assert request_.request_token is None


def test_throttled_read_after_success_does_not_update_again(provisioner, client, request_, retrying):
    request_.physical_id = "vpc-123"
    request_.prior_properties = {"CidrBlock": "10.1.0.0/16"}
    client.update_resource.return_value = event("SUCCESS", operation="UPDATE", identifier="vpc-123")
    client.get_resource_request_status.return_value = event("SUCCESS", operation="UPDATE", identifier="vpc-123")
    description = client.get_resource.return_value
    client.get_resource.side_effect = [throttled("GetResource"), description]

    result = retrying.execute_with_retry(lambda: provisioner.update(request_))

    assert result.outputs["VpcId"] == "vpc-123"
    assert client.update_resource.call_count == 1
    assert client.update_resource.call_args.kwargs["ClientToken"] == request_.client_token


def test_update_sends_patch(provisioner, client, request_):
    request_.physical_id = "vpc-123"
    request_.prior_properties = {"CidrBlock": "10.0.0.0/16", "Tags": []}
    client.update_resource.return_value = event("SUCCESS", operation="UPDATE", identifier="vpc-123")

    result = provisioner.update(request_)

    assert result.physical_id == "vpc-123"
    kwargs = client.update_resource.call_args.kwargs
    assert kwargs["Identifier"] == "vpc-123"
    assert json.loads(kwargs["PatchDocument"]) == [{"op": "remove", "path": "/Tags"}]


def test_update_without_property_changes_skips_the_call(provisioner, client, request_):
    request_.physical_id = "vpc-123"
    request_.prior_properties = dict(request_.properties)

    provisioner.update(request_)

    client.update_resource.assert_not_called()
    client.get_resource.assert_called_once()


def test_update_without_handle_is_fatal(provisioner, request_):
    with pytest.raises(FatalProviderError, match="no physical id"):
        provisioner.update(request_)


def test_delete_of_missing_resource_succeeds(provisioner, client, request_):
    request_.physical_id = "vpc-123"
    client.delete_resource.side_effect = ClientError(
        {"Error": {"Code": "ResourceNotFoundException", "Message": "gone"}}, "DeleteResource"
    )

    provisioner.delete(request_)

    client.delete_resource.side_effect = None
    client.delete_resource.return_value = event("FAILED", operation="DELETE", code="NotFound")

    provisioner.delete(request_)


def test_delete_failure_propagates(provisioner, client, request_):
    request_.physical_id = "vpc-123"
    client.delete_resource.return_value = event("FAILED", operation="DELETE", code="AccessDenied")

    with pytest.raises(FatalProviderError):
        provisioner.delete(request_)


def test_registry_selects_adapter_by_provider():
    assert isinstance(create_registry(ProviderConfig(name="local")).get("AWS::S3::Bucket"), LocalProvisioner)
    assert isinstance(create_registry(ProviderConfig()).get("AWS::S3::Bucket"), CloudControlProvisioner)


def test_local_provisioner_reports_computed_outputs():
    provisioner = LocalProvisioner(ProviderConfig(name="local", region="eu-west-1"))
    request = ProvisionRequest(
        identifier="AWS::ECR::Repository.app",
        type="AWS::ECR::Repository",
        name="app_repo",
        properties={"RepositoryName": "demo"},
    )

    created = provisioner.create(request)
    again = provisioner.create(request)

    assert created.physical_id == again.physical_id
    assert created.physical_id.startswith("repository-")
    assert created.outputs["RepositoryName"] == "demo"
    assert created.outputs["RepositoryUri"] == "000000000000.dkr.ecr.eu-west-1.localhost/app-repo"
    assert created.outputs["Arn"] == f"arn:local:ecr:eu-west-1:000000000000:repository/{created.physical_id}"

    request.physical_id = created.physical_id
    provisioner.delete(request)
    assert provisioner.resources == {}
