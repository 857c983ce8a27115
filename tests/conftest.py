import threading
from collections import defaultdict, deque
from pathlib import Path

import pytest

from infra_reconcile.config.models import EngineConfig, ProviderConfig
from infra_reconcile.orchestrator import GraphBuilder, ReconciliationEngine
from infra_reconcile.provisioners import BaseProvisioner, ProvisionerRegistry, ProvisionResult
from infra_reconcile.state import StateStore
from infra_reconcile.utils.retry import RetryStrategy

EXAMPLES = Path(__file__).resolve().parent.parent / "examples"


class FakeProvisioner(BaseProvisioner):
    """Records every call and raises queued errors per identifier."""

    def __init__(self, provider_config=None):
        super().__init__(provider_config or ProviderConfig(name="local"))
        self.calls = []
        self.requests = {}
        self.errors = defaultdict(deque)
        self.hooks = {}
        self._lock = threading.Lock()

    def fail(self, identifier, *errors):
        """Raise ``errors`` one per call for ``identifier``, then succeed."""
        self.errors[identifier].extend(errors)

    def on_call(self, identifier, hook):
        self.hooks[identifier] = hook

    def actions(self, action=None):
        return [identifier for name, identifier in self.calls if action in (None, name)]

    def _call(self, action, request):
        with self._lock:
            self.calls.append((action, request.identifier))
            self.requests[(action, request.identifier)] = request
            error = self.errors[request.identifier].popleft() if self.errors[request.identifier] else None
        hook = self.hooks.get(request.identifier)
        if hook:
            hook(action, request)
        if error is not None:
            raise error

    def create(self, request):
        self._call("create", request)
        physical_id = f"{request.name}-0001"
        return ProvisionResult(
            physical_id=physical_id,
            outputs={**request.properties, "Arn": f"arn:fake:{request.name}"}
        )

    def update(self, request):
        self._call("update", request)
        return ProvisionResult(
            physical_id=request.physical_id,
            outputs={**request.properties, "Arn": f"arn:fake:{request.name}"}
        )

    def delete(self, request):
        self._call("delete", request)


def resource(type_, name, depends_on=None, **attributes):
    declaration = {"type": type_, "name": name, "attributes": attributes}
    if depends_on:
        declaration["depends_on"] = depends_on
    return declaration


@pytest.fixture
def provider_config():
    return ProviderConfig(name="local", region="eu-west-1")


@pytest.fixture
def builder(provider_config):
    return GraphBuilder(provider_config)


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state" / "test.json"), project="test")


@pytest.fixture
def fake_provisioner():
    return FakeProvisioner()


@pytest.fixture
def retry_strategy():
    return RetryStrategy(max_attempts=3, base_delay=0.5, jitter=False, sleep=lambda delay: None)


@pytest.fixture
def make_engine(store, fake_provisioner, provider_config, retry_strategy):
    def factory(max_workers=4, state_store=None):
        return ReconciliationEngine(
            state_store=state_store or store,
            provisioners=ProvisionerRegistry(default=fake_provisioner),
            provider_config=provider_config,
            engine_config=EngineConfig(max_workers=max_workers),
            retry_strategy=retry_strategy,
        )
    return factory


@pytest.fixture
def two_tier():
    """A has no references, B references A."""
    return {
        "resources": [
            resource("Test::Thing", "a", Size=1),
            resource("Test::Thing", "b", Parent="${Test::Thing.a.id}"),
        ]
    }
