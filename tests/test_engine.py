import pytest

from conftest import EXAMPLES
from infra_reconcile.config.models import EngineConfig, ProviderConfig
from infra_reconcile.orchestrator import ChangeAction, ExecutionStatus, ReconciliationEngine
from infra_reconcile.provisioners import LocalProvisioner, ProvisionerRegistry
from infra_reconcile.state import StateStore

TEMPLATE = EXAMPLES / "ecs_fargate.yaml"


@pytest.fixture
def make_local_engine(store, retry_strategy):
    provider = ProviderConfig(name="local", region="us-east-1")

    def factory(**variables):
        return ReconciliationEngine(
            state_store=store,
            provisioners=ProvisionerRegistry(default=LocalProvisioner(provider)),
            provider_config=provider,
            engine_config=EngineConfig(max_workers=4),
            variables=variables,
            retry_strategy=retry_strategy,
        )
    return factory


def completed(events):
    return [identifier for identifier, status, _ in events if status == ExecutionStatus.SUCCESS]


def test_example_stack_lifecycle(make_local_engine, store):
    engine = make_local_engine()
    graph = engine.load_graph(TEMPLATE)

    events = []
    result = engine.apply(graph, progress_callback=lambda *event: events.append(event))

    assert result.is_success(), result.error
    assert len(store.list()) == 21
    order = completed(events)
    for record in store.list():
        for dependency in record.dependencies:
            assert order.index(dependency) < order.index(record.identifier)

    outputs = engine.outputs()
    assert outputs["vpc_id"].startswith("vpc-")
    assert outputs["load_balancer_dns"].endswith(".us-east-1.elb.localhost")
    assert outputs["service_url"] == f"http://{outputs['load_balancer_dns']}/"
    assert outputs["repository_uri"] == "000000000000.dkr.ecr.us-east-1.localhost/app"

    service = store.get("AWS::ECS::Service.web")
    assert service.resolved_attributes["DesiredCount"] == 2
    assert service.resolved_attributes["Cluster"] == store.get("AWS::ECS::Cluster.main").physical_id
    task = store.get("AWS::ECS::TaskDefinition.app")
    container = task.resolved_attributes["ContainerDefinitions"][0]
    assert container["PortMappings"][0]["ContainerPort"] == 80
    assert container["LogConfiguration"]["Options"]["awslogs-region"] == "us-east-1"

    assert not engine.plan(graph).has_changes()


def test_variable_change_updates_only_affected_resources(make_local_engine):
    make_local_engine().apply(make_local_engine().load_graph(TEMPLATE))

    engine = make_local_engine(desired_count=4)
    plan = engine.plan(engine.load_graph(TEMPLATE))

    assert [(op.action, op.identifier) for op in plan.ops] == [
        (ChangeAction.UPDATE, "AWS::ECS::Service.web"),
    ]
    assert [(d.path, d.before, d.after) for d in plan.ops[0].diffs] == [("DesiredCount", 2, 4)]


def test_example_stack_destroy(make_local_engine, store):
    engine = make_local_engine()
    engine.apply(engine.load_graph(TEMPLATE))
    recorded = store.list()

    events = []
    result = engine.destroy(progress_callback=lambda *event: events.append(event))

    assert result.is_success()
    assert store.list() == []
    assert engine.outputs() == {}
    order = completed(events)
    assert len(order) == 21
    for record in recorded:
        for dependency in record.dependencies:
            assert order.index(record.identifier) < order.index(dependency)


def test_date_valued_attribute_replans_clean(tmp_path, make_engine, store):
    template = tmp_path / "dated.yaml"
    template.write_text(
        "resources:\n"
        "  - type: AWS::S3::Bucket\n"
        "    name: archive\n"
        "    attributes:\n"
        "      LifecycleConfiguration:\n"
        "        Rules:\n"
        "          - ExpirationDate: 2024-01-01\n"
    )
    engine = make_engine()
    assert engine.apply(engine.load_graph(template)).is_success()

    reopened = StateStore(str(store.state_path), project="test")
    plan = make_engine(state_store=reopened).plan(engine.load_graph(template))

    assert not plan.has_changes(), plan.to_dict()
