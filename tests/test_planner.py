import pytest

from conftest import resource
from infra_reconcile.orchestrator import ChangeAction, DiffKind, Planner, diff_attributes
from infra_reconcile.state.models import StateRecord
from infra_reconcile.utils.errors import PlanConflictError


def record(identifier, dependencies=(), position=0, **attributes):
    type_, name = identifier.rsplit(".", 1)
    return StateRecord(
        identifier=identifier,
        type=type_,
        name=name,
        physical_id=f"{name}-0001",
        attributes=attributes,
        resolved_attributes=attributes,
        dependencies=list(dependencies),
        position=position,
    )


def actions(plan):
    return [(op.action, op.identifier) for op in plan.ops]


@pytest.fixture
def planner():
    return Planner()


def test_empty_state_creates_in_dependency_order(builder, planner, two_tier):
    plan = planner.create_plan(builder.build(two_tier), [])

    assert actions(plan) == [
        (ChangeAction.CREATE, "Test::Thing.a"),
        (ChangeAction.CREATE, "Test::Thing.b"),
    ]
    assert plan.get_op("Test::Thing.b").waits_on == ("Test::Thing.a",)
    assert plan.get_op("Test::Thing.a").reason == "Resource does not exist"
    assert plan.get_summary() == {'create': 2, 'update': 0, 'delete': 0, 'no_change': 0}


def test_matching_state_yields_empty_plan(builder, planner, two_tier):
    records = [
        record("Test::Thing.a", Size=1),
        record("Test::Thing.b", ["Test::Thing.a"], 1, Parent="${Test::Thing.a.id}"),
    ]

    plan = planner.create_plan(builder.build(two_tier), records)

    assert not plan.has_changes()
    assert plan.unchanged == ["Test::Thing.a", "Test::Thing.b"]


def test_changed_attribute_yields_update_with_diff(builder, planner, two_tier):
    records = [
        record("Test::Thing.a", Size=2, Legacy=True),
        record("Test::Thing.b", ["Test::Thing.a"], 1, Parent="${Test::Thing.a.id}"),
    ]

    plan = planner.create_plan(builder.build(two_tier), records)

    assert actions(plan) == [(ChangeAction.UPDATE, "Test::Thing.a")]
    op = plan.ops[0]
    assert op.prior.physical_id == "a-0001"
    assert op.prior_attributes == {"Size": 2, "Legacy": True}
    assert [(d.path, d.kind, d.before, d.after) for d in op.diffs] == [
        ("Size", DiffKind.CHANGED, 2, 1),
        ("Legacy", DiffKind.REMOVED, True, None),
    ]
    assert plan.unchanged == ["Test::Thing.b"]


def test_dependent_of_created_resource_is_updated(builder, planner, two_tier):
    records = [record("Test::Thing.b", ["Test::Thing.a"], Parent="${Test::Thing.a.id}")]

    plan = planner.create_plan(builder.build(two_tier), records)

    assert actions(plan) == [
        (ChangeAction.CREATE, "Test::Thing.a"),
        (ChangeAction.UPDATE, "Test::Thing.b"),
    ]
    update = plan.get_op("Test::Thing.b")
    assert update.diffs == []
    assert update.reason == "Depends on Test::Thing.a, which will be created"
    assert update.waits_on == ("Test::Thing.a",)


def test_undeclared_records_are_deleted_dependents_first(builder, planner):
    records = [
        record("Test::Thing.a"),
        record("Test::Thing.b", ["Test::Thing.a"], 1),
        record("Test::Thing.c", ["Test::Thing.b"], 2),
        record("Test::Thing.d", position=3),
    ]

    plan = planner.create_plan(builder.build({}), records)

    assert actions(plan) == [
        (ChangeAction.DELETE, "Test::Thing.c"),
        (ChangeAction.DELETE, "Test::Thing.b"),
        (ChangeAction.DELETE, "Test::Thing.a"),
        (ChangeAction.DELETE, "Test::Thing.d"),
    ]
    assert plan.get_op("Test::Thing.a").waits_on == ("Test::Thing.b",)
    assert plan.get_op("Test::Thing.b").waits_on == ("Test::Thing.c",)
    assert plan.get_op("Test::Thing.c").waits_on == ()
    assert plan.get_op("Test::Thing.c").reason == "Resource no longer declared"


def test_delete_waits_for_repointed_update(builder, planner):
    records = [
        record("Test::Thing.a"),
        record("Test::Thing.b", ["Test::Thing.a"], 1, Parent="${Test::Thing.a.id}"),
        record("Test::Thing.c", position=2),
    ]
    graph = builder.build({"resources": [
        resource("Test::Thing", "b", Parent="${Test::Thing.c.id}"),
        resource("Test::Thing", "c"),
    ]})

    plan = planner.create_plan(graph, records)

    assert actions(plan) == [
        (ChangeAction.UPDATE, "Test::Thing.b"),
        (ChangeAction.DELETE, "Test::Thing.a"),
    ]
    assert plan.get_op("Test::Thing.a").waits_on == ("Test::Thing.b",)
    assert plan.unchanged == ["Test::Thing.c"]


def test_destruction_plan_reverses_dependency_order(planner):
    records = [
        record("Test::Thing.a"),
        record("Test::Thing.b", ["Test::Thing.a"], 1),
        record("Test::Thing.c", position=2),
    ]

    plan = planner.create_destruction_plan(records)

    assert plan.destroy
    assert [op.identifier for op in plan.ops] == ["Test::Thing.b", "Test::Thing.a", "Test::Thing.c"]
    assert all(op.action == ChangeAction.DELETE for op in plan.ops)


def test_independent_deletes_follow_document_position_not_record_order(planner):
    records = [
        record("Test::Thing.c", position=2),
        record("Test::Thing.b", position=1),
        record("Test::Thing.a", position=0),
    ]

    plan = planner.create_destruction_plan(records)

    assert [op.identifier for op in plan.ops] == ["Test::Thing.a", "Test::Thing.b", "Test::Thing.c"]


def test_records_without_position_keep_record_order(planner):
    records = [record("Test::Thing.b"), record("Test::Thing.a")]

    plan = planner.create_destruction_plan(records)

    assert [op.identifier for op in plan.ops] == ["Test::Thing.b", "Test::Thing.a"]


def test_destruction_plan_of_empty_state(planner):
    plan = planner.create_destruction_plan([])

    assert not plan.has_changes()


def test_case_only_rename_is_a_conflict(builder, planner):
    graph = builder.build({"resources": [resource("Test::Thing", "Web")]})

    with pytest.raises(PlanConflictError) as exc_info:
        planner.create_plan(graph, [record("Test::Thing.web")])

    assert "only by case" in exc_info.value.message
    assert exc_info.value.context.resource_id == "Test::Thing.Web"


def test_case_colliding_records_are_a_conflict(builder, planner):
    with pytest.raises(PlanConflictError):
        planner.create_plan(builder.build({}), [record("Test::Thing.web"), record("Test::Thing.WEB")])


def test_plan_serializes(builder, planner, two_tier):
    plan = planner.create_plan(builder.build(two_tier), [])

    data = plan.to_dict()

    assert data["destroy"] is False
    assert data["summary"]["create"] == 2
    assert data["changes"][1] == {
        'action': 'create',
        'identifier': 'Test::Thing.b',
        'type': 'Test::Thing',
        'waits_on': ['Test::Thing.a'],
        'reason': 'Resource does not exist',
        'diffs': [{'path': 'Parent', 'kind': 'added', 'before': None, 'after': '${Test::Thing.a.id}'}],
    }


def test_diff_recurses_into_mappings_only():
    diffs = diff_attributes(
        {"Tags": {"env": "dev", "team": "a"}, "Ports": [80]},
        {"Tags": {"env": "prod", "team": "a"}, "Ports": [80, 443]},
    )

    assert [(d.path, d.kind) for d in diffs] == [
        ("Tags.env", DiffKind.CHANGED),
        ("Ports", DiffKind.CHANGED),
    ]
