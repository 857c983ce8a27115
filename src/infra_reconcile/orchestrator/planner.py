"""Change planner: diffs the desired graph against recorded state."""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from infra_reconcile.orchestrator.dependency_graph import (
    DependencyGraph,
    ResourceNode,
    stable_topological_sort,
)
from infra_reconcile.state.models import StateRecord, utcnow
from infra_reconcile.utils.errors import ErrorContext, PlanConflictError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class ChangeAction(Enum):
    """Kind of change applied to one resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class DiffKind(Enum):
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"


@dataclass(frozen=True)
class AttributeDiff:
    """Difference in one attribute, addressed by dotted path."""

    path: str
    kind: DiffKind
    before: Any = None
    after: Any = None


def diff_attributes(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    prefix: str = ""
) -> List[AttributeDiff]:
    """Compare two attribute mappings.

    Nested mappings are compared key by key; any other value, lists
    included, is compared as a whole.

    Args:
        before: Last-applied attributes
        after: Desired attributes
        prefix: Path of the mappings being compared

    Returns:
        Differences, desired keys first in their declared order
    """
    diffs: List[AttributeDiff] = []

    for key, value in after.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if key not in before:
            diffs.append(AttributeDiff(path, DiffKind.ADDED, after=value))
        elif isinstance(before[key], dict) and isinstance(value, dict):
            diffs.extend(diff_attributes(before[key], value, path))
        elif before[key] != value:
            diffs.append(AttributeDiff(path, DiffKind.CHANGED, before[key], value))

    for key, value in before.items():
        if key not in after:
            path = f"{prefix}.{key}" if prefix else str(key)
            diffs.append(AttributeDiff(path, DiffKind.REMOVED, before=value))

    return diffs


@dataclass
class ChangeOp:
    """One planned change.

    ``node`` is the desired declaration (absent for deletes) and ``prior``
    the last-applied record (absent for creates). ``waits_on`` lists the
    identifiers of other ops in the same plan that must succeed first.
    """

    action: ChangeAction
    identifier: str
    type: str
    node: Optional[ResourceNode] = None
    prior: Optional[StateRecord] = None
    waits_on: Tuple[str, ...] = ()
    diffs: List[AttributeDiff] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def prior_attributes(self) -> Optional[Dict[str, Any]]:
        return dict(self.prior.attributes) if self.prior else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action.value,
            'identifier': self.identifier,
            'type': self.type,
            'waits_on': list(self.waits_on),
            'reason': self.reason,
            'diffs': [
                {
                    'path': diff.path,
                    'kind': diff.kind.value,
                    'before': diff.before,
                    'after': diff.after,
                }
                for diff in self.diffs
            ],
        }


@dataclass
class Plan:
    """Ordered change list for one run.

    Creates and updates come first in dependency order, then deletes in
    reverse dependency order. Every identifier in an op's ``waits_on``
    belongs to an op that appears earlier in ``ops``.
    """

    ops: List[ChangeOp] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
    destroy: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def has_changes(self) -> bool:
        """Check if the plan has any changes."""
        return bool(self.ops)

    def get_op(self, identifier: str) -> Optional[ChangeOp]:
        for op in self.ops:
            if op.identifier == identifier:
                return op
        return None

    def get_summary(self) -> Dict[str, int]:
        """Get a summary of changes by action."""
        summary = {'create': 0, 'update': 0, 'delete': 0, 'no_change': len(self.unchanged)}
        for op in self.ops:
            summary[op.action.value] += 1
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            'destroy': self.destroy,
            'created_at': self.created_at.isoformat(),
            'summary': self.get_summary(),
            'changes': [op.to_dict() for op in self.ops],
            'unchanged': list(self.unchanged),
        }


class Planner:
    """Creates change plans by comparing desired declarations with state."""

    def create_plan(self, graph: DependencyGraph, records: Sequence[StateRecord]) -> Plan:
        """Create a plan that moves recorded state to the desired graph.

        A declaration without a record is created. A declaration whose
        declared attributes differ from its record, or that references a
        resource being created, is updated. Records without a declaration
        are deleted.

        Args:
            graph: Validated desired graph
            records: Last-applied records in first-applied order

        Returns:
            Plan with ordered ops

        Raises:
            PlanConflictError: If desired and recorded identifiers collide
                ambiguously
        """
        logger.info("Creating plan...")

        current = self._index_records(records)
        self._check_identity(graph, current)

        ops: Dict[str, ChangeOp] = {}
        unchanged: List[str] = []

        for identifier in graph.topological_order():
            node = graph.nodes[identifier]
            record = current.get(identifier)

            if record is None:
                ops[identifier] = ChangeOp(
                    action=ChangeAction.CREATE,
                    identifier=identifier,
                    type=node.type,
                    node=node,
                    diffs=diff_attributes({}, node.plain_attributes()),
                    reason="Resource does not exist",
                )
                continue

            diffs = diff_attributes(record.attributes, node.plain_attributes())
            recreated = [
                dependency for dependency in node.dependencies
                if dependency in ops and ops[dependency].action == ChangeAction.CREATE
            ]

            if diffs:
                reason = "Attributes have changed"
            elif recreated:
                reason = f"Depends on {', '.join(recreated)}, which will be created"
            else:
                unchanged.append(identifier)
                continue

            ops[identifier] = ChangeOp(
                action=ChangeAction.UPDATE,
                identifier=identifier,
                type=node.type,
                node=node,
                prior=record,
                diffs=diffs,
                reason=reason,
            )

        for op in ops.values():
            op.waits_on = tuple(
                dependency for dependency in op.node.dependencies if dependency in ops
            )

        orphaned = [record for identifier, record in current.items() if identifier not in graph.nodes]
        deletes = self._plan_deletes(orphaned, list(ops.values()))

        plan = Plan(
            ops=list(ops.values()) + deletes,
            unchanged=unchanged,
            outputs=dict(graph.outputs),
        )

        summary = plan.get_summary()
        logger.info(
            f"Plan created: {summary['create']} create, {summary['update']} update, "
            f"{summary['delete']} delete, {summary['no_change']} unchanged"
        )
        return plan

    def create_destruction_plan(self, records: Sequence[StateRecord]) -> Plan:
        """Create a plan that deletes every recorded resource.

        Args:
            records: Last-applied records in first-applied order

        Returns:
            Plan of deletes, dependents before their dependencies
        """
        logger.info("Creating destruction plan...")

        current = self._index_records(records)
        plan = Plan(ops=self._plan_deletes(list(current.values()), []), destroy=True)

        logger.info(f"Destruction plan created: {len(plan.ops)} resources")
        return plan

    def _plan_deletes(
        self,
        records: List[StateRecord],
        pending: List[ChangeOp]
    ) -> List[ChangeOp]:
        """Order deletes so each record goes before the records it depends on.

        A delete also waits for updates of surviving resources that
        previously referenced it, so they stop pointing at it first.
        """
        if not records:
            return []

        by_id = {record.identifier: record for record in records}
        # Ties follow document position; older state files record 0 for every
        # record, which falls back to record order
        ranked = sorted(enumerate(records), key=lambda item: (item[1].position, item[0]))
        position = {record.identifier: rank for rank, (_, record) in enumerate(ranked)}

        # Reverse edges: a dependency is deleted after its dependents
        after: Dict[str, List[str]] = {identifier: [] for identifier in by_id}
        for record in records:
            for dependency in record.dependencies:
                if dependency in by_id:
                    after[dependency].append(record.identifier)

        order = stable_topological_sort(by_id, after, position)

        repointed: Dict[str, List[str]] = {identifier: [] for identifier in by_id}
        for op in pending:
            if op.action == ChangeAction.UPDATE and op.prior is not None:
                for dependency in op.prior.dependencies:
                    if dependency in repointed:
                        repointed[dependency].append(op.identifier)

        deletes = []
        for identifier in order:
            record = by_id[identifier]
            deletes.append(ChangeOp(
                action=ChangeAction.DELETE,
                identifier=identifier,
                type=record.type,
                prior=record,
                waits_on=tuple(after[identifier] + repointed[identifier]),
                diffs=diff_attributes(record.attributes, {}),
                reason="Resource no longer declared",
            ))

        return deletes

    def _index_records(self, records: Sequence[StateRecord]) -> Dict[str, StateRecord]:
        """Index records by identifier, rejecting case-only collisions."""
        current: Dict[str, StateRecord] = {}
        folded: Dict[str, str] = {}

        for record in records:
            key = record.identifier.lower()
            if key in folded:
                raise PlanConflictError(
                    f"State records '{folded[key]}' and '{record.identifier}' "
                    f"differ only by case",
                    context=ErrorContext(resource_id=record.identifier, operation="plan"),
                    suggestions=["Remove the stale record from the state file"]
                )
            folded[key] = record.identifier
            current[record.identifier] = record

        return current

    def _check_identity(self, graph: DependencyGraph, current: Dict[str, StateRecord]) -> None:
        """A declaration must match its record exactly or not at all."""
        recorded = {identifier.lower(): identifier for identifier in current}

        for identifier, node in graph.nodes.items():
            match = recorded.get(identifier.lower())
            if match is not None and match != identifier:
                raise PlanConflictError(
                    f"Declaration '{identifier}' matches recorded resource '{match}' "
                    f"only by case; cannot tell whether to update or replace it",
                    context=ErrorContext(
                        resource_id=identifier,
                        resource_type=node.type,
                        operation="plan"
                    ),
                    suggestions=[
                        f"Rename the declaration back to '{match}'",
                        "Or destroy the old resource before renaming",
                    ]
                )
