"""Orchestrator module for planning and applying changes."""

from infra_reconcile.orchestrator.dependency_graph import (
    DependencyGraph,
    GraphBuilder,
    ReferenceEdge,
    ResourceNode,
    stable_topological_sort,
)
from infra_reconcile.orchestrator.planner import (
    AttributeDiff,
    ChangeAction,
    ChangeOp,
    DiffKind,
    Plan,
    Planner,
    diff_attributes,
)
from infra_reconcile.orchestrator.executor import (
    ApplyResult,
    ExecutionStatus,
    Executor,
    OpResult,
    ProgressCallback,
)
from infra_reconcile.orchestrator.resolver import StateResolver
from infra_reconcile.orchestrator.orchestrator import ReconciliationEngine

__all__ = [
    # Graph
    'DependencyGraph',
    'GraphBuilder',
    'ReferenceEdge',
    'ResourceNode',
    'stable_topological_sort',

    # Planning
    'AttributeDiff',
    'ChangeAction',
    'ChangeOp',
    'DiffKind',
    'Plan',
    'Planner',
    'diff_attributes',

    # Execution
    'ApplyResult',
    'ExecutionStatus',
    'Executor',
    'OpResult',
    'ProgressCallback',
    'StateResolver',

    # Engine
    'ReconciliationEngine',
]
