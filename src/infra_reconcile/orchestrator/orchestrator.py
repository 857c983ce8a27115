"""Reconciliation engine that coordinates graph building, planning and execution."""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from infra_reconcile.config.models import EngineConfig, ProviderConfig
from infra_reconcile.config.parser import Config
from infra_reconcile.orchestrator.dependency_graph import DependencyGraph, GraphBuilder
from infra_reconcile.orchestrator.executor import (
    ApplyResult,
    ExecutionStatus,
    Executor,
    ProgressCallback,
)
from infra_reconcile.orchestrator.planner import Plan, Planner
from infra_reconcile.orchestrator.resolver import StateResolver
from infra_reconcile.provisioners import ProvisionerRegistry, create_registry
from infra_reconcile.state.store import StateStore
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

logger = get_logger(__name__)


class ReconciliationEngine:
    """Coordinates planning and applying a template against recorded state."""

    def __init__(
        self,
        state_store: StateStore,
        provisioners: ProvisionerRegistry,
        provider_config: Optional[ProviderConfig] = None,
        engine_config: Optional[EngineConfig] = None,
        variables: Optional[Dict[str, Any]] = None,
        retry_strategy: Optional[RetryStrategy] = None
    ):
        """Initialize reconciliation engine.

        Args:
            state_store: Store of last-applied records
            provisioners: Provisioners by resource type
            provider_config: Provider settings visible to templates
            engine_config: Worker and retry settings
            variables: Template variable overrides
            retry_strategy: Overrides the strategy built from engine_config
        """
        self.state_store = state_store
        self.provisioners = provisioners
        self.provider_config = provider_config or ProviderConfig()
        self.engine_config = engine_config or EngineConfig()

        if retry_strategy is None:
            retry = self.engine_config.retry
            retry_strategy = RetryStrategy(
                max_attempts=retry.max_attempts,
                base_delay=retry.base_delay,
                max_delay=retry.max_delay,
                exponential_base=retry.exponential_base,
                jitter=retry.jitter,
            )

        self.builder = GraphBuilder(self.provider_config, variables)
        self.planner = Planner()
        self.executor = Executor(
            provisioners=provisioners,
            state_store=state_store,
            max_workers=self.engine_config.max_workers,
            retry_strategy=retry_strategy,
        )
        self.resolver = StateResolver(state_store)

    @classmethod
    def from_config(
        cls,
        config: Config,
        variables: Optional[Dict[str, Any]] = None,
        max_workers: Optional[int] = None
    ) -> "ReconciliationEngine":
        """Build an engine from a loaded reconcile.yaml.

        Args:
            config: Loaded configuration
            variables: Overrides merged over the configured variables
            max_workers: Overrides the configured worker count
        """
        settings = config.settings
        engine_config = settings.engine
        if max_workers is not None:
            engine_config = engine_config.model_copy(update={'max_workers': max_workers})

        state_store = StateStore(
            str(config.state_path()),
            project=settings.project.name,
            region=settings.provider.region,
            lock_timeout=settings.state.lock_timeout,
        )

        return cls(
            state_store=state_store,
            provisioners=create_registry(settings.provider),
            provider_config=settings.provider,
            engine_config=engine_config,
            variables={**settings.variables, **(variables or {})},
        )

    def load_graph(self, template_path: Union[str, Path]) -> DependencyGraph:
        """Parse and validate a template.

        Raises:
            ParseError: If the document is malformed
            ReferenceError: If references are unresolved or cyclic
        """
        return self.builder.build_from_file(template_path)

    def plan(self, graph: DependencyGraph) -> Plan:
        """Create a plan for the desired graph."""
        logger.info("Planning changes...")
        return self.planner.create_plan(graph, self.state_store.list())

    def plan_destruction(self) -> Plan:
        """Create a plan that deletes everything recorded in state."""
        logger.info("Planning destruction...")
        return self.planner.create_destruction_plan(self.state_store.list())

    def apply(
        self,
        graph: DependencyGraph,
        plan: Optional[Plan] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> ApplyResult:
        """Plan (unless a plan is given) and execute.

        Template outputs are resolved and recorded only when every op
        succeeds.

        Args:
            graph: Desired graph
            plan: Plan created earlier from the same graph
            progress_callback: Optional progress callback

        Returns:
            ApplyResult
        """
        plan = plan or self.plan(graph)

        if not plan.has_changes():
            logger.info("No changes to apply")
            result = ApplyResult(status=ExecutionStatus.SUCCESS)
        else:
            result = self.executor.execute(plan, progress_callback)

        if result.is_success():
            result.outputs = self.resolver.resolve(dict(graph.outputs), "outputs")
            if result.outputs != self.state_store.get_outputs():
                self.state_store.set_outputs(result.outputs)

        return result

    def destroy(
        self,
        plan: Optional[Plan] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> ApplyResult:
        """Delete every recorded resource, dependents first.

        Args:
            plan: Destruction plan created earlier
            progress_callback: Optional progress callback

        Returns:
            ApplyResult
        """
        plan = plan or self.plan_destruction()

        if not plan.has_changes():
            logger.info("No resources to destroy")
            result = ApplyResult(status=ExecutionStatus.SUCCESS)
        else:
            result = self.executor.execute(plan, progress_callback)

        if result.is_success() and self.state_store.get_outputs():
            self.state_store.set_outputs({})

        return result

    def outputs(self) -> Dict[str, Any]:
        """Template outputs recorded by the last successful apply."""
        return self.state_store.get_outputs()

    def cancel(self) -> None:
        """Request cancellation of the running apply or destroy."""
        self.executor.cancel()
