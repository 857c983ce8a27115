"""Plan executor with a bounded worker pool and progress tracking."""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from enum import Enum
import threading
import time

from infra_reconcile.orchestrator.planner import ChangeAction, ChangeOp, Plan
from infra_reconcile.orchestrator.resolver import StateResolver
from infra_reconcile.provisioners.base import ProvisionerRegistry, ProvisionRequest
from infra_reconcile.state.models import StateRecord, utcnow
from infra_reconcile.state.store import StateStore
from infra_reconcile.utils.errors import (
    ErrorContext,
    ReconcileError,
    TransientProviderError,
    error_handler,
)
from infra_reconcile.utils.logging import get_logger
from infra_reconcile.utils.retry import RetryStrategy

logger = get_logger(__name__)


class ExecutionStatus(Enum):
    """Status of one op or of a whole run."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


@dataclass
class OpResult:
    """Result of executing a single op."""

    identifier: str
    action: ChangeAction
    status: ExecutionStatus = ExecutionStatus.PENDING
    record: Optional[StateRecord] = None
    error: Optional[ReconcileError] = None
    attempts: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED


@dataclass
class ApplyResult:
    """Outcome of executing a plan.

    On failure or cancellation the run stops early; ``results`` still
    covers every op so callers can report what was applied and what was
    not. Applied changes are never rolled back.
    """

    status: ExecutionStatus
    results: Dict[str, OpResult] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ReconcileError] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED

    @property
    def applied(self) -> List[StateRecord]:
        """Records written during this run, in completion order."""
        return [
            result.record for result in self.results.values()
            if result.is_success() and result.record is not None
        ]

    def get_summary(self) -> Dict[str, int]:
        summary = {status.value: 0 for status in ExecutionStatus}
        for result in self.results.values():
            summary[result.status.value] += 1
        return summary


# Type alias for progress callback
ProgressCallback = Callable[[str, ExecutionStatus, Optional[str]], None]


class Executor:
    """Executes plans with parallelization.

    Ops are dispatched as soon as everything in their ``waits_on`` has
    succeeded, so independent ops run concurrently up to ``max_workers``
    while linked ops stay serialized. The first failed op stops dispatch;
    ops already in flight are allowed to finish.
    """

    def __init__(
        self,
        provisioners: ProvisionerRegistry,
        state_store: StateStore,
        max_workers: int = 4,
        retry_strategy: Optional[RetryStrategy] = None
    ):
        """Initialize executor.

        Args:
            provisioners: Provisioners by resource type
            state_store: Store receiving each successful op
            max_workers: Maximum number of parallel workers
            retry_strategy: Backoff policy for transient provider errors
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.provisioners = provisioners
        self.state_store = state_store
        self.max_workers = max_workers
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.resolver = StateResolver(state_store)
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stop dispatching new ops; in-flight ops run to completion."""
        if not self._cancelled.is_set():
            logger.warning("Cancellation requested, waiting for in-flight operations")
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def execute(
        self,
        plan: Plan,
        progress_callback: Optional[ProgressCallback] = None
    ) -> ApplyResult:
        """Execute a plan.

        Args:
            plan: Plan to execute
            progress_callback: Optional callback for progress updates

        Returns:
            ApplyResult with per-op results
        """
        self._cancelled.clear()
        logger.info(f"Executing {len(plan.ops)} operations with {self.max_workers} workers...")

        start_time = utcnow()
        started = time.monotonic()

        results = {op.identifier: OpResult(op.identifier, op.action) for op in plan.ops}
        pending: List[ChangeOp] = list(plan.ops)
        in_flight: Dict[Future, ChangeOp] = {}
        first_error: Optional[ReconcileError] = None

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                if first_error is None and not self.cancelled:
                    for op in list(pending):
                        if len(in_flight) >= self.max_workers:
                            break
                        if all(results[d].is_success() for d in op.waits_on if d in results):
                            pending.remove(op)
                            results[op.identifier].status = ExecutionStatus.IN_PROGRESS
                            self._notify(progress_callback, op.identifier, ExecutionStatus.IN_PROGRESS)
                            in_flight[pool.submit(self._execute_op, op)] = op

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for future in done:
                    op = in_flight.pop(future)
                    result = future.result()
                    results[op.identifier] = result

                    message = result.error.message if result.error else None
                    self._notify(progress_callback, op.identifier, result.status, message)

                    if result.is_failed() and first_error is None:
                        first_error = result.error
                        logger.error(
                            f"Stopping after failure of {op.identifier}; "
                            f"{len(in_flight)} in-flight operations will finish"
                        )

        leftover = ExecutionStatus.CANCELLED if self.cancelled and first_error is None else ExecutionStatus.SKIPPED
        for op in pending:
            results[op.identifier].status = leftover
            self._notify(progress_callback, op.identifier, leftover)

        if first_error is not None:
            status = ExecutionStatus.FAILED
        elif pending:
            status = ExecutionStatus.CANCELLED
        else:
            status = ExecutionStatus.SUCCESS

        result = ApplyResult(
            status=status,
            results=results,
            error=first_error,
            start_time=start_time,
            end_time=utcnow(),
            duration=time.monotonic() - started,
        )

        summary = result.get_summary()
        log = logger.info if result.is_success() else logger.error
        log(
            f"Execution {status.value}: {summary['success']} succeeded, {summary['failed']} failed, "
            f"{summary['skipped']} skipped, {summary['cancelled']} cancelled in {result.duration:.1f}s"
        )
        return result

    def _execute_op(self, op: ChangeOp) -> OpResult:
        """Apply a single op and record it. Never raises."""
        result = OpResult(op.identifier, op.action, ExecutionStatus.IN_PROGRESS, start_time=utcnow())
        started = time.monotonic()
        context = ErrorContext(
            resource_id=op.identifier,
            resource_type=op.type,
            operation=op.action.value
        )
        extra = {'resource_id': op.identifier, 'resource_type': op.type, 'operation': op.action.value}

        def on_retry(attempt: int, error: TransientProviderError, delay: float) -> None:
            logger.warning(
                f"{op.action.value} {op.identifier} attempt {attempt} failed: {error.message}",
                extra={**extra, 'attempt': attempt}
            )

        def attempt(func):
            def call():
                result.attempts += 1
                return func()
            return self.retry_strategy.execute_with_retry(call, context, on_retry)

        logger.info(f"Starting {op.action.value} of {op.identifier}", extra=extra)

        try:
            if op.action == ChangeAction.DELETE:
                self._delete(op, attempt)
            else:
                result.record = self._apply(op, attempt)
            result.status = ExecutionStatus.SUCCESS
        except Exception as e:
            result.status = ExecutionStatus.FAILED
            result.error = error_handler.handle_exception(e, context)
            error_handler.log_error(result.error)

        result.end_time = utcnow()
        result.duration = time.monotonic() - started

        logger.info(
            f"Finished {op.action.value} of {op.identifier}: {result.status.value}",
            extra={**extra, 'attempt': result.attempts, 'duration': round(result.duration, 3)}
        )
        return result

    def _apply(self, op: ChangeOp, attempt) -> StateRecord:
        node = op.node
        properties = self.resolver.resolve_attributes(dict(node.attributes), op.identifier)
        request = ProvisionRequest(
            identifier=op.identifier,
            type=node.type,
            name=node.name,
            properties=properties,
            physical_id=op.prior.physical_id if op.prior else None,
            prior_properties=dict(op.prior.resolved_attributes) if op.prior else None,
        )

        provisioner = self.provisioners.get(node.type)
        if op.action == ChangeAction.CREATE:
            provisioned = attempt(lambda: provisioner.create(request))
        else:
            provisioned = attempt(lambda: provisioner.update(request))

        record = StateRecord(
            identifier=op.identifier,
            type=node.type,
            name=node.name,
            physical_id=provisioned.physical_id,
            attributes=node.plain_attributes(),
            resolved_attributes=properties,
            outputs=dict(provisioned.outputs),
            dependencies=list(node.dependencies),
            position=node.position,
        )
        self.state_store.put(op.identifier, record)
        return record

    def _delete(self, op: ChangeOp, attempt) -> None:
        prior = op.prior
        request = ProvisionRequest(
            identifier=op.identifier,
            type=prior.type,
            name=prior.name,
            properties=dict(prior.resolved_attributes),
            physical_id=prior.physical_id,
            prior_properties=dict(prior.resolved_attributes),
        )

        provisioner = self.provisioners.get(prior.type)
        attempt(lambda: provisioner.delete(request))
        self.state_store.delete(op.identifier)

    def _notify(
        self,
        callback: Optional[ProgressCallback],
        identifier: str,
        status: ExecutionStatus,
        message: Optional[str] = None
    ) -> None:
        if callback:
            callback(identifier, status, message)
