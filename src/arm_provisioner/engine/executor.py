"""Parallel plan execution.

Operations form a DAG. Independent operations run concurrently on a thread
pool; an operation becomes eligible once every operation it depends on has
succeeded. The first permanent failure aborts the run: nothing new is started,
operations already in flight finish and are recorded, descendants of the
failure are reported as skipped and every other unstarted operation as not
attempted.
"""

from __future__ import annotations

import heapq
import logging
import threading
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any, Literal, TypeVar

from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from arm_provisioner.core.errors import TransientError
from arm_provisioner.engine.errors import ApplyCanceled, ApplyError, EngineError
from arm_provisioner.engine.graph import DependencyGraph
from arm_provisioner.engine.operations import (
    BarrierOperation,
    CreateOperation,
    DeleteOperation,
    ForgetOperation,
    ReadOperation,
    ReplaceOperation,
    UpdateOperation,
)
from arm_provisioner.engine.types import (
    Action,
    ApplyResult,
    NodeResult,
    NodeStatus,
    ResourceChange,
)

if TYPE_CHECKING:
    from pathlib import Path

    from arm_provisioner.core.state import ResourceInstance, State
    from arm_provisioner.engine.handlers import EngineContext
    from arm_provisioner.engine.operations import Operation
    from arm_provisioner.engine.registry import ResourceTypeRegistry
    from arm_provisioner.engine.types import Plan, RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[ResourceChange, Literal["start", "done"]], None]

BARRIER_KEY = "__engine__.apply_barrier"


class RetryAfterWait(wait_base):
    """Backoff that never undercuts the ``Retry-After`` the provider sent."""

    def __init__(self, backoff: wait_base) -> None:
        self.backoff = backoff

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.backoff(retry_state)
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        hint = getattr(exc, "retry_after", None)
        return max(delay, hint) if hint else delay


def call_with_retry(retry_cfg: RetryConfig, fn: Callable[[], T]) -> T:
    """Call *fn*, retrying :class:`TransientError` with exponential backoff.

    A throttled call is never retried sooner than its ``Retry-After``.
    """

    @retry(
        stop=stop_after_attempt(retry_cfg.max_attempts),
        wait=RetryAfterWait(
            wait_exponential(
                multiplier=retry_cfg.initial_wait_seconds,
                max=retry_cfg.max_wait_seconds,
            )
        ),
        retry=retry_if_exception_type(TransientError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    def _call() -> T:
        return fn()

    return _call()


class StateStore:
    """The state being applied, with one writer at a time.

    Every mutation bumps the serial and persists the whole state immediately.
    """

    def __init__(self, state: State, path: Path) -> None:
        self._state = state
        self._path = path
        self._lock = threading.Lock()

    @property
    def state(self) -> State:
        return self._state

    def get(self, address: str) -> ResourceInstance | None:
        with self._lock:
            return self._state.resources.get(address)

    def document(self, address: str) -> dict[str, Any] | None:
        """Observed document of *address* (with its ``id``), or ``None``."""
        inst = self.get(address)
        if inst is None:
            return None
        doc = dict(inst.document)
        doc.setdefault("id", inst.resource_id)
        return doc

    def put(self, inst: ResourceInstance) -> None:
        with self._lock:
            self._state.resources[inst.address] = inst
            self._commit()

    def remove(self, address: str) -> None:
        with self._lock:
            if self._state.resources.pop(address, None) is not None:
                self._commit()

    def set_outputs(self, outputs: dict[str, Any]) -> None:
        with self._lock:
            if self._state.outputs != outputs:
                self._state.outputs = outputs
                self._commit()

    def _commit(self) -> None:
        self._state.serial += 1
        self._state.save(self._path)


def _declared_dependencies(plan: Plan) -> dict[str, list[str]]:
    """``depends_on`` of every declared change, no-ops included."""
    declared: dict[str, list[str]] = {}
    for c in plan.changes:
        if c.desired is None:
            continue
        deps = c.desired.get("depends_on") or []
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise ValueError(f"Invalid depends_on for {c.address}: expected list[str]")
        declared[c.address] = deps
    return declared


def _nearest_applied(
    deps: list[str], declared: dict[str, list[str]], apply_set: set[str]
) -> list[str]:
    """Closest ancestors that have an operation, walking through no-op nodes."""
    found: list[str] = []
    seen: set[str] = set()
    stack = list(reversed(deps))
    while stack:
        dep = stack.pop()
        if dep in seen:
            continue
        seen.add(dep)
        if dep in apply_set:
            found.append(dep)
        else:
            stack.extend(reversed(declared.get(dep, [])))
    return found


def build_operations(plan: Plan, state: State) -> dict[str, Operation]:
    """Turn plan changes into an operation graph."""
    ops: dict[str, Operation] = {}
    apply_set: set[str] = set()
    delete_set: set[str] = set()

    for c in plan.changes:
        op: Operation
        match c.action:
            case Action.NOOP:
                continue
            case Action.CREATE:
                op = CreateOperation(key=c.address, change=c)
                apply_set.add(c.address)
            case Action.UPDATE:
                op = UpdateOperation(key=c.address, change=c)
                apply_set.add(c.address)
            case Action.REPLACE:
                op = ReplaceOperation(key=c.address, change=c)
                apply_set.add(c.address)
            case Action.READ:
                op = ReadOperation(key=c.address, change=c)
                apply_set.add(c.address)
            case Action.DELETE:
                op = DeleteOperation(key=c.address, change=c)
                delete_set.add(c.address)
            case Action.FORGET:
                op = ForgetOperation(key=c.address, change=c)
            case _:
                raise ValueError(f"Unknown action: {c.action}")

        if op.key in ops:
            raise ValueError(f"Duplicate operation key in plan: {op.key}")
        ops[op.key] = op

    # create/update/replace/read: dependencies must run before dependents
    declared = _declared_dependencies(plan)
    for addr in apply_set:
        op = ops[addr]
        assert op.change is not None
        if op.change.desired is None:
            raise ValueError(f"Missing desired config for {op.change.action.value}: {addr}")
        op.deps.extend(_nearest_applied(declared[addr], declared, apply_set))

    # deletes: dependents must be deleted before dependencies (invert edges)
    for addr in delete_set:
        inst = state.resources.get(addr)
        if inst is None:
            raise ValueError(f"Missing state for delete operation: {addr}")
        for dep in inst.dependencies:
            if dep in delete_set:
                ops[dep].deps.append(addr)

    # Create/update runs before deletes (Terraform-like default ordering).
    if apply_set and delete_set:
        if BARRIER_KEY in ops:
            raise ValueError(f"Barrier operation key conflicts with plan: {BARRIER_KEY}")
        ops[BARRIER_KEY] = BarrierOperation(key=BARRIER_KEY, deps=sorted(apply_set))
        for addr in delete_set:
            ops[addr].deps.append(BARRIER_KEY)

    return ops


def _error_kind(exc: BaseException) -> str:
    kind = getattr(exc, "kind", None)
    if isinstance(kind, str):
        return kind
    return "engine" if isinstance(exc, EngineError) else "error"


class PlanExecutor:
    """Runs a plan's operations on a bounded thread pool."""

    def __init__(
        self,
        *,
        ctx: EngineContext,
        store: StateStore,
        registry: ResourceTypeRegistry,
        retry_cfg: RetryConfig,
        parallelism: int,
        progress: ProgressCallback | None = None,
    ) -> None:
        self._ctx = ctx
        self._store = store
        self._registry = registry
        self._retry_cfg = retry_cfg
        self._parallelism = parallelism
        self._progress = progress

    def _invoke(self, address: str, fn: Callable[[], T]) -> T:
        logger.debug("Calling provider for %s", address)
        return call_with_retry(self._retry_cfg, fn)

    def _run_one(self, op: Operation) -> None:
        op.run(ctx=self._ctx, store=self._store, registry=self._registry, invoke=self._invoke)

    def execute(self, plan: Plan) -> ApplyResult:
        """Apply every operation of *plan*.

        Raises:
            ApplyError: An operation failed; carries the per-node report.
            ApplyCanceled: Interrupted by the user.
        """
        ops = build_operations(plan, self._store.state)
        graph = DependencyGraph(ops, {k: op.deps for k, op in ops.items()})
        graph.topological_order()  # fail on cycles before any provider call

        position = {k: i for i, k in enumerate(ops)}
        pending = {k: len(graph.dependencies(k)) for k in ops}
        ready = [(position[k], k) for k, n in pending.items() if n == 0]
        heapq.heapify(ready)

        logger.info(
            "Applying %d operations (parallelism=%d)",
            sum(1 for op in ops.values() if op.change is not None),
            self._parallelism,
        )

        result = ApplyResult()
        outcomes: dict[str, NodeResult] = {}
        failures: list[tuple[str, BaseException]] = []
        running: dict[Future[None], str] = {}

        def _release(key: str) -> None:
            for child in graph.dependents(key):
                pending[child] -= 1
                if pending[child] == 0:
                    heapq.heappush(ready, (position[child], child))

        try:
            with ThreadPoolExecutor(
                max_workers=self._parallelism, thread_name_prefix="arm-apply"
            ) as pool:
                while ready or running:
                    while ready and not failures and len(running) < self._parallelism:
                        _, key = heapq.heappop(ready)
                        op = ops[key]
                        if op.change is None:
                            _release(key)
                            continue
                        logger.debug("Starting %s: %s", key, type(op).__name__)
                        if self._progress:
                            self._progress(op.change, "start")
                        running[pool.submit(self._run_one, op)] = key

                    if not running:
                        break

                    done, _ = wait(running, return_when=FIRST_COMPLETED)
                    for fut in sorted(done, key=lambda f: position[running[f]]):
                        key = running.pop(fut)
                        op = ops[key]
                        assert op.change is not None
                        exc = fut.exception()
                        if exc is None:
                            outcomes[key] = NodeResult(
                                address=key, action=op.change.action, status=NodeStatus.APPLIED
                            )
                            result.applied.append(op.change)
                            if self._progress:
                                self._progress(op.change, "done")
                            _release(key)
                            continue

                        logger.error("%s failed: %s", key, exc)
                        failures.append((key, exc))
                        outcomes[key] = NodeResult(
                            address=key,
                            action=op.change.action,
                            status=NodeStatus.FAILED,
                            error_kind=_error_kind(exc),
                            message=str(exc),
                        )
        except KeyboardInterrupt as e:  # pragma: no cover
            raise ApplyCanceled("Apply canceled") from e

        skipped: set[str] = set()
        for key, _ in failures:
            skipped |= graph.descendants(key)

        for key, op in ops.items():
            if op.change is None:
                continue
            if key not in outcomes:
                status = NodeStatus.SKIPPED if key in skipped else NodeStatus.NOT_ATTEMPTED
                outcomes[key] = NodeResult(address=key, action=op.change.action, status=status)
            result.nodes.append(outcomes[key])

        if failures:
            address, exc = failures[0]
            raise ApplyError(result=result, address=address, message=str(exc)) from exc
        return result
