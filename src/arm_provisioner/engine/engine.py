"""Plan/apply engine."""

from __future__ import annotations

import contextlib
import hashlib
import json
import logging
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING, Any

from arm_provisioner import __version__
from arm_provisioner.core.state import State, compute_attributes_hash, compute_state_digest
from arm_provisioner.engine.errors import (
    StalePlanError,
    StateMismatchError,
    UnknownReferenceError,
    ValidationError,
)
from arm_provisioner.engine.executor import (
    PlanExecutor,
    ProgressCallback,
    StateStore,
    call_with_retry,
)
from arm_provisioner.engine.graph import DependencyGraph, ResourceGraph, build_graph
from arm_provisioner.engine.handlers import EngineContext
from arm_provisioner.engine.lock import StateLock
from arm_provisioner.engine.types import (
    Action,
    ApplyResult,
    ExecutionConfig,
    Plan,
    PlanMetadata,
    ResourceChange,
)
from arm_provisioner.resources.expressions import (
    UNKNOWN,
    ExpressionError,
    Scope,
    contains_unknown,
    references,
    resolve,
)
from arm_provisioner.resources.markers import (
    CompareStrategy,
    collect_arm_paths,
    collect_compare_strategies,
    collect_immutable_fields,
    mask_paths,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from pathlib import Path

    from arm_provisioner.core.provider import Provider
    from arm_provisioner.core.state import ResourceInstance
    from arm_provisioner.engine.registry import ResourceTypeRegistry
    from arm_provisioner.resources.base import Resource

__all__ = ["ProgressCallback", "ProvisioningEngine"]

# Identity fields that can never change in place: they determine the resource id.
_ALWAYS_IMMUTABLE = frozenset({"arm_type", "resource_name", "parent", "scope"})


def _values_differ(
    desired: Any,
    prior: Any,
    *,
    strategy: CompareStrategy | None = None,
) -> bool:
    """Check whether a desired value differs from the prior (stored) value.

    Comparison semantics depend on *strategy*:

    - ``strategy="set"``:
      - If both values are lists, they are compared as sets (order-insensitive).
      - Other types fall back to strict equality.
    - ``strategy="exact"``:
      - Values are compared with strict equality.
      - For dicts, extra or missing keys are treated as differences.
    - ``strategy=None`` or ``"partial"``:
      - For dict values, only keys present in *desired* are compared.
      - Lists of equal length are compared element by element with the same
        rule, so provider-added keys inside list entries are ignored too.
      - Extra keys present only in *prior* (provider-added defaults) are ignored.
      - Other values use strict equality.
    """
    if strategy == "set":
        if isinstance(desired, list) and isinstance(prior, list):
            return sorted(map(_canonical_json, desired)) != sorted(map(_canonical_json, prior))
        return desired != prior

    if strategy == "exact":
        return desired != prior

    if isinstance(desired, dict) and isinstance(prior, dict):
        return any(_values_differ(v, prior.get(k), strategy="partial") for k, v in desired.items())
    if isinstance(desired, list) and isinstance(prior, list):
        if len(desired) != len(prior):
            return True
        return any(
            _values_differ(d, p, strategy="partial") for d, p in zip(desired, prior, strict=True)
        )
    return desired != prior


def _dig(value: Any, path: str) -> Any:
    for segment in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(segment)
    return value


def _pending_document(
    resource: Resource, inst: ResourceInstance, diff: Mapping[str, Any]
) -> dict[str, Any]:
    """Document of a resource being updated in place, as dependents see it while planning.

    Paths written by changed fields stay unknown until the update lands. A
    changed field with no known document path hides everything but the ``id``.
    """
    paths = collect_arm_paths(resource)
    masked: list[str] = []
    for name, change in diff.items():
        if name in paths:
            masked.append(paths[name])
        elif name == "body" and isinstance(change["to"], dict):
            # Generic bodies are the document itself, keyed at the top level.
            before = change["from"] if isinstance(change["from"], dict) else {}
            masked.extend(
                key
                for key, value in change["to"].items()
                if contains_unknown(value) or _values_differ(value, before.get(key))
            )
        else:
            return {"id": inst.resource_id}
    return {**mask_paths(inst.document, masked, UNKNOWN), "id": inst.resource_id}


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def _sha256_hex(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _compute_config_digest(resources: Sequence[Resource], outputs: Mapping[str, Any]) -> str:
    items: list[dict[str, Any]] = []
    for r in resources:
        desired = r.model_dump(exclude_none=True, exclude={"address"})
        planned = dict(desired)
        planned.pop("depends_on", None)
        items.append(
            {
                "address": r.address,
                "resource_type": r.resource_type,
                "planned": planned,
            }
        )
    items.sort(key=lambda x: x["address"])
    return _sha256_hex(_canonical_json({"resources": items, "outputs": dict(outputs)}))


class ProvisioningEngine:
    """Terraform-like plan/apply engine for Azure Resource Manager templates."""

    def __init__(
        self,
        *,
        provider: Provider,
        template: str,
        subscription_id: str,
        resource_group: str,
        state_path: Path,
        registry: ResourceTypeRegistry,
        location: str | None = None,
        execution: ExecutionConfig | None = None,
        replace_policy: Mapping[str, Sequence[str]] | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self._provider = provider
        self._template = template
        self._subscription_id = subscription_id
        self._resource_group = resource_group
        self._state_path = state_path
        self._registry = registry
        self._location = location
        self._execution = execution or ExecutionConfig()
        self._replace_policy = {
            arm_type.lower(): frozenset(fields)
            for arm_type, fields in (replace_policy or {}).items()
        }
        self._lock_timeout = lock_timeout

    @property
    def template(self) -> str:
        return self._template

    @property
    def state_path(self) -> Path:
        return self._state_path

    def _ctx(self, lookup: Callable[[str], ResourceInstance | None]) -> EngineContext:
        return EngineContext(
            provider=self._provider,
            template=self._template,
            subscription_id=self._subscription_id,
            resource_group=self._resource_group,
            location=self._location,
            timeout=self._execution.timeout_seconds,
            lookup=lookup,
        )

    def _scope(self) -> Scope:
        return Scope(subscription_id=self._subscription_id, resource_group=self._resource_group)

    def _lock(self) -> StateLock:
        return StateLock(self._state_path, timeout=self._lock_timeout)

    def _load_state(self) -> State:
        state = State.load_or_create(self._state_path, template=self._template)
        if state.template != self._template:
            raise StateMismatchError(self._template, state.template)
        logger.debug("State loaded: serial=%d, %d resources", state.serial, len(state.resources))
        return state

    def _load_state_for_apply(self, plan: Plan) -> State:
        if self._state_path.exists():
            return self._load_state()
        # If no state exists, bootstrap from the plan metadata (saved-plan semantics).
        return State(
            template=self._template,
            lineage=plan.metadata.state_lineage,
            serial=plan.metadata.state_serial,
        )

    # ── refresh ─────────────────────────────────────────────────────

    def _refresh_state_in_place(self, state: State) -> bool:
        logger.debug("Refreshing state from the provider")
        changed = False
        ctx = self._ctx(state.resources.get)

        for address, inst in list(state.resources.items()):
            handler = self._registry.get(inst.resource_type).handler
            observed = call_with_retry(self._execution.retry, partial(handler.read, ctx, inst))
            if observed is None:
                logger.info("%s no longer exists (%s)", address, inst.resource_id)
                del state.resources[address]
                changed = True
                continue

            new_hash = compute_attributes_hash(observed.attributes)
            if (
                observed.attributes != inst.attributes
                or new_hash != inst.attributes_hash
                or observed.etag != inst.etag
            ):
                inst.attributes = observed.attributes
                inst.attributes_hash = new_hash
                inst.etag = observed.etag
                inst.updated_at = datetime.now(UTC)
                changed = True
            inst.document = observed.document

        logger.debug("State refreshed, changed=%s", changed)
        return changed

    def refresh(self, *, persist: bool = False) -> tuple[State, State]:
        """Refresh state from the provider. Returns (pre_refresh, post_refresh)."""
        with self._lock():
            state = self._load_state()
            snapshot = state.model_copy(deep=True)
            changed = self._refresh_state_in_place(state)
            if changed and persist:
                state.serial += 1
                state.save(self._state_path)
            return snapshot, state

    # ── plan ────────────────────────────────────────────────────────

    def graph(self, resources: Sequence[Resource]) -> ResourceGraph:
        """Build and check the dependency graph without touching state."""
        graph = build_graph(resources)
        for r in resources:
            self._registry.for_resource(r)
        return graph

    def _validate(self, graph: ResourceGraph, state: State, outputs: Mapping[str, Any]) -> None:
        ctx = self._ctx(state.resources.get)
        errors: list[str] = []
        for r in graph.resources.values():
            errors.extend(self._registry.get(r.resource_type).handler.validate(ctx, r))
        for name, expr in outputs.items():
            try:
                names = references(expr)
            except ExpressionError as exc:
                errors.append(f"Output '{name}': {exc}")
                continue
            for ref in names:
                if ref not in graph.resources:
                    raise UnknownReferenceError(f"outputs.{name}", ref)
        if errors:
            raise ValidationError(errors)

    def _immutable_fields(self, resource: Resource) -> frozenset[str]:
        return (
            collect_immutable_fields(resource)
            | _ALWAYS_IMMUTABLE
            | self._replace_policy.get(resource.arm_type.lower(), frozenset())
        )

    def _replace_fields(
        self,
        resource: Resource,
        planned: dict[str, Any],
        prior: dict[str, Any],
        diff: dict[str, Any],
    ) -> list[str]:
        """Changed fields (or dotted paths inside fields) that force a replacement."""
        fields: list[str] = []
        for spec in sorted(self._immutable_fields(resource)):
            head, _, rest = spec.partition(".")
            if head not in diff:
                continue
            if not rest:
                fields.append(spec)
                continue
            want = _dig(planned.get(head), rest)
            if want is None:
                continue
            if contains_unknown(want) or _values_differ(want, _dig(prior.get(head), rest)):
                fields.append(spec)
        return fields

    def _classify_change(
        self,
        resource: Resource,
        prior_inst: ResourceInstance | None,
        deps: list[str],
        lookup: Callable[[str], dict[str, Any] | None],
        *,
        parent_replaced: bool,
    ) -> ResourceChange:
        """Classify a single declaration as CREATE, UPDATE, REPLACE, READ or NOOP."""
        addr = resource.address
        desired_dump = resource.model_dump(exclude_none=True, exclude={"address"})
        desired_dump["depends_on"] = deps
        planned = {k: v for k, v in desired_dump.items() if k != "depends_on"}
        try:
            resolved_planned = resolve(planned, lookup, self._scope())
        except ExpressionError as exc:
            raise ValidationError([f"Resource '{addr}': {exc}"]) from exc

        if prior_inst is not None and prior_inst.mode != resource.mode:
            logger.info("%s changed mode %s -> %s", addr, prior_inst.mode, resource.mode)
            prior_inst = None

        common = {
            "address": addr,
            "resource_type": resource.resource_type,
            "mode": resource.mode,
            "desired": desired_dump,
            "planned": resolved_planned,
        }

        if resource.existing:
            prior = dict(prior_inst.attributes) if prior_inst is not None else None
            action = Action.NOOP if prior == resolved_planned else Action.READ
            logger.debug("Classified %s as %s", addr, action.value)
            return ResourceChange(action=action, prior=prior, **common)

        if prior_inst is None:
            logger.debug("Classified %s as create", addr)
            return ResourceChange(action=Action.CREATE, **common)

        prior = dict(prior_inst.attributes)
        compare_strategies = collect_compare_strategies(resource)
        diff = {
            k: {"from": prior.get(k), "to": v}
            for k, v in resolved_planned.items()
            if contains_unknown(v)
            or _values_differ(v, prior.get(k), strategy=compare_strategies.get(k))
        }
        replace_fields = self._replace_fields(resource, resolved_planned, prior, diff)
        if parent_replaced and "parent" not in replace_fields:
            replace_fields.append("parent")

        if replace_fields:
            action = Action.REPLACE
        elif diff:
            action = Action.UPDATE
        else:
            action = Action.NOOP
        logger.debug("Classified %s as %s", addr, action.value)
        return ResourceChange(
            action=action,
            prior=prior,
            diff=diff or None,
            replace_fields=replace_fields or None,
            **common,
        )

    def _plan_changes(self, graph: ResourceGraph, state: State) -> list[ResourceChange]:
        """Classify every declaration in dependency order.

        Documents of nodes that will be created or replaced are unknown until
        apply, so references to them resolve to ``(known after apply)``.
        """
        ctx = self._ctx(state.resources.get)
        known: dict[str, dict[str, Any] | None] = {}
        replaced: set[str] = set()

        def lookup(name: str) -> dict[str, Any] | None:
            return known.get(name)

        changes: list[ResourceChange] = []
        for addr in graph.order:
            resource = graph.resources[addr]
            change = self._classify_change(
                resource,
                state.resources.get(addr),
                graph.dependencies[addr],
                lookup,
                parent_replaced=resource.parent_address in replaced,
            )
            changes.append(change)

            match change.action:
                case Action.CREATE:
                    known[addr] = None
                case Action.REPLACE:
                    known[addr] = None
                    replaced.add(addr)
                case Action.READ:
                    handler = self._registry.get(resource.resource_type).handler
                    known[addr] = {"id": handler.resource_id(ctx, resource)}
                case Action.UPDATE:
                    known[addr] = _pending_document(
                        resource, state.resources[addr], change.diff or {}
                    )
                case _:
                    inst = state.resources[addr]
                    known[addr] = {**inst.document, "id": inst.resource_id}
        return changes

    def _plan_removals(self, state: State, addrs: set[str]) -> list[ResourceChange]:
        """Plan delete (managed) / forget (existing) changes in reverse dependency order."""
        changes: list[ResourceChange] = []
        for addr in self._delete_order(state, addrs):
            inst = state.resources[addr]
            self._registry.get(inst.resource_type)  # fail early if unknown
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.FORGET if inst.existing else Action.DELETE,
                    mode=inst.mode,
                    prior=dict(inst.attributes),
                )
            )
        return changes

    def _delete_order(self, state: State, delete_set: set[str]) -> list[str]:
        dep_map: dict[str, list[str]] = {}
        priorities: dict[str, int] = {}
        for addr in sorted(delete_set):
            inst = state.resources[addr]
            deps = set(inst.dependencies)
            if inst.parent:
                deps.add(inst.parent)
            dep_map[addr] = [d for d in sorted(deps) if d in delete_set]
            priorities[addr] = self._registry.get(inst.resource_type).plan_priority
        return DependencyGraph(
            sorted(delete_set), dep_map, priorities=priorities
        ).reverse_topological_order()

    def plan(
        self,
        resources: Sequence[Resource],
        *,
        outputs: Mapping[str, Any] | None = None,
        destroy: bool = False,
        refresh: bool = True,
    ) -> Plan:
        outputs = dict(outputs or {})
        logger.info(
            "Planning %d resources (destroy=%s, refresh=%s)", len(resources), destroy, refresh
        )
        graph = self.graph(resources)

        # Only lock when refresh may write state.
        lock_cm = self._lock() if refresh else contextlib.nullcontext()
        with lock_cm:
            state = self._load_state()

            if refresh:
                changed = self._refresh_state_in_place(state)
                if changed:
                    state.serial += 1
                    state.save(self._state_path)

            if destroy:
                changes = self._plan_removals(state, set(state.resources))
            else:
                self._validate(graph, state, outputs)
                changes = self._plan_changes(graph, state)
                changes.extend(self._plan_removals(state, set(state.resources) - set(graph.order)))

            metadata = PlanMetadata(
                template=self._template,
                created_at=datetime.now(UTC),
                destroy=destroy,
                refresh=refresh,
                state_lineage=state.lineage,
                state_serial=state.serial,
                state_digest=compute_state_digest(state),
                config_digest=_compute_config_digest(
                    [] if destroy else resources, {} if destroy else outputs
                ),
                engine_version=__version__,
            )

            return Plan(metadata=metadata, changes=changes, outputs={} if destroy else outputs)

    # ── apply ───────────────────────────────────────────────────────

    def _resolve_outputs(self, plan: Plan, store: StateStore) -> dict[str, Any]:
        values = resolve(plan.outputs, store.document, self._scope())
        for name, value in values.items():
            if value == UNKNOWN:
                logger.warning("Output %s could not be resolved", name)
                values[name] = None
        return values

    def apply(self, plan: Plan, *, progress: ProgressCallback | None = None) -> ApplyResult:
        """Execute *plan* against the current state.

        Raises:
            StalePlanError: State changed since the plan was computed.
            ApplyError: A node failed; the error carries the per-node report.
        """
        with self._lock():
            state = self._load_state_for_apply(plan)
            if plan.metadata.template != self._template:
                raise StateMismatchError(self._template, plan.metadata.template)

            # Stale plan detection
            if state.lineage != plan.metadata.state_lineage:
                raise StalePlanError("State lineage changed; re-run plan")
            if state.serial != plan.metadata.state_serial:
                raise StalePlanError("State serial changed; re-run plan")
            if compute_state_digest(state) != plan.metadata.state_digest:
                raise StalePlanError("State digest changed; re-run plan")

            store = StateStore(state, self._state_path)
            executor = PlanExecutor(
                ctx=self._ctx(store.get),
                store=store,
                registry=self._registry,
                retry_cfg=self._execution.retry,
                parallelism=self._execution.parallelism,
                progress=progress,
            )
            result = executor.execute(plan)

            result.outputs = self._resolve_outputs(plan, store)
            store.set_outputs(result.outputs)
            logger.info("Apply complete: %s", result.summary())
            return result
