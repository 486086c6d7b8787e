"""YAML configuration loading and convenience plan/apply API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from arm_provisioner.config.loader import ConfigError, load_config
from arm_provisioner.config.registry import default_registry
from arm_provisioner.config.schema import Config, ProviderConfig
from arm_provisioner.core.provider import ArmProvider, TokenAuth
from arm_provisioner.core.state import State
from arm_provisioner.engine.engine import ProgressCallback, ProvisioningEngine
from arm_provisioner.engine.graph import build_graph
from arm_provisioner.engine.types import Action, ResourceChange

if TYPE_CHECKING:
    from pathlib import Path

    from arm_provisioner.core.provider import Provider
    from arm_provisioner.engine.graph import ResourceGraph
    from arm_provisioner.engine.types import ApplyResult, Plan

__all__ = [
    "Config",
    "ConfigError",
    "ProviderConfig",
    "State",
    "apply",
    "drift",
    "graph",
    "load",
    "load_config",
    "outputs",
    "plan",
    "plan_and_apply",
    "refresh",
    "save_state",
    "validate",
]


def load(path: Path | str) -> Config:
    """Load a YAML configuration file."""
    return load_config(path)


def _provider_from_config(config: Config) -> ArmProvider:
    settings = config.provider
    if settings.access_token is None:
        raise ConfigError("provider.access_token is required (set ARM_ACCESS_TOKEN env var)")
    return ArmProvider(
        endpoint=settings.endpoint,
        auth=TokenAuth(access_token=settings.access_token),
        verify_ssl=settings.verify_ssl,
        operation_timeout=config.execution.operation_timeout_seconds,
    )


def _engine_from_config(config: Config, provider: Provider | None = None) -> ProvisioningEngine:
    """Build a ``ProvisioningEngine`` from a ``Config`` instance."""
    return ProvisioningEngine(
        provider=provider if provider is not None else _provider_from_config(config),
        template=config.template,
        subscription_id=config.provider.subscription_id,
        resource_group=config.provider.resource_group,
        location=config.provider.location,
        state_path=config.state_path,
        registry=default_registry(),
        execution=config.execution,
        replace_policy=config.replace_policy,
        lock_timeout=config.execution.lock_timeout_seconds,
    )


def plan(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    provider: Provider | None = None,
) -> Plan:
    """Plan changes for the given configuration."""
    engine = _engine_from_config(config, provider)
    return engine.plan(config.resources, outputs=config.outputs, destroy=destroy, refresh=refresh)


def apply(
    plan_obj: Plan,
    config: Config,
    *,
    progress: ProgressCallback | None = None,
    provider: Provider | None = None,
) -> ApplyResult:
    """Apply a previously computed plan."""
    engine = _engine_from_config(config, provider)
    return engine.apply(plan_obj, progress=progress)


def plan_and_apply(
    config: Config,
    *,
    destroy: bool = False,
    refresh: bool = True,
    provider: Provider | None = None,
) -> ApplyResult:
    """Plan and apply in one step."""
    plan_obj = plan(config, destroy=destroy, refresh=refresh, provider=provider)
    return apply(plan_obj, config, provider=provider)


def validate(config: Config) -> Plan:
    """Offline plan: checks references, handlers and field rules without provider calls."""
    offline = ArmProvider(endpoint=config.provider.endpoint)
    return plan(config, refresh=False, provider=offline)


def graph(config: Config) -> ResourceGraph:
    """Dependency graph of the configured resources (no provider calls)."""
    registry = default_registry()
    resource_graph = build_graph(config.resources)
    for r in config.resources:
        registry.for_resource(r)
    return resource_graph


def refresh(
    config: Config, *, provider: Provider | None = None
) -> tuple[list[ResourceChange], State]:
    """Refresh state from the live subscription (not persisted).

    Returns the list of drift changes and the new state. Call
    :func:`save_state` to persist the returned state to disk.
    """
    engine = _engine_from_config(config, provider)
    old_state, new_state = engine.refresh()
    return _build_drift_changes(old_state, new_state), new_state


def save_state(config: Config, state: State) -> None:
    """Persist state to disk."""
    from arm_provisioner.engine.lock import StateLock

    with StateLock(config.state_path, timeout=config.execution.lock_timeout_seconds):
        state.serial += 1
        state.save(config.state_path)


def drift(config: Config, *, provider: Provider | None = None) -> list[ResourceChange]:
    """Detect drift between the state file and the live subscription."""
    changes, _ = refresh(config, provider=provider)
    return changes


def outputs(config: Config) -> dict[str, Any]:
    """Outputs recorded by the last successful apply."""
    if not config.state_path.exists():
        return {}
    return dict(State.load(config.state_path).outputs)


def _build_drift_changes(old_state: State, new_state: State) -> list[ResourceChange]:
    """Compare old vs new state and return a list of drift changes."""
    old_attrs = {addr: inst.attributes.copy() for addr, inst in old_state.resources.items()}
    changes: list[ResourceChange] = []
    for addr, inst in new_state.resources.items():
        old = old_attrs.get(addr)
        if old is None:
            continue
        if old != inst.attributes:
            all_keys = sorted(set(old) | set(inst.attributes))
            diff = {
                k: {"from": old.get(k), "to": inst.attributes.get(k)}
                for k in all_keys
                if old.get(k) != inst.attributes.get(k)
            }
            changes.append(
                ResourceChange(
                    address=addr,
                    resource_type=inst.resource_type,
                    action=Action.UPDATE,
                    mode=inst.mode,
                    prior=old,
                    planned=dict(inst.attributes),
                    diff=diff,
                )
            )
    for addr in sorted(set(old_attrs) - set(new_state.resources)):
        inst = old_state.resources[addr]
        changes.append(
            ResourceChange(
                address=addr,
                resource_type=inst.resource_type,
                action=Action.DELETE,
                mode=inst.mode,
                prior=old_attrs[addr],
            )
        )
    return changes
