"""Engine types (plan, changes, apply report, execution settings)."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from arm_provisioner.core.state import ResourceMode  # noqa: TC001 (pydantic needs it at runtime)


class Action(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    READ = "read"
    FORGET = "forget"
    NOOP = "no-op"


# Actions that call the provider with a write.
WRITE_ACTIONS = frozenset({Action.CREATE, Action.UPDATE, Action.REPLACE, Action.DELETE})


class NodeStatus(str, Enum):
    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_ATTEMPTED = "not_attempted"


class PlanMetadata(BaseModel):
    template: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    destroy: bool
    refresh: bool
    state_lineage: str
    state_serial: int
    state_digest: str
    config_digest: str
    engine_version: str


class ResourceChange(BaseModel):
    address: str
    resource_type: str
    action: Action
    mode: ResourceMode = "managed"
    desired: dict[str, Any] | None = None
    prior: dict[str, Any] | None = None
    planned: dict[str, Any] | None = None
    diff: dict[str, Any] | None = None
    replace_fields: list[str] | None = None


class Plan(BaseModel):
    metadata: PlanMetadata
    changes: list[ResourceChange]
    outputs: dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.changes:
            counts[c.action.value] += 1
        return counts

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.model_dump(mode="json")
        path.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> Plan:
        path = Path(path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))


class NodeResult(BaseModel):
    """Outcome of a single plan node during apply."""

    address: str
    action: Action
    status: NodeStatus
    error_kind: str | None = None
    message: str | None = None


class ApplyResult(BaseModel):
    applied: list[ResourceChange] = Field(default_factory=list)
    nodes: list[NodeResult] = Field(default_factory=list)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def summary(self) -> dict[str, int]:
        counts = {a.value: 0 for a in Action}
        for c in self.applied:
            counts[c.action.value] += 1
        return counts

    def by_status(self, status: NodeStatus) -> list[str]:
        return [n.address for n in self.nodes if n.status == status]


class RetryConfig(BaseModel):
    """Retry / backoff settings for transient provider failures."""

    max_attempts: int = Field(default=5, ge=1)
    initial_wait_seconds: float = Field(default=1.0, ge=0)
    max_wait_seconds: float = Field(default=30.0, ge=0)


class ExecutionConfig(BaseModel):
    """How plans are executed."""

    parallelism: int = Field(default=4, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)
    operation_timeout_seconds: float = Field(default=1800.0, gt=0)
    lock_timeout_seconds: float | None = Field(default=None, ge=0)
    retry: RetryConfig = RetryConfig()
