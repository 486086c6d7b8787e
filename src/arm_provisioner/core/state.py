"""State management for tracking deployed resources."""

import contextlib
import hashlib
import json
import logging
import os
import tempfile
import uuid
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ResourceMode = Literal["managed", "existing"]


def _canonical_json(obj: Any) -> str:
    # Stable encoding for hashes/digests. `default=str` keeps it robust for
    # datetimes/paths/etc while staying deterministic enough for our use.
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def compute_attributes_hash(attrs: Mapping[str, Any]) -> str:
    """Compute a stable hash for a resource's stored attributes."""
    payload = _canonical_json(attrs)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResourceInstance(BaseModel):
    """A tracked resource instance in the state file.

    Attributes:
        address: Symbolic name of the declaration (e.g., "account")
        resource_type: Registry type of the declaration (e.g., "cognitive_account")
        arm_type: Provider resource type (e.g., "Microsoft.CognitiveServices/accounts")
        api_version: API version used for provider calls
        name: Symbolic name (same as address)
        mode: "managed" for resources this engine writes, "existing" for lookups
        parent: Address of the owning declaration for nested resources
        resource_id: Provider resource id
        attributes: Observed values of the declared fields, used for diffing
        attributes_hash: SHA256 hash for change detection
        document: Last observed provider document (source for references/outputs)
        etag: Provider concurrency token, sent back on update
        dependencies: Addresses of dependencies
        created_at: When the resource was created
        updated_at: When the resource was last updated
    """

    address: str
    resource_type: str
    arm_type: str
    api_version: str
    name: str
    mode: ResourceMode = "managed"
    parent: str | None = None
    resource_id: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    attributes_hash: str = ""
    document: dict[str, Any] = Field(default_factory=dict)
    etag: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def existing(self) -> bool:
        return self.mode == "existing"


class State(BaseModel):
    """Terraform-style state file for one template instance.

    Attributes:
        version: State file format version
        template: Template instance key
        resources: Mapping of resource addresses to instances
        outputs: Resolved output values from the last successful apply
    """

    version: int = 1
    template: str
    serial: int = 0
    lineage: str = Field(default_factory=lambda: str(uuid.uuid4()))
    resources: dict[str, ResourceInstance] = Field(default_factory=dict)
    outputs: dict[str, Any] = Field(default_factory=dict)

    def save(self, path: Path) -> None:
        """Write the state as JSON, keeping the previous file as ``<path>.backup``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            Path(f"{path}.backup").write_bytes(path.read_bytes())
        payload = json.dumps(self.model_dump(mode="json"), indent=2, sort_keys=True)
        _write_atomically(path, payload + "\n")
        logger.debug("State saved: serial=%d path=%s", self.serial, path)

    @classmethod
    def load(cls, path: Path) -> "State":
        state = cls.model_validate_json(path.read_text(encoding="utf-8"))
        logger.debug("State loaded from %s (serial=%d)", path, state.serial)
        return state

    @classmethod
    def load_or_create(cls, path: Path, template: str) -> "State":
        """The state at *path*, or a fresh lineage for *template* if there is none."""
        try:
            return cls.load(path)
        except FileNotFoundError:
            logger.debug("No state at %s, starting template %s", path, template)
            return cls(template=template)


def _write_atomically(path: Path, content: str) -> None:
    """Write through a temp file in the same directory, then rename over *path*."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            tmp.unlink()


def compute_state_digest(state: State) -> str:
    """Compute a stable digest of state content (excluding timestamps).

    Used for stale-plan detection. Observed documents are covered through
    ``attributes_hash`` and ``etag``; timestamps never force a re-plan.
    """
    resources = []
    for address, inst in sorted(state.resources.items(), key=lambda kv: kv[0]):
        resources.append(
            {
                "address": address,
                "resource_type": inst.resource_type,
                "mode": inst.mode,
                "resource_id": inst.resource_id,
                "attributes_hash": inst.attributes_hash,
                "etag": inst.etag,
                "dependencies": sorted(inst.dependencies),
            }
        )

    digestable = {
        "version": state.version,
        "template": state.template,
        "lineage": state.lineage,
        "serial": state.serial,
        "resources": resources,
    }
    payload = _canonical_json(digestable)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
