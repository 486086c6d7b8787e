"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.constructor import SafeConstructor

from arm_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from arm_provisioner.resources.base import Resource


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_PROVIDER_ENV_MAP: dict[str, str] = {
    "subscription_id": "ARM_SUBSCRIPTION_ID",
    "resource_group": "ARM_RESOURCE_GROUP",
    "location": "ARM_LOCATION",
    "endpoint": "ARM_ENDPOINT",
    "access_token": "ARM_ACCESS_TOKEN",
    "verify_ssl": "ARM_VERIFY_SSL",
}

_PROVIDER_BOOL_FIELDS: frozenset[str] = frozenset({"verify_ssl"})


def _resolve_provider(raw_provider: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve provider fields from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _PROVIDER_ENV_MAP.items():
        val = raw_provider.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            if field in _PROVIDER_BOOL_FIELDS and isinstance(val, str):
                if val.lower() not in SafeConstructor.bool_values:
                    raise ConfigError(f"Invalid boolean for {env_key}: {val!r}")
                val = SafeConstructor.bool_values[val.lower()]
            resolved[field] = val

    missing = [
        _PROVIDER_ENV_MAP[f] for f in ("subscription_id", "resource_group") if f not in resolved
    ]
    if missing:
        raise ConfigError(
            f"provider settings missing: {', '.join(missing)} (set in YAML or environment)"
        )
    return resolved


def _cloud_identity(r: Resource) -> tuple[str, ...]:
    scope = getattr(r, "scope", None) or ""
    return (r.arm_type.lower(), r.parent_address or "", scope, r.cloud_name.lower())


def _validate_unique_names(resources: list[Resource]) -> list[str]:
    """Check symbolic names, and that no two managed declarations target one resource."""
    errors: list[str] = []
    names: set[str] = set()
    targets: dict[tuple[str, ...], str] = {}
    for r in resources:
        if r.name in names:
            errors.append(f"Duplicate resource name '{r.name}'")
            continue
        names.add(r.name)
        if r.existing or (getattr(r, "scope", None) and r.resource_name is None):
            # Lookups may alias; generated extension names are unique per scope.
            continue
        key = _cloud_identity(r)
        if key in targets:
            errors.append(
                f"Resources '{targets[key]}' and '{r.name}' both manage "
                f"{r.arm_type} '{r.cloud_name}'"
            )
        else:
            targets[key] = r.name
    return errors


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} does not contain a YAML mapping")

    try:
        raw["provider"] = _resolve_provider(raw.get("provider") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    if not config.state_path.is_absolute():
        config.state_path = config.config_dir / config.state_path

    errors = _validate_unique_names(config.resources)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
