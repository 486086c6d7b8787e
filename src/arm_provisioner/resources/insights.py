"""Diagnostic setting resource model."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field, ValidationInfo, field_validator

from arm_provisioner.resources.base import Resource
from arm_provisioner.resources.markers import ArmParam, Immutable

DIAGNOSTIC_SETTING_TYPE = "Microsoft.Insights/diagnosticSettings"


def _all_logs() -> list[dict[str, Any]]:
    return [{"categoryGroup": "allLogs", "enabled": True}]


def _normalize_categories(entries: list[dict[str, Any]], *, field: str) -> list[dict[str, Any]]:
    normalized: list[dict[str, Any]] = []
    for entry in entries:
        keys = {"category", "categoryGroup"} & set(entry)
        if len(keys) != 1:
            raise ValueError(f"each {field} entry needs exactly one of category/categoryGroup")
        normalized.append({"enabled": True, **entry})
    return normalized


class DiagnosticSettingResource(Resource):
    """Routes platform logs and metrics of ``scope`` to a destination.

    Entries in ``logs`` / ``metrics`` use the provider's shape, e.g.
    ``{"categoryGroup": "audit"}`` or ``{"category": "RequestResponse"}``;
    ``enabled`` defaults to true.
    """

    resource_type: ClassVar[str] = "diagnostic_setting"
    plan_priority: ClassVar[int] = 60

    arm_type: Literal["Microsoft.Insights/diagnosticSettings"] = DIAGNOSTIC_SETTING_TYPE
    api_version: str = "2021-05-01-preview"

    scope: Annotated[str, Immutable()]
    workspace_id: Annotated[str | None, ArmParam("properties.workspaceId")] = None
    storage_account_id: Annotated[str | None, ArmParam("properties.storageAccountId")] = None
    event_hub_authorization_rule_id: Annotated[
        str | None, ArmParam("properties.eventHubAuthorizationRuleId")
    ] = None
    event_hub_name: Annotated[str | None, ArmParam("properties.eventHubName")] = None
    log_analytics_destination_type: Annotated[
        Literal["Dedicated", "AzureDiagnostics"] | None,
        ArmParam("properties.logAnalyticsDestinationType"),
    ] = None
    logs: Annotated[list[dict[str, Any]], ArmParam("properties.logs")] = Field(
        default_factory=_all_logs
    )
    metrics: Annotated[list[dict[str, Any]], ArmParam("properties.metrics")] = Field(
        default_factory=list
    )

    @field_validator("logs", "metrics")
    @classmethod
    def _check_categories(
        cls, v: list[dict[str, Any]], info: ValidationInfo
    ) -> list[dict[str, Any]]:
        return _normalize_categories(v, field=info.field_name or "category")

    @property
    def destinations(self) -> list[str]:
        candidates = (
            self.workspace_id,
            self.storage_account_id,
            self.event_hub_authorization_rule_id,
        )
        return [d for d in candidates if d]
