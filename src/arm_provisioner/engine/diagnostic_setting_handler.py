"""Diagnostic setting handler."""

from __future__ import annotations

from typing import TYPE_CHECKING

from arm_provisioner.engine.arm_handler import ArmResourceHandler
from arm_provisioner.resources.insights import DiagnosticSettingResource

if TYPE_CHECKING:
    from arm_provisioner.engine.handlers import EngineContext


class DiagnosticSettingHandler(ArmResourceHandler[DiagnosticSettingResource]):
    """Diagnostic settings are extension resources on the monitored scope."""

    def __init__(self) -> None:
        super().__init__(DiagnosticSettingResource)

    def validate(self, ctx: EngineContext, desired: DiagnosticSettingResource) -> list[str]:
        errors = super().validate(ctx, desired)
        if not desired.destinations:
            errors.append(
                f"Resource '{desired.address}': at least one of workspace_id, "
                "storage_account_id or event_hub_authorization_rule_id is required"
            )
        if desired.event_hub_name and not desired.event_hub_authorization_rule_id:
            errors.append(
                f"Resource '{desired.address}': event_hub_name needs "
                "event_hub_authorization_rule_id"
            )
        if not desired.logs and not desired.metrics:
            errors.append(f"Resource '{desired.address}': no logs or metrics are routed")
        return errors
