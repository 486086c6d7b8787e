"""Azure AI / Cognitive Services resource models."""

from __future__ import annotations

from typing import Annotated, Any, ClassVar, Literal

from pydantic import Field

from arm_provisioner.resources.base import Resource, TrackedResource
from arm_provisioner.resources.markers import ArmParam, Immutable, Ref

ACCOUNT_TYPE = "Microsoft.CognitiveServices/accounts"
DEPLOYMENT_TYPE = "Microsoft.CognitiveServices/accounts/deployments"


class CognitiveAccountResource(TrackedResource):
    """An Azure AI services (Cognitive Services) account.

    ``kind``, ``location`` and ``custom_subdomain`` cannot change in place;
    changing any of them replaces the account and everything nested under it.
    """

    resource_type: ClassVar[str] = "cognitive_account"
    plan_priority: ClassVar[int] = 10

    arm_type: Literal["Microsoft.CognitiveServices/accounts"] = ACCOUNT_TYPE
    api_version: str = "2023-05-01"

    kind: Annotated[str, ArmParam("kind"), Immutable()] = "AIServices"
    sku: Annotated[str, ArmParam("sku.name")] = "S0"
    custom_subdomain: Annotated[
        str | None, ArmParam("properties.customSubDomainName"), Immutable()
    ] = None
    public_network_access: Annotated[
        Literal["Enabled", "Disabled"], ArmParam("properties.publicNetworkAccess")
    ] = "Enabled"
    disable_local_auth: Annotated[bool, ArmParam("properties.disableLocalAuth")] = False
    identity: Annotated[
        Literal["None", "SystemAssigned"], ArmParam("identity.type")
    ] = "SystemAssigned"
    network_acls: Annotated[dict[str, Any] | None, ArmParam("properties.networkAcls")] = None


class ModelDeploymentResource(Resource):
    """A model deployment nested under a Cognitive Services account.

    The deployment shares its parent's lifecycle: it is created after the
    account, replaced with it, and deleted before it.
    """

    resource_type: ClassVar[str] = "model_deployment"
    plan_priority: ClassVar[int] = 20

    arm_type: Literal["Microsoft.CognitiveServices/accounts/deployments"] = DEPLOYMENT_TYPE
    api_version: str = "2023-05-01"

    parent: Annotated[str, Ref(ACCOUNT_TYPE)]
    model_format: Annotated[str, ArmParam("properties.model.format"), Immutable()] = "OpenAI"
    model_name: Annotated[str, ArmParam("properties.model.name"), Immutable()]
    model_version: Annotated[str | None, ArmParam("properties.model.version")] = None
    sku_name: Annotated[str, ArmParam("sku.name")] = "Standard"
    capacity: Annotated[int, ArmParam("sku.capacity"), Field(ge=1)] = 1
    version_upgrade_option: Annotated[
        Literal["OnceNewDefaultVersionAvailable", "OnceCurrentVersionExpired", "NoAutoUpgrade"]
        | None,
        ArmParam("properties.versionUpgradeOption"),
    ] = None
    rai_policy_name: Annotated[str | None, ArmParam("properties.raiPolicyName")] = None
