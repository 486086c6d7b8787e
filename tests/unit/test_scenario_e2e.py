"""End-to-end runs of the AI services template, including partial failures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from ai_template import (
    ACCOUNT_ID,
    DIAG_ID,
    ORDER,
    RG_STORAGE_ID,
    diagnostics,
    seed_workspace,
    template,
)

from arm_provisioner.core.errors import ProviderValidationError
from arm_provisioner.core.state import State
from arm_provisioner.engine.errors import ApplyError
from arm_provisioner.engine.types import Action, NodeStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from fake_arm import InMemoryProvider

    from arm_provisioner.engine import ProvisioningEngine


@pytest.fixture
def engine(
    make_engine: Callable[..., ProvisioningEngine], arm: InMemoryProvider
) -> ProvisioningEngine:
    seed_workspace(arm)
    return make_engine()


def _statuses(exc: ApplyError) -> dict[str, NodeStatus]:
    return {n.address: n.status for n in exc.result.nodes}


def test_diagnostic_setting_rejected(engine: ProvisioningEngine, arm: InMemoryProvider) -> None:
    arm.fail(
        "PUT",
        "diag",
        ProviderValidationError(
            "Category 'Audit' is not supported", status_code=400, code="BadRequest"
        ),
    )

    with pytest.raises(ApplyError) as exc_info:
        engine.apply(engine.plan(template()))

    assert exc_info.value.address == "diag"
    assert _statuses(exc_info.value) == {
        "workspace": NodeStatus.APPLIED,
        "account": NodeStatus.APPLIED,
        "gpt": NodeStatus.APPLIED,
        "reader": NodeStatus.APPLIED,
        "diag": NodeStatus.FAILED,
    }
    failed = exc_info.value.result.nodes[-1]
    assert failed.error_kind == "validation"
    assert "not supported" in (failed.message or "")

    # Everything that succeeded is recorded; the failed node is not.
    assert set(State.load(engine.state_path).resources) == {
        "workspace",
        "account",
        "gpt",
        "reader",
    }
    assert arm.doc(DIAG_ID) is None

    # Re-planning picks up exactly where the run stopped.
    replan = engine.plan(template())
    assert {c.address: c.action for c in replan.changes} == {
        "workspace": Action.NOOP,
        "account": Action.NOOP,
        "gpt": Action.NOOP,
        "reader": Action.NOOP,
        "diag": Action.CREATE,
    }
    diag = next(c for c in replan.changes if c.address == "diag")
    assert diag.planned["scope"] == ACCOUNT_ID

    result = engine.apply(replan)
    assert [c.address for c in result.applied] == ["diag"]
    assert arm.doc(DIAG_ID) is not None


def test_failed_account_skips_everything_under_it(
    engine: ProvisioningEngine, arm: InMemoryProvider
) -> None:
    arm.fail("PUT", "account", ProviderValidationError("Subdomain already taken"))

    with pytest.raises(ApplyError) as exc_info:
        engine.apply(engine.plan(template()))

    assert _statuses(exc_info.value) == {
        "workspace": NodeStatus.APPLIED,
        "account": NodeStatus.FAILED,
        "gpt": NodeStatus.SKIPPED,
        "reader": NodeStatus.SKIPPED,
        "diag": NodeStatus.SKIPPED,
    }
    assert arm.writes() == [("PUT", "account")]
    assert set(State.load(engine.state_path).resources) == {"workspace"}


def test_siblings_in_flight_complete_when_deployment_fails(
    engine: ProvisioningEngine, arm: InMemoryProvider
) -> None:
    arm.fail("PUT", "gpt", ProviderValidationError("Model gpt-4o is not available"))
    # Archive to storage so diag depends on the account alone.
    diag = diagnostics(workspace_id=None, storage_account_id=RG_STORAGE_ID)

    with pytest.raises(ApplyError) as exc_info:
        engine.apply(engine.plan(template(diag=diag)))

    # gpt, reader and diag become ready together once the account exists.
    assert _statuses(exc_info.value) == {
        "workspace": NodeStatus.APPLIED,
        "account": NodeStatus.APPLIED,
        "gpt": NodeStatus.FAILED,
        "reader": NodeStatus.APPLIED,
        "diag": NodeStatus.APPLIED,
    }
    assert set(State.load(engine.state_path).resources) == set(ORDER) - {"gpt"}


def test_full_lifecycle(engine: ProvisioningEngine, arm: InMemoryProvider) -> None:
    outputs = {"endpoint": "${account.properties.endpoint}"}

    created = engine.apply(engine.plan(template(), outputs=outputs))
    assert len(created.applied) == 5
    assert created.outputs == {"endpoint": "https://ai-demo.cognitiveservices.azure.com/"}

    noop = engine.plan(template(), outputs=outputs)
    assert all(c.action == Action.NOOP for c in noop.changes)

    destroyed = engine.apply(engine.plan(template(), destroy=True))
    assert destroyed.summary()["delete"] == 4
    assert destroyed.summary()["forget"] == 1
    assert arm.doc(ACCOUNT_ID) is None
    assert State.load(engine.state_path).resources == {}
