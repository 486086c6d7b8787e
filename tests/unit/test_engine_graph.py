from __future__ import annotations

import pytest

from arm_provisioner.engine.errors import (
    DependencyCycleError,
    DuplicateAddressError,
    UnknownReferenceError,
    ValidationError,
)
from arm_provisioner.engine.graph import DependencyGraph, build_graph
from arm_provisioner.resources.authorization import RoleAssignmentResource
from arm_provisioner.resources.cognitive import CognitiveAccountResource, ModelDeploymentResource
from arm_provisioner.resources.existing import ExistingResource
from arm_provisioner.resources.generic import GenericResource
from arm_provisioner.resources.insights import DiagnosticSettingResource

ROLE = "5e0bd9bd-7b93-4f28-af87-19fc36ad61bd"
PRINCIPAL = "11111111-2222-3333-4444-555555555555"


def _generic(name: str, **kwargs: object) -> GenericResource:
    return GenericResource(
        name=name,
        arm_type="Microsoft.Storage/storageAccounts",
        api_version="2023-01-01",
        **kwargs,  # type: ignore[arg-type]
    )


def _scenario() -> list:
    return [
        DiagnosticSettingResource(
            name="diag", scope="${account.id}", workspace_id="${workspace.id}"
        ),
        RoleAssignmentResource(
            name="reader",
            scope="${account.id}",
            role_definition_id=ROLE,
            principal_id=PRINCIPAL,
        ),
        ModelDeploymentResource(name="gpt", parent="account", model_name="gpt-4o"),
        CognitiveAccountResource(name="account", location="eastus"),
        ExistingResource(
            name="workspace",
            arm_type="Microsoft.OperationalInsights/workspaces",
            api_version="2022-10-01",
            resource_name="logs",
        ),
    ]


class TestDependencyGraph:
    def test_topological_order_respects_dependencies(self) -> None:
        g = DependencyGraph(["c", "b", "a"], {"c": ["b"], "b": ["a"]})
        assert g.topological_order() == ["a", "b", "c"]

    def test_ties_broken_by_priority_then_input_order(self) -> None:
        g = DependencyGraph(["x", "y", "z"], {}, priorities={"z": 0, "x": 5, "y": 5})
        assert g.topological_order() == ["z", "x", "y"]

    def test_same_input_same_order(self) -> None:
        deps = {"d": ["b", "c"], "b": ["a"], "c": ["a"]}
        first = DependencyGraph(["a", "b", "c", "d"], deps).topological_order()
        for _ in range(5):
            assert DependencyGraph(["a", "b", "c", "d"], deps).topological_order() == first

    def test_reverse_order(self) -> None:
        g = DependencyGraph(["a", "b"], {"b": ["a"]})
        assert g.reverse_topological_order() == ["b", "a"]

    def test_dependencies_outside_graph_are_ignored(self) -> None:
        g = DependencyGraph(["a"], {"a": ["missing"]})
        assert g.topological_order() == ["a"]

    def test_cycle_names_members(self) -> None:
        g = DependencyGraph(["a", "b", "c", "d"], {"a": ["c"], "b": ["a"], "c": ["b"]})
        with pytest.raises(DependencyCycleError) as exc_info:
            g.topological_order()
        assert set(exc_info.value.addresses) == {"a", "b", "c"}
        assert "d" not in exc_info.value.addresses

    def test_descendants(self) -> None:
        g = DependencyGraph(["a", "b", "c", "d"], {"b": ["a"], "c": ["b"]})
        assert g.descendants("a") == {"b", "c"}
        assert g.descendants("d") == set()


class TestBuildGraph:
    def test_scenario_order(self) -> None:
        graph = build_graph(_scenario())
        order = graph.order
        assert order.index("account") < order.index("gpt")
        assert order.index("account") < order.index("reader")
        assert order.index("account") < order.index("diag")
        assert order.index("workspace") < order.index("diag")
        # Existing lookups sort first among independent nodes.
        assert order[0] == "workspace"

    def test_edges_from_refs_and_expressions(self) -> None:
        graph = build_graph(_scenario())
        assert graph.dependencies["gpt"] == ["account"]
        assert graph.dependencies["reader"] == ["account"]
        assert set(graph.dependencies["diag"]) == {"account", "workspace"}
        assert graph.dependencies["account"] == []
        assert graph.children["account"] == ["gpt"]

    def test_explicit_depends_on(self) -> None:
        graph = build_graph([_generic("b", depends_on=["a"]), _generic("a")])
        assert graph.order == ["a", "b"]

    def test_duplicate_address(self) -> None:
        with pytest.raises(DuplicateAddressError):
            build_graph([_generic("a"), _generic("a")])

    def test_unknown_reference_in_expression(self) -> None:
        r = _generic("a", body={"properties": {"target": "${nope.id}"}})
        with pytest.raises(UnknownReferenceError) as exc_info:
            build_graph([r])
        assert exc_info.value.address == "a"
        assert exc_info.value.reference == "nope"

    def test_unknown_depends_on(self) -> None:
        with pytest.raises(UnknownReferenceError):
            build_graph([_generic("a", depends_on=["ghost"])])

    def test_cycle_through_expressions(self) -> None:
        a = _generic("a", body={"x": "${b.id}"})
        b = _generic("b", body={"x": "${a.id}"})
        with pytest.raises(DependencyCycleError, match="a -> b -> a"):
            build_graph([a, b])

    def test_self_reference_is_a_cycle(self) -> None:
        with pytest.raises(DependencyCycleError):
            build_graph([_generic("a", body={"x": "${a.id}"})])

    def test_ref_type_is_checked(self) -> None:
        resources = [
            _generic("storage"),
            ModelDeploymentResource(name="gpt", parent="storage", model_name="gpt-4o"),
        ]
        with pytest.raises(ValidationError, match="must reference a"):
            build_graph(resources)

    def test_existing_cannot_reference(self) -> None:
        resources = [
            _generic("a"),
            ExistingResource(
                name="b",
                arm_type="Microsoft.Storage/storageAccounts",
                api_version="2023-01-01",
                depends_on=["a"],
            ),
        ]
        with pytest.raises(ValidationError, match="cannot reference"):
            build_graph(resources)

    def test_malformed_expression(self) -> None:
        with pytest.raises(ValidationError, match="Unknown function"):
            build_graph([_generic("a", body={"x": "${concat(a, b)}"})])

    def test_to_dot(self) -> None:
        dot = build_graph(_scenario()).to_dot()
        assert dot.startswith("digraph resources {")
        assert '"gpt" -> "account";' in dot
        assert '"workspace" [shape=box, style=dashed];' in dot
