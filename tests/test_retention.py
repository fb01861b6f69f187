"""Unit tests for kitgc/retention.py"""

import sys
from pathlib import Path

import pytest

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from kitgc.kit_graph import build_graph
from kitgc.kit_usage import get_used_images
from kitgc.models import Integration, IntegrationKit
from kitgc.retention import discovery_order, plan_retention, propagate_usage, trim_tree

ROOT_IMAGE = "registry.local/platform/root:1"


def image_of(name):
    return f"registry.local/test/kit-{name}:1"


def build_tree(notation):
    """Build kits and integrations from a compact tree notation.

    ``a(f)b(t)|c(f)`` is kit a (unused) with children b (used) and c (unused):
    each ``name(t|f)`` is a child of the previous kit and ``|`` steps back up
    to the parent.
    """
    tokens = []
    i = 0
    while i < len(notation):
        if notation[i] == "|":
            tokens.append("|")
            i += 1
        else:
            end = notation.index(")", i)
            name, used = notation[i:end].split("(")
            tokens.append((name, used == "t"))
            i = end + 1

    kits, integrations = [], []
    stack = []
    for token in tokens:
        if token == "|":
            stack.pop()
            continue
        name, used = token
        base = stack[-1].image if stack else ROOT_IMAGE
        kit = IntegrationKit(name=name, namespace="test", phase="Ready", image=image_of(name), base_image=base)
        kits.append(kit)
        if used:
            integrations.append(Integration(name=f"it-{name}", namespace="test", image=kit.image))
        stack.append(kit)
    return kits, integrations


def plan_for(notation):
    kits, integrations = build_tree(notation)
    return plan_retention(kits, get_used_images(integrations), remove_images=True)


def names(nodes):
    return "".join(sorted(node.kit.name for node in nodes))


def chain_names(chain):
    return "".join(node.kit.name for node in chain)


class TestTreeNotation:
    """Sanity checks for the build_tree helper"""

    def test_siblings_after_step_back(self):
        kits, integrations = build_tree("a(f)b(t)|c(f)")
        by_name = {k.name: k for k in kits}

        assert by_name["b"].base_image == by_name["a"].image
        assert by_name["c"].base_image == by_name["a"].image
        assert [i.image for i in integrations] == [by_name["b"].image]


class TestDiscoveryOrder:
    """Tests for the parent-before-descendants ordering"""

    @pytest.mark.parametrize("notation", [
        "a(f)",
        "a(f)b(f)c(f)",
        "a(f)b(f)|c(f)|d(f)",
        "a(f)b(f)e(f)|f(f)k(t)|||c(t)|d(f)g(t)|h(f)|i(f)|j(t)|||",
    ])
    def test_reversed_order_visits_descendants_first(self, notation):
        kits, _ = build_tree(notation)
        graph = build_graph(kits, {})

        order = discovery_order(graph, graph.roots[0])
        reversed_positions = {node.index: pos for pos, node in enumerate(reversed(order))}

        assert len(order) == len(graph)
        for node in graph:
            ancestor = graph.parent_of(node)
            while ancestor is not None:
                assert reversed_positions[node.index] < reversed_positions[ancestor.index]
                ancestor = graph.parent_of(ancestor)

    def test_usage_counts(self):
        kits, integrations = build_tree("a(f)b(t)|c(t)|d(f)")
        graph = build_graph(kits, get_used_images(integrations))
        root = graph.roots[0]

        propagate_usage(graph, discovery_order(graph, root))

        assert root.used_by_children == 2
        assert root.is_used is True


class TestScenarios:
    """Planning scenarios on small kit forests"""

    def test_two_independent_used_kits_are_untouched(self):
        plan = plan_for("k1(t)")
        other = plan_for("k2(t)")

        assert plan.nothing_to_do()
        assert other.nothing_to_do()

    def test_independent_roots_in_one_forest(self):
        k1 = IntegrationKit(name="k1", namespace="test", phase="Ready", image=image_of("k1"), base_image=ROOT_IMAGE)
        k2 = IntegrationKit(name="k2", namespace="test", phase="Ready", image=image_of("k2"), base_image=ROOT_IMAGE)
        used = get_used_images([
            Integration(name="x", namespace="test", image=k1.image),
            Integration(name="y", namespace="test", image=k2.image),
        ])

        plan = plan_retention([k1, k2], used, remove_images=True)

        assert plan.to_delete == []
        assert plan.to_squash == []

    def test_shared_parent_with_two_used_children_is_retained(self):
        plan = plan_for("k1(f)k2(t)|k3(t)|")

        assert plan.nothing_to_do()
        assert plan.graph.node_for_image(image_of("k1")).is_used is True

    def test_orphaned_kit_is_deleted(self):
        plan = plan_for("k1(f)")

        assert names(plan.to_delete) == "k1"
        assert plan.to_squash == []

    def test_chain_squashes_all_unused_ancestors(self):
        plan = plan_for("k1(f)k2(f)k3(t)")

        assert [chain_names(c) for c in plan.to_squash] == ["k3k2k1"]
        assert names(plan.to_delete) == "k1k2"

    def test_single_used_kit(self):
        assert plan_for("a(t)").nothing_to_do()

    def test_used_child_of_unused_root(self):
        plan = plan_for("a(f)b(t)")

        assert names(plan.to_delete) == "a"
        assert [chain_names(c) for c in plan.to_squash] == ["ba"]

    def test_long_chain(self):
        plan = plan_for("a(f)b(f)c(f)d(f)e(t)")

        assert names(plan.to_delete) == "abcd"
        assert [chain_names(c) for c in plan.to_squash] == ["edcba"]

    def test_complex_tree(self):
        plan = plan_for("a(f)b(f)e(f)|f(f)k(t)|||c(t)|d(f)g(t)|h(f)|i(f)|j(t)|||")

        assert names(plan.to_delete) == "befhi"
        assert [chain_names(c) for c in plan.to_squash] == ["kfb"]

    def test_chain_stops_at_used_ancestor(self):
        plan = plan_for("a(t)b(f)c(f)d(t)")

        assert [chain_names(c) for c in plan.to_squash] == ["dcb"]
        assert names(plan.to_delete) == "bc"


class TestPlanProperties:
    """Structural properties every plan satisfies"""

    @pytest.mark.parametrize("notation", [
        "a(f)",
        "a(t)b(f)c(t)|d(f)",
        "a(f)b(f)c(t)|d(t)||e(f)f(f)g(t)",
        "a(f)b(f)e(f)|f(f)k(t)|||c(t)|d(f)g(t)|h(f)|i(f)|j(t)|||",
    ])
    def test_outcomes(self, notation):
        plan = plan_for(notation)
        graph = plan.graph

        deleted = {node.index for node in plan.to_delete}
        anchors = [chain[0].index for chain in plan.to_squash]
        assert len(anchors) == len(set(anchors))
        assert not deleted & set(anchors)

        for chain in plan.to_squash:
            assert chain[0].is_used
            for member in chain[1:]:
                assert not member.is_used
                assert member.index in deleted
            beyond = graph.parent_of(chain[-1])
            assert beyond is None or beyond.is_used

        for node in graph:
            assert (node.index in deleted) == (not node.is_used)


class TestPlanWithoutImageRemoval:
    """With image removal disabled nothing is squashed"""

    def test_only_unreferenced_kits_are_deleted(self):
        kits, integrations = build_tree("a(f)b(f)c(t)")

        plan = plan_retention(kits, get_used_images(integrations), remove_images=False)

        assert names(plan.to_delete) == "ab"
        assert plan.to_squash == []
        assert plan.remove_images is False

    def test_kits_without_image_are_deleted_too(self):
        kit = IntegrationKit(name="failed", namespace="test", phase="Error")

        plan = plan_retention([kit], {}, remove_images=False)

        assert [node.kit for node in plan.to_delete] == [kit]


class TestTrimTree:
    """Tests for trim_tree on a single root"""

    def test_returns_delete_and_squash_lists(self):
        kits, integrations = build_tree("a(f)b(t)|c(f)")
        graph = build_graph(kits, get_used_images(integrations))

        to_delete, to_squash = trim_tree(graph, graph.roots[0])

        assert names(to_delete) == "ac"
        assert [chain_names(c) for c in to_squash] == ["ba"]
