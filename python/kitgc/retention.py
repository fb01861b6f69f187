"""
Retention planning for IntegrationKits.

Decides, for every kit, whether it is deleted, whether it anchors a squash
chain (its image absorbs the layers of its unused ancestors), or whether it is
left untouched.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from kitgc.kit_graph import KitGraph, KitNode, build_graph
from kitgc.kit_usage import UsageMap
from kitgc.logging_utils import get_logger
from kitgc.models import IntegrationKit

logger = get_logger(__name__)

SquashChain = List[KitNode]


@dataclass
class RetentionPlan:
    """Outcome of a planning run.

    to_squash holds chains ``[anchor, ancestor1, ..., topmost unused ancestor]``.
    The anchor is always a used kit; every other chain member is unused and is
    therefore also listed in to_delete.
    """

    to_delete: List[KitNode] = field(default_factory=list)
    to_squash: List[SquashChain] = field(default_factory=list)
    used_images: UsageMap = field(default_factory=dict)
    graph: Optional[KitGraph] = None
    remove_images: bool = False

    def nothing_to_do(self) -> bool:
        return not self.to_delete and not self.to_squash

    def extend(self, to_delete: List[KitNode], to_squash: List[SquashChain]) -> None:
        self.to_delete.extend(to_delete)
        self.to_squash.extend(to_squash)


def discovery_order(graph: KitGraph, root: KitNode) -> List[KitNode]:
    """Return the subtree of root with every node placed before all of its descendants.

    A node is appended when popped and its children are pushed only then, so
    its position is always smaller than any descendant's. Reversing the list
    therefore visits children before parents.
    """
    order = []
    stack = [root]
    while stack:
        current = stack.pop()
        order.append(current)
        stack.extend(graph.children_of(current))
    return order


def propagate_usage(graph: KitGraph, order: List[KitNode]) -> None:
    """Count, bottom-up, how many children of each node are in use directly or transitively."""
    for node in reversed(order):
        node.used_by_children = 0
        for child in graph.children_of(node):
            if child.used_by_children > 0 or child.directly_used:
                node.used_by_children += 1


def trim_tree(graph: KitGraph, root: KitNode):
    """Partition the tree under root into kits to delete and chains to squash.

    Returns:
        Tuple of (to_delete, to_squash)
    """
    to_delete: List[KitNode] = []
    to_squash: List[SquashChain] = []

    order = discovery_order(graph, root)
    propagate_usage(graph, order)

    for node in reversed(order):
        parent = graph.parent_of(node)
        if not node.is_used:
            to_delete.append(node)
        elif graph.can_be_flattened(node, parent):
            chain = [node]
            ancestor = parent
            while graph.can_be_flattened(node, ancestor):
                chain.append(ancestor)
                ancestor = graph.parent_of(ancestor)
            to_squash.append(chain)

    return to_delete, to_squash


def plan_retention(kits: Iterable[IntegrationKit], used_images: UsageMap, remove_images: bool = True) -> RetentionPlan:
    """Plan which kits to delete and which image chains to squash.

    Without image removal the registry is left alone: every kit whose image is
    not referenced by an Integration is deleted and nothing is squashed.
    """
    kits = list(kits)
    plan = RetentionPlan(used_images=used_images, remove_images=remove_images)

    if not remove_images:
        graph = KitGraph()
        for kit in kits:
            if not used_images.get(kit.image):
                plan.to_delete.append(graph.add(kit, directly_used=False))
        plan.graph = graph
        logger.info(f"Planned deletion of {len(plan.to_delete)} unreferenced IntegrationKits")
        return plan

    graph = build_graph(kits, used_images)
    plan.graph = graph
    for root in graph.roots:
        plan.extend(*trim_tree(graph, root))

    logger.info(
        f"Planned {len(plan.to_squash)} squash chains and deletion of {len(plan.to_delete)} IntegrationKits "
        f"out of {len(graph)} kits with images"
    )
    return plan
