"""
Kit dependency graph.

Every kit with a built image becomes a KitNode. A kit whose status.baseImage
is the image of another kit is that kit's child. Nodes live in a single list
owned by KitGraph; parent and child links are indices into that list, so the
children list is the only owning edge and a parent link is a plain lookup.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional

from kitgc.error_utils import GraphIntegrityError
from kitgc.kit_usage import UsageMap
from kitgc.logging_utils import get_logger
from kitgc.models import IntegrationKit

logger = get_logger(__name__)


@dataclass
class KitNode:
    index: int
    kit: IntegrationKit
    directly_used: bool = False
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)
    # Only meaningful once every descendant has been visited bottom-up
    used_by_children: int = 0

    @property
    def is_used(self) -> bool:
        """A kit is kept as its own layer boundary if an Integration runs its
        image, or if at least two in-use branches are built on top of it."""
        return self.directly_used or self.used_by_children > 1

    def __str__(self) -> str:
        return f"{self.kit.name} in namespace: {self.kit.namespace}"


class KitGraph:
    """Forest of kits linked through their base images"""

    def __init__(self):
        self.nodes: List[KitNode] = []
        self._by_image: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[KitNode]:
        return iter(self.nodes)

    def add(self, kit: IntegrationKit, directly_used: bool) -> KitNode:
        node = KitNode(index=len(self.nodes), kit=kit, directly_used=directly_used)
        self.nodes.append(node)
        self._by_image[kit.image] = node.index
        return node

    def node_for_image(self, image: str) -> Optional[KitNode]:
        index = self._by_image.get(image)
        return self.nodes[index] if index is not None else None

    def parent_of(self, node: KitNode) -> Optional[KitNode]:
        return self.nodes[node.parent] if node.parent is not None else None

    def children_of(self, node: KitNode) -> List[KitNode]:
        return [self.nodes[i] for i in node.children]

    def link(self, parent: KitNode, child: KitNode) -> None:
        child.parent = parent.index
        parent.children.append(child.index)

    @property
    def roots(self) -> List[KitNode]:
        """Nodes whose base image is not a tracked kit"""
        return [node for node in self.nodes if node.parent is None]

    def can_be_flattened(self, child: KitNode, parent: Optional[KitNode]) -> bool:
        """A used kit can absorb an ancestor's layers when that ancestor is unused."""
        return child.is_used and parent is not None and not parent.is_used


def build_graph(kits: Iterable[IntegrationKit], used_images: UsageMap) -> KitGraph:
    """Build the kit forest.

    Args:
        kits: All listed kits; kits without a status image are skipped
        used_images: Usage map from get_used_images()

    Returns:
        KitGraph whose roots are the kits not built on top of another kit

    Raises:
        GraphIntegrityError: if a base-image link is inconsistent or the links form a cycle
    """
    graph = KitGraph()
    for kit in kits:
        if not kit.image:
            continue
        existing = graph.node_for_image(kit.image)
        if existing is not None:
            logger.warning(
                f"IntegrationKit {kit} has the same image as {existing.kit}, "
                f"only {existing.kit} is considered: {kit.image}"
            )
            continue
        graph.add(kit, directly_used=bool(used_images.get(kit.image)))

    for node in graph.nodes:
        parent_image = node.kit.base_image
        parent = graph.node_for_image(parent_image)
        if parent is None:
            # Base image is not a kit (e.g. the platform's root image)
            continue
        if parent.kit.image != parent_image:
            raise GraphIntegrityError(
                f"Base image on kit {node.kit} is not referencing base kit's image {parent.kit.image}",
                details={"kit": str(node.kit), "base_image": parent_image, "parent_kit": str(parent.kit)},
            )
        if parent is node:
            raise GraphIntegrityError(
                f"IntegrationKit {node.kit} is recorded as its own base image",
                details={"kit": str(node.kit), "image": node.kit.image},
            )
        graph.link(parent, node)

    _check_forest(graph)
    logger.debug(f"Built kit graph with {len(graph)} nodes and {len(graph.roots)} roots")
    return graph


def _check_forest(graph: KitGraph) -> None:
    """Every node must be reachable from a root, otherwise base images form a cycle."""
    reachable = set()
    stack = [node.index for node in graph.roots]
    while stack:
        index = stack.pop()
        reachable.add(index)
        stack.extend(graph.nodes[index].children)
    if len(reachable) != len(graph):
        cyclic = [str(node.kit) for node in graph.nodes if node.index not in reachable]
        raise GraphIntegrityError(
            "Base images of IntegrationKits form a cycle",
            details={"kits": ", ".join(cyclic)},
        )
