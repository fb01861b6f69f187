"""
Deletion of unused IntegrationKits and, optionally, their registry images.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from kitgc.cache_utils import PlatformOptionsCache
from kitgc.cluster_client import ClusterClient
from kitgc.image_reference import parse_reference
from kitgc.kit_graph import KitNode
from kitgc.logging_utils import get_logger
from kitgc.registry_client import RegistryClient

logger = get_logger(__name__)


@dataclass
class DeletionSummary:
    deleted_kits: List[str] = field(default_factory=list)
    deleted_images: List[str] = field(default_factory=list)


def confirm_deletion(kit_count: int, image_count: int = 0, force: bool = False) -> bool:
    """Ask on stdin whether the planned changes may be applied

    Args:
        kit_count: Number of kits to be squashed or deleted
        image_count: Number of registry images to be deleted
        force: If True, skip confirmation and return True

    Returns:
        True if user confirmed, False otherwise
    """
    if force:
        logger.warning("⚠️  Assume-yes enabled - skipping confirmation prompt")
        return True

    print("\n" + "=" * 60)
    print("⚠️  WARNING: You are about to modify IntegrationKits and their images!")
    print("=" * 60)
    print(f"This will squash or delete {kit_count} IntegrationKits.")
    if image_count:
        print(f"This will delete {image_count} images from the registry.")
    print("This action cannot be undone.")
    print("=" * 60)

    while True:
        response = input("Do you want to proceed? (yes/no): ").lower().strip()
        if response in ["yes", "y"]:
            return True
        elif response in ["no", "n"]:
            return False
        else:
            print("Please enter 'yes' or 'no'.")


class KitDeleter:
    """Deletes kits, removing their image from the registry first when asked to"""

    def __init__(self, cluster: ClusterClient, registry: Optional[RegistryClient] = None,
                 platform_cache: Optional[PlatformOptionsCache] = None, remove_images: bool = False):
        if remove_images and (registry is None or platform_cache is None):
            raise ValueError("removing images needs a registry client and a platform options cache")
        self.cluster = cluster
        self.registry = registry
        self.platform_cache = platform_cache
        self.remove_images = remove_images

    def delete(self, nodes: List[KitNode], summary: Optional[DeletionSummary] = None) -> DeletionSummary:
        """Delete the kits in order. Any registry or cluster error stops the loop.

        The summary is filled in as kits go, so a caller that passes its own
        still knows what was removed when an error is raised.
        """
        if summary is None:
            summary = DeletionSummary()
        for node in nodes:
            kit = node.kit
            if self.remove_images and kit.image:
                ref = parse_reference(kit.image, self.platform_cache.get_options(kit))
                self.registry.delete(ref)
                summary.deleted_images.append(kit.image)
            self.cluster.delete_kit(kit)
            summary.deleted_kits.append(str(kit))
        logger.info(
            f"Deleted {len(summary.deleted_kits)} IntegrationKits and {len(summary.deleted_images)} images"
        )
        return summary
