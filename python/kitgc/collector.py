"""
Kit garbage collection run.

Lists the kits and Integrations of a namespace, plans which kits to squash
and delete, shows the plan, asks for confirmation and applies it: every
squash chain first, then every deletion.
"""

from typing import Any, Dict, List, Optional

from kitgc.cache_utils import PlatformOptionsCache
from kitgc.cluster_client import ClusterClient
from kitgc.image_squash import ImageSquasher, SquashResult
from kitgc.kit_deletion import DeletionSummary, KitDeleter, confirm_deletion
from kitgc.kit_usage import get_used_images
from kitgc.logging_utils import get_logger
from kitgc.registry_client import RegistryClient
from kitgc.report_utils import plan_to_dict, render_plan, save_json, sizeof_fmt, summary_table
from kitgc.retention import RetentionPlan, plan_retention

logger = get_logger(__name__)


class KitGarbageCollector:
    """Plans and applies the retention of one namespace's IntegrationKits"""

    def __init__(
        self,
        namespace: str,
        cluster: ClusterClient,
        registry: Optional[RegistryClient] = None,
        platform_cache: Optional[PlatformOptionsCache] = None,
        remove_images: bool = False,
        dry_run: bool = False,
        assume_yes: bool = False,
        operator_version: str = "",
        report_path: Optional[str] = None,
    ):
        self.namespace = namespace
        self.cluster = cluster
        self.registry = registry
        self.platform_cache = platform_cache or PlatformOptionsCache(cluster)
        self.remove_images = remove_images
        self.dry_run = dry_run
        self.assume_yes = assume_yes
        self.operator_version = operator_version
        self.report_path = report_path
        self.plan: Optional[RetentionPlan] = None
        self.results: Optional[Dict[str, Any]] = None

    @classmethod
    def from_config(cls, config_manager, namespace: Optional[str] = None, **kwargs) -> "KitGarbageCollector":
        cluster = ClusterClient.from_config(config_manager)
        platform_cache = PlatformOptionsCache(
            cluster,
            default_platform=config_manager.get_default_platform(),
            ttl_seconds=config_manager.get_cache_platform_options_ttl(),
            max_size=config_manager.get_cache_platform_options_max_size(),
            enabled=config_manager.is_cache_enabled(),
        )
        return cls(
            namespace=namespace or config_manager.get_namespace(),
            cluster=cluster,
            registry=RegistryClient.from_config(config_manager),
            platform_cache=platform_cache,
            operator_version=config_manager.get_operator_version(),
            report_path=config_manager.get_retention_plan_path(),
            **kwargs,
        )

    def prepare(self) -> RetentionPlan:
        """List cluster state and compute the plan; nothing is modified."""
        kits = self.cluster.list_kits(self.namespace)
        integrations = self.cluster.list_integrations(self.namespace)
        used_images = get_used_images(integrations)
        self.plan = plan_retention(kits, used_images, remove_images=self.remove_images)
        return self.plan

    def print_info(self) -> None:
        print(render_plan(self.plan))
        if not self.plan.nothing_to_do():
            print()
            print(summary_table(self.plan))

    def confirm(self) -> bool:
        """Decide whether the plan is applied; declining turns the run into a dry run."""
        if self.dry_run or self.plan.nothing_to_do():
            return False
        kit_count = len(self.plan.to_delete) + len(self.plan.to_squash)
        image_count = len(self.plan.to_delete) if self.remove_images else 0
        if not confirm_deletion(kit_count, image_count, force=self.assume_yes):
            logger.info("Operation cancelled by user")
            self.dry_run = True
            return False
        return True

    def apply(self) -> Dict[str, Any]:
        """Squash every chain, then delete every planned kit.

        ``self.results`` is updated after every step, so it still holds what was
        done when a step raises.
        """
        squash_results: List[SquashResult] = []
        deletion = DeletionSummary()
        self.results = {"squashed": squash_results, "deleted": deletion}
        if self.plan.to_squash:
            squasher = ImageSquasher(self.registry, self.cluster, self.platform_cache, self.operator_version)
            for chain in self.plan.to_squash:
                squash_results.append(squasher.squash(self.plan.graph, chain, self.plan.used_images))

        deleter = KitDeleter(
            self.cluster,
            registry=self.registry,
            platform_cache=self.platform_cache,
            remove_images=self.remove_images,
        )
        deleter.delete(self.plan.to_delete, deletion)

        squashed_bytes = sum(r.layer_size for r in squash_results)
        logger.info(
            f"Squashed {len(squash_results)} chains into {sizeof_fmt(squashed_bytes)} of new layers, "
            f"deleted {len(deletion.deleted_kits)} IntegrationKits"
        )
        return self.results

    def run(self) -> Optional[Dict[str, Any]]:
        """Full run: plan, preview, confirm, apply. Returns None when nothing was applied."""
        self.prepare()
        self.print_info()

        results = None
        try:
            if self.confirm():
                results = self.apply()
            elif self.dry_run and not self.plan.nothing_to_do():
                logger.info("DRY RUN: no IntegrationKit or image was modified")
        finally:
            if self.report_path:
                save_json(self.report_path, plan_to_dict(self.plan, self.results), timestamp=True)
        return results
