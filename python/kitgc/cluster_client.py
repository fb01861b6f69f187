"""
Kubernetes access for IntegrationKits, Integrations and IntegrationPlatforms.

All three are Camel custom resources, reached through the CustomObjectsApi.
Image changes are written to the status subresource with merge patches.
"""

from typing import Any, Dict, List, Optional

from kubernetes import client as k8s_client
from kubernetes.client.rest import ApiException

from kitgc.error_utils import ClusterError, KitBuildingError
from kitgc.logging_utils import get_logger
from kitgc.models import (
    Integration,
    IntegrationKit,
    IntegrationPlatform,
    integrations_from_list,
    kits_from_list,
)

logger = get_logger(__name__)

KITS = "integrationkits"
INTEGRATIONS = "integrations"
PLATFORMS = "integrationplatforms"


def _load_kubernetes_config():
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        from kubernetes.config import load_incluster_config

        load_incluster_config()
    except Exception:
        from kubernetes.config import load_kube_config

        load_kube_config()


class ClusterClient:
    """Thin wrapper around CustomObjectsApi for the Camel resources"""

    def __init__(self, api: Optional[Any] = None, group: str = "camel.apache.org", version: str = "v1"):
        if api is None:
            _load_kubernetes_config()
            api = k8s_client.CustomObjectsApi()
        self.api = api
        self.group = group
        self.version = version

    @classmethod
    def from_config(cls, config_manager) -> "ClusterClient":
        return cls(group=config_manager.get_camel_group(), version=config_manager.get_camel_version())

    def _call(self, operation: str, method: str, *args, **kwargs):
        try:
            return getattr(self.api, method)(self.group, self.version, *args, **kwargs)
        except ApiException as e:
            raise ClusterError(operation, e)

    # Reads
    def list_kits(self, namespace: str) -> List[IntegrationKit]:
        """List the kits of a namespace.

        Raises:
            KitBuildingError: if any kit is neither Ready nor Error
        """
        response = self._call(
            f"could not retrieve IntegrationKits from namespace {namespace}",
            "list_namespaced_custom_object", namespace, KITS,
        )
        kits = kits_from_list(response.get("items", []))
        for kit in kits:
            if not kit.is_finished:
                raise KitBuildingError(kit.name, kit.namespace, kit.phase)
        logger.info(f"Found {len(kits)} IntegrationKits in namespace {namespace}")
        return kits

    def list_integrations(self, namespace: str) -> List[Integration]:
        response = self._call(
            f"could not retrieve Integrations from namespace {namespace}",
            "list_namespaced_custom_object", namespace, INTEGRATIONS,
        )
        integrations = integrations_from_list(response.get("items", []))
        logger.info(f"Found {len(integrations)} Integrations in namespace {namespace}")
        return integrations

    def get_platform(self, namespace: str, name: str) -> IntegrationPlatform:
        obj = self._call(
            f"could not retrieve IntegrationPlatform {name} from namespace {namespace}",
            "get_namespaced_custom_object", namespace, PLATFORMS, name,
        )
        return IntegrationPlatform.from_dict(obj)

    # Writes
    def patch_kit_spec(self, kit: IntegrationKit, spec: Dict[str, Any]) -> Dict[str, Any]:
        """Merge-patch the kit's spec and return the updated object."""
        updated = self._call(
            f"patch spec of IntegrationKit {kit}",
            "patch_namespaced_custom_object", kit.namespace, KITS, kit.name, {"spec": spec},
        )
        logger.info(f"Patched spec of IntegrationKit {kit}")
        return updated

    def patch_kit_status(self, kit: IntegrationKit, status: Dict[str, Any]) -> Dict[str, Any]:
        updated = self._call(
            f"patch status of IntegrationKit {kit}",
            "patch_namespaced_custom_object_status", kit.namespace, KITS, kit.name, {"status": status},
        )
        logger.info(f"Patched status of IntegrationKit {kit}: {', '.join(sorted(status))}")
        return updated

    def patch_integration_status(self, integration: Integration, status: Dict[str, Any]) -> Dict[str, Any]:
        updated = self._call(
            f"patch status of Integration {integration}",
            "patch_namespaced_custom_object_status", integration.namespace, INTEGRATIONS, integration.name,
            {"status": status},
        )
        logger.info(f"Patched status of Integration {integration}: {', '.join(sorted(status))}")
        return updated

    def delete_kit(self, kit: IntegrationKit) -> None:
        self._call(
            f"delete IntegrationKit {kit}",
            "delete_namespaced_custom_object", kit.namespace, KITS, kit.name,
        )
        logger.info(f"Deleted IntegrationKit {kit}")
