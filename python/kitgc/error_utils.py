"""
Error types and message helpers for the kit garbage collector.

Every failure the collector can hit is raised as an ActionableError subclass
so that the CLI can print the problem together with suggested fixes and the
kit/image identifiers needed to diagnose it.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    PRECONDITION = "precondition"
    INTEGRITY = "integrity"
    REGISTRY = "registry"
    CLUSTER = "cluster"
    CONFIGURATION = "configuration"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [self.message]

        if self.suggestions:
            lines.append("\nSuggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\nAdditional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigValidationError(ActionableError):
    """Raised when configuration validation fails"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            suggestions=[
                "Check the values in config.yaml (or the file named by CONFIG_FILE)",
                "Compare with config-example.yaml for the expected format",
            ],
            details=details,
        )


class KitBuildingError(ActionableError):
    """Raised when a kit is neither ready nor errored, so its final image is unknown."""

    def __init__(self, kit_name: str, namespace: str, phase: str):
        self.kit_name = kit_name
        self.namespace = namespace
        self.phase = phase
        super().__init__(
            f"IntegrationKit {kit_name} in namespace {namespace} is still building (phase: {phase or 'none'})",
            category=ErrorCategory.PRECONDITION,
            suggestions=[
                "Run the collector when no new integrations are being created",
                "Wait until every IntegrationKit is in the Ready or Error phase",
            ],
            details={"kit": kit_name, "namespace": namespace, "phase": phase},
        )


class GraphIntegrityError(ActionableError):
    """Raised when kit base-image links do not form a consistent forest."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            category=ErrorCategory.INTEGRITY,
            suggestions=[
                "Check status.baseImage of the kits listed below for manual edits",
                "Re-run the collector after the kits have been rebuilt",
            ],
            details=details,
        )


class ImageIntegrityError(ActionableError):
    """Raised when a parent image is not a layer prefix of its child image."""

    def __init__(self, child_image: str, parent_image: str, index: Optional[int] = None):
        self.child_image = child_image
        self.parent_image = parent_image
        self.index = index
        if index is None:
            reason = "too few layers"
        else:
            reason = f"layer {index} mismatch"
        super().__init__(
            f'image "{child_image}" is not based on "{parent_image}" ({reason})',
            category=ErrorCategory.INTEGRITY,
            suggestions=[
                "Verify that the kit's status.baseImage really is the image it was built from",
                "Check whether either image was re-pushed under the same reference",
            ],
            details={"child_image": child_image, "parent_image": parent_image, "layer_index": index},
        )


class RegistryError(ActionableError):
    """Raised when a container registry operation fails."""

    def __init__(self, operation: str, reference: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.reference = reference
        self.status_code = status_code
        suggestions = [
            "Check network connectivity to the registry",
            "Verify push and delete rights on the repository",
        ]
        if status_code in (401, 403):
            suggestions.insert(0, "Set REGISTRY_USERNAME and REGISTRY_PASSWORD for the registry")
        if status_code == 405:
            suggestions.insert(0, "Enable deletion on the registry (REGISTRY_STORAGE_DELETE_ENABLED=true)")
        super().__init__(
            f"Registry {operation} failed for {reference}: {message}",
            category=ErrorCategory.REGISTRY,
            suggestions=suggestions,
            details={"operation": operation, "reference": reference, "status_code": status_code},
        )


class ImageNotFoundError(RegistryError):
    """Raised when a manifest or blob does not exist in the registry."""

    def __init__(self, operation: str, reference: str, message: str = "not found"):
        super().__init__(operation, reference, message, status_code=404)


class ClusterError(ActionableError):
    """Raised when a Kubernetes API call fails."""

    def __init__(self, operation: str, error: Exception):
        error_str = str(error).lower()
        self.operation = operation
        self.status = getattr(error, "status", None)

        suggestions = [
            "Verify Kubernetes cluster access (kubectl cluster-info)",
            "Verify RBAC permissions on integrationkits, integrations and integrationplatforms",
        ]
        if self.status == 403 or "forbidden" in error_str:
            suggestions.insert(0, "Check that the service account may patch the status subresource")
        if self.status == 404 or "not found" in error_str:
            suggestions.insert(0, "Verify the resource still exists in the namespace")

        super().__init__(
            f"Kubernetes operation failed: {operation}",
            category=ErrorCategory.CLUSTER,
            suggestions=suggestions,
            details={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": getattr(error, "reason", None) or str(error),
            },
        )
