"""Content digest of an IntegrationKit.

The operator compares ``status.digest`` with a digest of the kit's spec to
decide whether the kit must be rebuilt. When the collector rewrites
``spec.image`` of an external kit it stores a fresh digest so the change is
not mistaken for a new build request.

This is an approximation of the operator's own digest, not a copy of it:
the inputs (operator version, image, sorted dependencies, configuration,
repositories, traits) are the same, but configuration items and traits are
serialized here as canonical JSON. If the operator serializes them
differently the stored value will not match its own, and the operator may
rebuild the kit once after it has been squashed.
"""

import base64
import hashlib
import json
from typing import Any, Dict

from kitgc.models import IntegrationKit


def _canonical(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":")).encode("utf-8")


def compute_for_integration_kit(kit: IntegrationKit, operator_version: str) -> str:
    """Return the digest for the kit's current spec.

    The digest covers the operator version, the pinned image, and the
    dependencies, configuration, repositories and traits of the spec.
    """
    spec: Dict[str, Any] = kit.spec or {}
    hasher = hashlib.sha256()
    hasher.update(operator_version.encode("utf-8"))
    hasher.update(kit.spec_image.encode("utf-8"))
    for item in sorted(spec.get("dependencies") or []):
        hasher.update(item.encode("utf-8"))
    for item in spec.get("configuration") or []:
        hasher.update(_canonical(item))
    for item in spec.get("repositories") or []:
        hasher.update(item.encode("utf-8"))
    hasher.update(_canonical(spec.get("traits") or {}))
    return "v" + base64.urlsafe_b64encode(hasher.digest()).decode("ascii").rstrip("=")
