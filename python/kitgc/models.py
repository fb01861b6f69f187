"""Typed views over the Camel custom resources the collector reads.

The cluster hands resources back as plain dicts. The classes below keep the
raw object (patches are computed against it) and expose the handful of fields
the planner and the squasher care about.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

KIT_PHASE_READY = "Ready"
KIT_PHASE_ERROR = "Error"


@dataclass
class IntegrationKit:
    name: str
    namespace: str
    generation: int = 0
    phase: str = ""
    image: str = ""
    base_image: str = ""
    spec_image: str = ""
    digest: str = ""
    platform: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    spec: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "IntegrationKit":
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            generation=int(metadata.get("generation") or 0),
            phase=status.get("phase", ""),
            image=status.get("image", ""),
            base_image=status.get("baseImage", ""),
            spec_image=spec.get("image", ""),
            digest=status.get("digest", ""),
            platform=status.get("platform", ""),
            labels=dict(metadata.get("labels") or {}),
            spec=copy.deepcopy(spec),
            raw=obj,
        )

    @property
    def is_finished(self) -> bool:
        """True once the kit's image is known (built or failed)."""
        return self.phase in (KIT_PHASE_READY, KIT_PHASE_ERROR)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class Integration:
    name: str
    namespace: str
    image: str = ""
    kit: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "Integration":
        metadata = obj.get("metadata") or {}
        status = obj.get("status") or {}
        kit_ref = status.get("integrationKit") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            image=status.get("image", ""),
            kit=kit_ref.get("name"),
            raw=obj,
        )

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass
class IntegrationPlatform:
    name: str
    namespace: str
    registry_address: str = ""
    registry_insecure: bool = False

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "IntegrationPlatform":
        metadata = obj.get("metadata") or {}
        registry = ((obj.get("status") or {}).get("build") or {}).get("registry") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            registry_address=registry.get("address", ""),
            registry_insecure=bool(registry.get("insecure", False)),
        )


def kits_from_list(objs: List[Dict[str, Any]]) -> List[IntegrationKit]:
    return [IntegrationKit.from_dict(o) for o in objs]


def integrations_from_list(objs: List[Dict[str, Any]]) -> List[Integration]:
    return [Integration.from_dict(o) for o in objs]
