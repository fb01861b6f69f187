"""
Squashing of kit image chains.

A squash chain ``[anchor, ..., topmost unused ancestor]`` is turned into one
new image for the anchor kit: the layers of the topmost ancestor are kept as
published, and every layer the anchor added on top of them is flattened into
one gzip layer. The anchor kit, the kits built on top of it and the
Integrations running its image are then pointed at the new image.
"""

import contextlib
import copy
import dataclasses
import json
import tarfile
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from kitgc.cache_utils import PlatformOptionsCache
from kitgc.cluster_client import ClusterClient
from kitgc.error_utils import ImageIntegrityError, RegistryError
from kitgc.image_reference import ImageReference, parse_reference
from kitgc.kit_digest import compute_for_integration_kit
from kitgc.kit_graph import KitGraph, KitNode
from kitgc.kit_usage import UsageMap
from kitgc.layer_squash import SquashedLayer, flatten_layers
from kitgc.logging_utils import get_logger
from kitgc.registry_client import (
    DOCKER_LAYER_GZIP,
    OCI_CONFIG,
    OCI_LAYER_GZIP,
    OCI_MANIFEST,
    Layer,
    RegistryClient,
    RemoteImage,
    sha256_digest,
)

logger = get_logger(__name__)

# Config fields carried over from the anchor's image; rootfs and history are rebuilt
INHERITED_CONFIG_KEYS = ("architecture", "os", "os.version", "variant", "author", "created", "config")


@dataclass
class Addendum:
    """A layer with its history entry, either of which may be missing."""

    layer: Optional[Layer] = None
    history: Optional[Dict[str, Any]] = None


@dataclass
class SquashResult:
    kit: str
    squashed_kits: List[str]
    old_image: str
    new_image: str
    layer_digest: str
    layer_size: int
    patched_kits: List[str] = field(default_factory=list)
    patched_integrations: List[str] = field(default_factory=list)
    old_image_deleted: bool = False


def check_parent_child_integrity(parent: RemoteImage, child: RemoteImage) -> None:
    """Make sure the parent's layers are a prefix of the child's layers.

    Raises:
        ImageIntegrityError: naming both images and, on a digest mismatch, the layer index
    """
    parent_layers = parent.layers
    child_layers = child.layers
    if len(parent_layers) > len(child_layers):
        raise ImageIntegrityError(str(child), str(parent))
    for i, layer in enumerate(parent_layers):
        if layer.digest != child_layers[i].digest:
            raise ImageIntegrityError(str(child), str(parent), index=i)


def create_addendums(history: List[Dict[str, Any]], layers: List[Layer]) -> List[Addendum]:
    """Pair each history entry with the layer it created.

    Entries flagged ``empty_layer`` carry no layer. Layers left over once the
    history is exhausted are appended without history.
    """
    addendums = []
    layer_index = 0
    for entry in history:
        layer = None
        if not entry.get("empty_layer"):
            if layer_index >= len(layers):
                raise ValueError(
                    f"image history references {layer_index + 1} or more layers but the image has {len(layers)}"
                )
            layer = layers[layer_index]
            layer_index += 1
        addendums.append(Addendum(layer=layer, history=entry))
    for layer in layers[layer_index:]:
        addendums.append(Addendum(layer=layer))
    return addendums


def build_config(child: RemoteImage, parent: RemoteImage, addendums: List[Addendum],
                 squashed: SquashedLayer) -> Dict[str, Any]:
    """Build the image config of the squashed image."""
    config = {key: copy.deepcopy(child.config[key]) for key in INHERITED_CONFIG_KEYS if key in child.config}

    diff_ids = []
    history = []
    for addendum in addendums:
        if addendum.layer is not None:
            diff_ids.append(addendum.layer.diff_id)
        history.append(copy.deepcopy(addendum.history) if addendum.history is not None else {})

    squashed_history = child.history[len(parent.history):]
    history.append(
        {
            "created_by": f"Flattened Image layers {parent.digest} through {child.digest} into a single layer",
            "comment": json.dumps(squashed_history, separators=(",", ":")),
        }
    )
    diff_ids.append(squashed.diff_id)

    config["rootfs"] = {"type": "layers", "diff_ids": diff_ids}
    config["history"] = history
    return config


def build_manifest(child: RemoteImage, addendums: List[Addendum], config_bytes: bytes,
                   squashed: SquashedLayer) -> Dict[str, Any]:
    """Build a manifest in the format of the child's manifest."""
    is_oci = child.media_type == OCI_MANIFEST
    config_media_type = child.manifest.get("config", {}).get("mediaType") or OCI_CONFIG
    layers = [copy.deepcopy(a.layer.descriptor) for a in addendums if a.layer is not None]
    layers.append(
        {
            "mediaType": OCI_LAYER_GZIP if is_oci else DOCKER_LAYER_GZIP,
            "size": squashed.size,
            "digest": squashed.digest,
        }
    )
    manifest = {
        "schemaVersion": 2,
        "mediaType": child.media_type,
        "config": {"mediaType": config_media_type, "size": len(config_bytes), "digest": sha256_digest(config_bytes)},
        "layers": layers,
    }
    if child.annotations:
        manifest["annotations"] = child.annotations
    return manifest


def _dumps(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


class ImageSquasher:
    """Squashes kit chains and repoints the cluster at the new images"""

    def __init__(self, registry: RegistryClient, cluster: ClusterClient, platform_cache: PlatformOptionsCache,
                 operator_version: str = "", work_dir: Optional[str] = None):
        self.registry = registry
        self.cluster = cluster
        self.platform_cache = platform_cache
        self.operator_version = operator_version
        self.work_dir = work_dir

    def reference_for(self, node: KitNode) -> ImageReference:
        options = self.platform_cache.get_options(node.kit)
        return parse_reference(node.kit.image, options)

    def squash(self, graph: KitGraph, chain: List[KitNode], used_images: UsageMap) -> SquashResult:
        """Squash one chain, publish the image and update the cluster.

        Raises:
            ImageIntegrityError: if the topmost ancestor is not a layer prefix of the anchor
            RegistryError: on registry failures
            ClusterError: on Kubernetes API failures
        """
        anchor, top = chain[0], chain[-1]
        logger.info(
            f"Squashing {', '.join(node.kit.name for node in chain[1:])} into IntegrationKit {anchor.kit}"
        )

        child_ref = self.reference_for(anchor)
        parent_ref = self.reference_for(top)
        child = self.registry.fetch_image(child_ref)
        parent = self.registry.fetch_image(parent_ref)
        check_parent_child_integrity(parent, child)

        new_ref, squashed = self._publish(child_ref, child, parent)
        new_image = str(new_ref)
        result = SquashResult(
            kit=str(anchor.kit),
            squashed_kits=[str(node.kit) for node in chain[1:]],
            old_image=anchor.kit.image,
            new_image=new_image,
            layer_digest=squashed.digest,
            layer_size=squashed.size,
        )

        self._patch_kit(anchor, top, new_image)
        result.patched_kits.append(str(anchor.kit))
        for node in graph.children_of(anchor):
            self.cluster.patch_kit_status(node.kit, {"baseImage": new_image})
            result.patched_kits.append(str(node.kit))
        for integration in used_images.get(anchor.kit.image, []):
            self.cluster.patch_integration_status(integration, {"image": new_image})
            result.patched_integrations.append(str(integration))

        try:
            self.registry.delete(child_ref)
            result.old_image_deleted = True
        except RegistryError as e:
            logger.warning(f"Could not delete superseded image {child_ref}: {e.message}")

        logger.info(f"IntegrationKit {anchor.kit} now uses squashed image {new_image}")
        return result

    def _publish(self, child_ref: ImageReference, child: RemoteImage,
                 parent: RemoteImage) -> Tuple[ImageReference, SquashedLayer]:
        try:
            addendums = create_addendums(parent.history, parent.layers)
        except ValueError as e:
            raise RegistryError("read config", str(parent), str(e))
        delta = child.layers[len(parent.layers):]

        with contextlib.ExitStack() as stack:
            blobs = []
            for layer in delta:
                blob = stack.enter_context(tempfile.TemporaryFile(dir=self.work_dir))
                self.registry.download_blob(child_ref, layer.digest, blob)
                blobs.append(blob)
            output = stack.enter_context(tempfile.TemporaryFile(dir=self.work_dir))
            try:
                squashed = flatten_layers(blobs, output)
            except tarfile.TarError as e:
                raise RegistryError("read layer", str(child_ref), f"layer is not a readable tar archive: {e}")
            logger.info(f"Flattened {len(delta)} layers of {child} into {squashed.digest} ({squashed.size} bytes)")

            self.registry.upload_blob(child_ref, squashed.digest, output, size=squashed.size)

        config = build_config(child, parent, addendums, squashed)
        config_bytes = _dumps(config)
        self.registry.upload_blob(child_ref, sha256_digest(config_bytes), config_bytes)

        manifest_bytes = _dumps(build_manifest(child, addendums, config_bytes, squashed))
        new_ref = child_ref.with_digest(sha256_digest(manifest_bytes))
        self.registry.put_manifest(new_ref, manifest_bytes, child.media_type)
        return new_ref, squashed

    def _patch_kit(self, anchor: KitNode, top: KitNode, new_image: str) -> None:
        kit = anchor.kit
        status: Dict[str, Any] = {"image": new_image, "baseImage": top.kit.base_image}
        if kit.spec_image:
            updated = self.cluster.patch_kit_spec(kit, {"image": new_image})
            generation = (updated or {}).get("metadata", {}).get("generation") or kit.generation
            target = dataclasses.replace(kit, spec_image=new_image, spec={**kit.spec, "image": new_image})
            status["observedGeneration"] = generation
            status["digest"] = compute_for_integration_kit(target, self.operator_version)
        self.cluster.patch_kit_status(kit, status)
