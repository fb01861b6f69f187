"""Parsing of container image references.

Kit images are recorded as ``registry/repository@sha256:...`` or
``registry/repository:tag``. The helpers here split such strings into their
parts and know which URL scheme the registry must be reached with.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-zA-Z0-9=_-]{32,}$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_REPOSITORY_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*(?:/[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)*$")


@dataclass(frozen=True)
class RegistryOptions:
    """How a registry must be contacted."""

    insecure: bool = False


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None
    insecure: bool = False

    @property
    def context(self) -> str:
        """Repository name including the registry, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The manifest reference used in registry API paths."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def scheme(self) -> str:
        if self.insecure:
            return "http"
        host = self.registry.split(":")[0]
        if host == "localhost" or host == "127.0.0.1" or host.endswith(".localhost"):
            return "http"
        return "https"

    @property
    def base_url(self) -> str:
        registry = "registry-1.docker.io" if self.registry == DEFAULT_REGISTRY else self.registry
        return f"{self.scheme}://{registry}"

    def with_digest(self, digest: str) -> "ImageReference":
        return ImageReference(self.registry, self.repository, digest=digest, insecure=self.insecure)

    def __str__(self) -> str:
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.identifier}"


def parse_reference(ref: str, options: Optional[RegistryOptions] = None, strict: bool = True) -> ImageReference:
    """Parse an image reference string.

    Args:
        ref: Reference such as ``registry:5000/ns/kit-abc@sha256:...``
        options: Registry options for the registry hosting the image
        strict: If True, refuse references that rely on implicit defaults
            (missing registry or missing tag/digest)

    Raises:
        ValueError: if the reference is malformed
    """
    if not ref or ref != ref.strip():
        raise ValueError(f"invalid image reference: {ref!r}")
    insecure = bool(options and options.insecure)

    name, digest = ref, None
    if "@" in ref:
        name, digest = ref.split("@", 1)
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"invalid digest in image reference: {ref!r}")

    tag = None
    last_slash = name.rfind("/")
    last_colon = name.rfind(":")
    if last_colon > last_slash:
        name, tag = name[:last_colon], name[last_colon + 1:]
        if not _TAG_RE.match(tag):
            raise ValueError(f"invalid tag in image reference: {ref!r}")

    registry = DEFAULT_REGISTRY
    repository = name
    first, _, rest = name.partition("/")
    if rest and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    elif strict:
        raise ValueError(f"image reference has no registry: {ref!r}")
    elif "/" not in repository:
        repository = f"library/{repository}"

    if not _REPOSITORY_RE.match(repository):
        raise ValueError(f"invalid repository in image reference: {ref!r}")
    if strict and tag is None and digest is None:
        raise ValueError(f"image reference has neither tag nor digest: {ref!r}")

    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest, insecure=insecure)
