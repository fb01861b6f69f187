"""
Client for the OCI distribution API.

Implements the handful of registry operations the collector needs: pulling a
manifest with its config, downloading and uploading blobs, pushing a manifest
and deleting a manifest. Requests are retried with exponential backoff on
network errors, rate limiting and server errors.
"""

import hashlib
import json
import re
from dataclasses import dataclass
from typing import IO, Any, Dict, List, Optional
from urllib.parse import urljoin

import requests
from requests.auth import HTTPBasicAuth

from kitgc.error_utils import ImageNotFoundError, RegistryError
from kitgc.image_reference import ImageReference
from kitgc.logging_utils import get_logger
from kitgc.retry_utils import retry_with_backoff

logger = get_logger(__name__)

OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_CONFIG = "application/vnd.docker.container.image.v1+json"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"

MANIFEST_ACCEPT = ", ".join([OCI_MANIFEST, DOCKER_MANIFEST, OCI_INDEX, DOCKER_MANIFEST_LIST])

_CHALLENGE_RE = re.compile(r'(\w+)="([^"]*)"')
_CHUNK_SIZE = 1024 * 1024


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


@dataclass
class Layer:
    digest: str
    size: int
    media_type: str
    diff_id: Optional[str] = None
    descriptor: Optional[Dict[str, Any]] = None


@dataclass
class RemoteImage:
    """A single-platform image pulled from a registry."""

    reference: ImageReference
    digest: str
    media_type: str
    manifest: Dict[str, Any]
    config: Dict[str, Any]

    @property
    def layers(self) -> List[Layer]:
        diff_ids = (self.config.get("rootfs") or {}).get("diff_ids") or []
        layers = []
        for i, descriptor in enumerate(self.manifest.get("layers") or []):
            layers.append(
                Layer(
                    digest=descriptor["digest"],
                    size=int(descriptor.get("size", 0)),
                    media_type=descriptor.get("mediaType", ""),
                    diff_id=diff_ids[i] if i < len(diff_ids) else None,
                    descriptor=descriptor,
                )
            )
        return layers

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self.config.get("history") or [])

    @property
    def annotations(self) -> Dict[str, str]:
        return dict(self.manifest.get("annotations") or {})

    def __str__(self) -> str:
        return f"{self.reference.context}@{self.digest}"


class RegistryClient:
    """Minimal OCI distribution client"""

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = 300,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        session: Optional[requests.Session] = None,
    ):
        self.session = session or requests.Session()
        self.auth = HTTPBasicAuth(username, password) if (username and password) else None
        self.timeout = timeout
        self.retry_kwargs = dict(
            max_retries=max_retries,
            initial_delay=initial_delay,
            max_delay=max_delay,
            exponential_base=exponential_base,
            jitter=jitter,
        )
        # Bearer tokens by repository context
        self._tokens: Dict[str, str] = {}

    @classmethod
    def from_config(cls, config_manager) -> "RegistryClient":
        return cls(
            username=config_manager.get_registry_username(),
            password=config_manager.get_registry_password(),
            timeout=config_manager.get_registry_timeout(),
            max_retries=config_manager.get_max_retries(),
            initial_delay=config_manager.get_retry_initial_delay(),
            max_delay=config_manager.get_retry_max_delay(),
            exponential_base=config_manager.get_retry_exponential_base(),
            jitter=config_manager.get_retry_jitter(),
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _url(self, ref: ImageReference, path: str) -> str:
        return f"{ref.base_url}/v2/{ref.repository}/{path}"

    def _fetch_token(self, ref: ImageReference, challenge: str) -> Optional[str]:
        params = dict(_CHALLENGE_RE.findall(challenge))
        realm = params.pop("realm", None)
        if not realm:
            return None
        params.setdefault("scope", f"repository:{ref.repository}:pull,push,delete")
        response = self.session.get(realm, params=params, auth=self.auth, timeout=self.timeout)
        if response.status_code != 200:
            raise RegistryError("authentication", str(ref), response.text.strip(), response.status_code)
        body = response.json()
        return body.get("token") or body.get("access_token")

    def _request(self, operation: str, method: str, url: str, ref: ImageReference, **kwargs) -> requests.Response:
        expected = kwargs.pop("expected", (200,))
        base_headers = kwargs.pop("headers", None) or {}
        body = kwargs.get("data")

        def _send(headers: Dict[str, str], auth) -> requests.Response:
            if hasattr(body, "seek"):
                body.seek(0)
            return self.session.request(method, url, headers=headers, auth=auth, timeout=self.timeout, **kwargs)

        @retry_with_backoff(**self.retry_kwargs)
        def _execute() -> requests.Response:
            headers = dict(base_headers)
            token = self._tokens.get(ref.context)
            if token:
                headers["Authorization"] = f"Bearer {token}"
                response = _send(headers, None)
            else:
                response = _send(headers, self.auth)

            challenge = response.headers.get("WWW-Authenticate", "")
            if response.status_code == 401 and challenge.lower().startswith("bearer") and not token:
                token = self._fetch_token(ref, challenge)
                if token:
                    self._tokens[ref.context] = token
                    headers["Authorization"] = f"Bearer {token}"
                    response = _send(headers, None)

            if response.status_code in expected:
                return response
            message = response.text.strip() or response.reason or "unexpected response"
            if response.status_code == 404 or "MANIFEST_UNKNOWN" in message or "BLOB_UNKNOWN" in message:
                raise ImageNotFoundError(operation, str(ref), message)
            raise RegistryError(operation, str(ref), message, response.status_code)

        try:
            return _execute()
        except RegistryError:
            raise
        except requests.RequestException as e:
            raise RegistryError(operation, str(ref), str(e))

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------

    def get_manifest(self, ref: ImageReference):
        """Return (manifest dict, digest, media type) for the reference."""
        response = self._request(
            "get manifest", "GET", self._url(ref, f"manifests/{ref.identifier}"), ref,
            headers={"Accept": MANIFEST_ACCEPT},
        )
        body = response.content
        digest = sha256_digest(body)
        if ref.digest and ref.digest != digest:
            raise RegistryError("get manifest", str(ref), f"manifest digest mismatch, got {digest}")
        manifest = json.loads(body)
        media_type = manifest.get("mediaType") or response.headers.get("Content-Type", "").split(";")[0]
        return manifest, digest, media_type

    def head_manifest(self, ref: ImageReference) -> str:
        """Resolve the reference to a manifest digest."""
        if ref.digest:
            return ref.digest
        response = self._request(
            "resolve manifest", "HEAD", self._url(ref, f"manifests/{ref.identifier}"), ref,
            headers={"Accept": MANIFEST_ACCEPT},
        )
        digest = response.headers.get("Docker-Content-Digest")
        if not digest:
            manifest, digest, _ = self.get_manifest(ref)
        return digest

    def put_manifest(self, ref: ImageReference, body: bytes, media_type: str) -> str:
        """Push a manifest under ref's tag or digest and return its digest."""
        self._request(
            "put manifest", "PUT", self._url(ref, f"manifests/{ref.identifier}"), ref,
            data=body, headers={"Content-Type": media_type}, expected=(200, 201, 202),
        )
        digest = sha256_digest(body)
        logger.info(f"Wrote manifest {ref.context}@{digest}")
        return digest

    def delete(self, ref: ImageReference) -> None:
        """Delete the manifest a tag or digest points at."""
        digest = self.head_manifest(ref)
        self._request(
            "delete manifest", "DELETE", self._url(ref, f"manifests/{digest}"), ref,
            expected=(200, 202),
        )
        logger.info(f"Deleted image {ref}")

    # ------------------------------------------------------------------
    # Blobs
    # ------------------------------------------------------------------

    def get_blob(self, ref: ImageReference, digest: str) -> bytes:
        response = self._request("get blob", "GET", self._url(ref, f"blobs/{digest}"), ref)
        data = response.content
        if sha256_digest(data) != digest:
            raise RegistryError("get blob", str(ref), f"content does not match digest {digest}")
        return data

    def download_blob(self, ref: ImageReference, digest: str, fileobj: IO[bytes]) -> None:
        """Stream a blob into fileobj, verifying its digest."""
        response = self._request("get blob", "GET", self._url(ref, f"blobs/{digest}"), ref, stream=True)
        hasher = hashlib.sha256()
        with response:
            for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
                hasher.update(chunk)
                fileobj.write(chunk)
        if "sha256:" + hasher.hexdigest() != digest:
            raise RegistryError("get blob", str(ref), f"content does not match digest {digest}")
        fileobj.seek(0)

    def blob_exists(self, ref: ImageReference, digest: str) -> bool:
        try:
            self._request("check blob", "HEAD", self._url(ref, f"blobs/{digest}"), ref)
            return True
        except ImageNotFoundError:
            return False

    def upload_blob(self, ref: ImageReference, digest: str, data, size: Optional[int] = None) -> None:
        """Upload a blob (bytes or a seekable file) into ref's repository."""
        if self.blob_exists(ref, digest):
            logger.debug(f"Blob {digest} already exists in {ref.context}")
            return
        response = self._request(
            "start upload", "POST", self._url(ref, "blobs/uploads/"), ref, expected=(202,),
        )
        location = response.headers.get("Location")
        if not location:
            raise RegistryError("start upload", str(ref), "registry accepted the upload without a Location header")
        location = urljoin(ref.base_url + "/", location)
        separator = "&" if "?" in location else "?"
        if size is None:
            size = len(data)
        self._request(
            "upload blob", "PUT", f"{location}{separator}digest={digest}", ref,
            data=data,
            headers={"Content-Type": "application/octet-stream", "Content-Length": str(size)},
            expected=(201, 202),
        )
        logger.info(f"Uploaded blob {digest} ({size} bytes) to {ref.context}")

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def fetch_image(self, ref: ImageReference) -> RemoteImage:
        """Pull manifest and config of a single-platform image."""
        manifest, digest, media_type = self.get_manifest(ref)
        if media_type in (OCI_INDEX, DOCKER_MANIFEST_LIST) or "manifests" in manifest:
            raise RegistryError("get manifest", str(ref), "multi-platform image indexes are not supported")
        config_digest = manifest["config"]["digest"]
        config = json.loads(self.get_blob(ref, config_digest))
        return RemoteImage(reference=ref, digest=digest, media_type=media_type, manifest=manifest, config=config)

