"""
Flattening of image layers into a single layer.

Layers are walked from the topmost down. The first occurrence of a path wins,
whiteouts hide the path in every lower layer, opaque markers hide the
whole directory, and a directory replaced by a file hides what lower layers
had below it. Whiteouts themselves are kept in the output because the
flattened layer is stacked on top of layers that may still contain the
deleted files.
"""

import contextlib
import gzip
import hashlib
import posixpath
import tarfile
from dataclasses import dataclass
from typing import IO, List, Set, Tuple

from kitgc.logging_utils import get_logger

logger = get_logger(__name__)

WHITEOUT_PREFIX = ".wh."
OPAQUE_WHITEOUT = ".wh..wh..opq"


@dataclass
class SquashedLayer:
    digest: str
    diff_id: str
    size: int
    entries: int


class _HashingWriter:
    """Write-through file wrapper that hashes and counts what passes through it."""

    def __init__(self, target: IO[bytes]):
        self.target = target
        self.sha256 = hashlib.sha256()
        self.size = 0

    def write(self, data: bytes) -> int:
        self.sha256.update(data)
        self.size += len(data)
        return self.target.write(data)

    def flush(self) -> None:
        self.target.flush()

    @property
    def digest(self) -> str:
        return "sha256:" + self.sha256.hexdigest()


def _normalize(name: str) -> str:
    name = posixpath.normpath(name.lstrip("/"))
    if name.startswith("./"):
        name = name[2:]
    return "" if name == "." else name


def _ancestors(path: str) -> List[str]:
    result = []
    parent = posixpath.dirname(path)
    while parent:
        result.append(parent)
        parent = posixpath.dirname(parent)
    return result


class _LayerView:
    """Paths hidden from lower layers by the layers processed so far."""

    def __init__(self):
        self.present: Set[str] = set()
        self.files: Set[str] = set()
        self.deleted: Set[str] = set()
        self.opaque: Set[str] = set()

    def masks(self, path: str) -> bool:
        """True if the path was deleted above, directly or through a parent replaced or removed above."""
        if path in self.deleted:
            return True
        return any(a in self.deleted or a in self.opaque or a in self.files for a in _ancestors(path))

    def hides(self, path: str) -> bool:
        return path in self.present or self.masks(path)

    def merge(self, other: "_LayerView") -> None:
        self.present |= other.present
        self.files |= other.files
        self.deleted |= other.deleted
        self.opaque |= other.opaque


def flatten_layers(layers: List[IO[bytes]], output: IO[bytes]) -> SquashedLayer:
    """Merge layer tarballs into one gzip-compressed layer.

    Whiteouts are written before any other entry so that, on extraction, they
    only remove content of the layers below the flattened one.

    Args:
        layers: Layer blobs ordered bottom to top; gzip or plain tar
        output: File the compressed layer is written to

    Returns:
        SquashedLayer with the compressed digest, the uncompressed diff_id and size
    """
    with contextlib.ExitStack() as stack:
        whiteouts: List[Tuple[tarfile.TarInfo, tarfile.TarFile]] = []
        entries: List[Tuple[tarfile.TarInfo, tarfile.TarFile]] = []
        view = _LayerView()
        for layer in reversed(layers):
            layer.seek(0)
            src = stack.enter_context(tarfile.open(fileobj=layer, mode="r:*"))
            _select_visible(src, view, whiteouts, entries)

        compressed = _HashingWriter(output)
        with gzip.GzipFile(fileobj=compressed, mode="wb", compresslevel=9, mtime=0) as gz:
            uncompressed = _HashingWriter(gz)
            with tarfile.open(fileobj=uncompressed, mode="w|", format=tarfile.PAX_FORMAT) as out:
                ordered = sorted(whiteouts, key=lambda e: e[0].name) + sorted(entries, key=lambda e: e[0].name)
                for member, src in ordered:
                    if member.isreg():
                        out.addfile(member, src.extractfile(member))
                    else:
                        out.addfile(member)

    output.seek(0)
    count = len(whiteouts) + len(entries)
    logger.debug(f"Flattened {len(layers)} layers into {count} entries ({compressed.size} bytes)")
    return SquashedLayer(
        digest=compressed.digest,
        diff_id=uncompressed.digest,
        size=compressed.size,
        entries=count,
    )


def _select_visible(src: tarfile.TarFile, view: _LayerView, whiteouts: list, entries: list) -> None:
    """Pick the entries of one layer that no higher layer hides."""
    current = _LayerView()
    for member in src.getmembers():
        path = _normalize(member.name)
        if not path:
            continue
        directory, base = posixpath.split(path)
        member.name = path

        if base == OPAQUE_WHITEOUT:
            if directory in view.opaque or directory in view.files or (directory and view.masks(directory)):
                continue
            current.opaque.add(directory)
            whiteouts.append((member, src))
        elif base.startswith(WHITEOUT_PREFIX):
            target = posixpath.join(directory, base[len(WHITEOUT_PREFIX):])
            if view.masks(target) or target in current.deleted:
                continue
            current.deleted.add(target)
            whiteouts.append((member, src))
        else:
            if view.hides(path) or path in current.present:
                continue
            current.present.add(path)
            if not member.isdir():
                current.files.add(path)
            entries.append((member, src))

    view.merge(current)
