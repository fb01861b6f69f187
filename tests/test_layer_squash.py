"""Unit tests for kitgc/layer_squash.py"""

import gzip
import hashlib
import io
import sys
import tarfile
from pathlib import Path

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from kitgc.layer_squash import flatten_layers


def make_layer(entries, compress=True):
    """Build a layer blob from (path, content) pairs; content None makes a directory."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for path, content in entries:
            info = tarfile.TarInfo(path)
            if content is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
    data = raw.getvalue()
    if compress:
        data = gzip.compress(data)
    return io.BytesIO(data)


def read_layer(output):
    output.seek(0)
    with tarfile.open(fileobj=output, mode="r:gz") as tar:
        return {
            member.name: (tar.extractfile(member).read() if member.isreg() else None)
            for member in tar.getmembers()
        }


class TestFlattenLayers:
    """Tests for flatten_layers"""

    def test_upper_layer_wins(self):
        lower = make_layer([("app", None), ("app/config", b"old"), ("app/lib.jar", b"lib")])
        upper = make_layer([("app/config", b"new")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)

        assert read_layer(output) == {"app/config": b"new", "app": None, "app/lib.jar": b"lib"}

    def test_digests_describe_output(self):
        output = io.BytesIO()

        result = flatten_layers([make_layer([("file", b"content")])], output)

        compressed = output.getvalue()
        assert result.digest == "sha256:" + hashlib.sha256(compressed).hexdigest()
        assert result.size == len(compressed)
        assert result.diff_id == "sha256:" + hashlib.sha256(gzip.decompress(compressed)).hexdigest()
        assert result.entries == 1

    def test_output_is_reproducible(self):
        first, second = io.BytesIO(), io.BytesIO()

        a = flatten_layers([make_layer([("file", b"x")])], first)
        b = flatten_layers([make_layer([("file", b"x")])], second)

        assert a.digest == b.digest

    def test_accepts_uncompressed_layers(self):
        output = io.BytesIO()

        flatten_layers([make_layer([("plain", b"data")], compress=False)], output)

        assert read_layer(output) == {"plain": b"data"}

    def test_whiteout_hides_lower_file_and_is_kept(self):
        lower = make_layer([("app/removed", b"gone"), ("app/kept", b"kept")])
        upper = make_layer([("app/.wh.removed", b"")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)
        files = read_layer(output)

        assert "app/removed" not in files
        assert files["app/kept"] == b"kept"
        assert "app/.wh.removed" in files

    def test_whiteout_is_written_before_recreated_file(self):
        lower = make_layer([("app/.wh.config", b"")])
        upper = make_layer([("app/config", b"recreated")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)
        output.seek(0)
        with tarfile.open(fileobj=output, mode="r:gz") as tar:
            names = tar.getnames()

        assert names == ["app/.wh.config", "app/config"]

    def test_repeated_whiteout_is_written_once(self):
        lower = make_layer([(".wh.tmp", b"")])
        upper = make_layer([(".wh.tmp", b"")])
        output = io.BytesIO()

        result = flatten_layers([lower, upper], output)

        assert read_layer(output) == {".wh.tmp": b""}
        assert result.entries == 1

    def test_whiteout_of_directory_hides_its_contents(self):
        lower = make_layer([("cache", None), ("cache/a", b"a"), ("cache/b", b"b")])
        upper = make_layer([(".wh.cache", b"")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)

        assert read_layer(output) == {".wh.cache": b""}

    def test_opaque_directory_hides_lower_contents_only(self):
        lower = make_layer([("data", None), ("data/old", b"old")])
        upper = make_layer([("data", None), ("data/.wh..wh..opq", b""), ("data/new", b"new")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)
        files = read_layer(output)

        assert "data/old" not in files
        assert files["data/new"] == b"new"
        assert "data/.wh..wh..opq" in files

    def test_leading_dot_slash_is_normalized(self):
        output = io.BytesIO()

        flatten_layers([make_layer([("./etc/app.conf", b"conf")])], output)

        assert read_layer(output) == {"etc/app.conf": b"conf"}

    def test_directory_replaced_by_file_hides_lower_contents(self):
        lower = make_layer([
            ("opt/app", None), ("opt/app/lib.jar", b"lib"), ("opt/app/.wh.old", b""),
        ])
        upper = make_layer([("opt/app", b"now a file")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)

        assert read_layer(output) == {"opt/app": b"now a file"}

    def test_file_replaced_by_directory_keeps_new_contents(self):
        lower = make_layer([("opt/app", b"a file")])
        upper = make_layer([("opt/app", None), ("opt/app/lib.jar", b"lib")])
        output = io.BytesIO()

        flatten_layers([lower, upper], output)

        assert read_layer(output) == {"opt/app": None, "opt/app/lib.jar": b"lib"}
