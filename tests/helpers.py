"""Test helpers for building images and reading archives back."""

import hashlib
import io
import json
import tarfile

from docker_archive_writer import LayerDescriptor

CONFIG_BYTES = (
    b'{"os": "linux", "architecture": "amd64", '
    b'"created": "2024-01-01T00:00:00Z", "config": {"Cmd": ["/bin/sh"]}, '
    b'"rootfs": {"type": "layers", "diff_ids": []}}'
)


def sha256_digest(data: bytes) -> str:
    """Return the sha256 digest string of data."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


def make_layer(content: bytes) -> LayerDescriptor:
    """Create a layer descriptor for content."""
    return LayerDescriptor(digest=sha256_digest(content), size=len(content))


def make_config(**fields) -> bytes:
    """Create an image config JSON document."""
    config = {"architecture": "amd64", "os": "linux"}
    config.update(fields)
    return json.dumps(config).encode("utf-8")


def read_members(data: bytes) -> list[tarfile.TarInfo]:
    """List archive members in the order they were written."""
    with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
        return tar.getmembers()


def read_files(data: bytes) -> dict[str, bytes]:
    """Map each regular file in the archive to its contents."""
    files = {}
    with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
        for member in tar.getmembers():
            if member.isfile():
                files[member.name] = tar.extractfile(member).read()
    return files


def read_json(data: bytes, name: str):
    """Parse a JSON file stored in the archive."""
    return json.loads(read_files(data)[name])
