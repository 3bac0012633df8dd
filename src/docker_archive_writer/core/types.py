"""Core data types for the archive writer."""

import tarfile
from dataclasses import dataclass

DEFAULT_CHUNK_SIZE = 1024 * 1024

_TAR_FORMATS = (tarfile.USTAR_FORMAT, tarfile.GNU_FORMAT, tarfile.PAX_FORMAT)


@dataclass(frozen=True)
class BlobInfo:
    """Blob metadata.

    A negative size means the size is not known yet.
    """

    digest: str
    size: int = -1


@dataclass(frozen=True)
class LayerDescriptor:
    """A layer blob of an image, listed from the root layer upwards."""

    digest: str
    size: int


@dataclass(frozen=True)
class RepoTag:
    """A normalized repository name and tag."""

    name: str
    tag: str

    def __str__(self) -> str:
        return f"{self.name}:{self.tag}"


@dataclass
class WriterConfig:
    """Archive writer configuration."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    tar_format: int = tarfile.PAX_FORMAT
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.tar_format not in _TAR_FORMATS:
            raise ValueError(f"Unsupported tar format: {self.tar_format}")
