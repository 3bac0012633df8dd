"""docker-archive-writer - write (docker save)-formatted tar archives."""

__version__ = "0.1.0"

from .aio import AsyncArchiveWriter
from .core.archive_writer import ArchiveWriter
from .core.types import BlobInfo, LayerDescriptor, RepoTag, WriterConfig
from .exceptions import (
    AlreadyClosedError,
    ArchiveError,
    InternalInconsistencyError,
    InvalidDigestError,
    MissingDigestError,
    SerializationError,
    SizeMismatchError,
)
from .tar.models import ManifestItem
from .tar.tags import parse_repository_tag

__all__ = [
    "ArchiveWriter",
    "AsyncArchiveWriter",
    "BlobInfo",
    "LayerDescriptor",
    "RepoTag",
    "WriterConfig",
    "ManifestItem",
    "parse_repository_tag",
    "ArchiveError",
    "AlreadyClosedError",
    "InternalInconsistencyError",
    "InvalidDigestError",
    "MissingDigestError",
    "SerializationError",
    "SizeMismatchError",
]
