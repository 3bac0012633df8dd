"""Core writer and data types."""

from .archive_writer import ArchiveWriter
from .types import BlobInfo, LayerDescriptor, RepoTag, WriterConfig

__all__ = ["ArchiveWriter", "BlobInfo", "LayerDescriptor", "RepoTag", "WriterConfig"]
