"""Asyncio interface to the archive writer."""

import asyncio
import functools
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any, BinaryIO, Callable, Optional, TypeVar

import aiofiles
import aiofiles.os
import aiofiles.tempfile

from .core.archive_writer import ArchiveWriter
from .core.types import BlobInfo, LayerDescriptor, RepoTag, WriterConfig
from .tar.models import ManifestItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncArchiveWriter:
    """Async wrapper around ArchiveWriter.

    Every operation runs in the default executor, so lock waits and
    blocking writes to the destination stay off the event loop.
    """

    def __init__(
        self,
        dest: BinaryIO,
        config: Optional[WriterConfig] = None,
        spool_dir: Optional[str] = None,
    ) -> None:
        """Initialize the writer.

        Args:
            dest: Writable binary stream for the archive
            config: Writer configuration
            spool_dir: Directory for temporary copies of streamed blobs
                (default: the system temporary directory)
        """
        self.writer = ArchiveWriter(dest, config)
        self.spool_dir = spool_dir

    async def __aenter__(self) -> "AsyncArchiveWriter":
        """Enter async context manager."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager, finishing the archive on success."""
        if exc_type is None and not self.writer.closed:
            await self.close()

    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def try_reuse_blob(self, info: BlobInfo) -> Optional[BlobInfo]:
        return await self._run(self.writer.try_reuse_blob, info)

    async def record_blob(self, info: BlobInfo) -> None:
        await self._run(self.writer.record_blob, info)

    async def put_bytes(
        self, data: bytes, digest: Optional[str] = None, is_config: bool = False
    ) -> BlobInfo:
        return await self._run(self.writer.put_bytes, data, digest, is_config)

    def _put_file(self, info: BlobInfo, path: str, is_config: bool) -> BlobInfo:
        with open(path, "rb") as f:
            return self.writer.put_blob(info, f, is_config=is_config)

    async def put_blob_file(
        self, info: BlobInfo, path: str, is_config: bool = False
    ) -> BlobInfo:
        """Write a blob stored in a local file.

        Args:
            info: Blob digest and size; a negative size is taken from the file
            path: Path to the blob file
            is_config: Store the blob as an image config

        Returns:
            Metadata of the blob in the archive
        """
        if info.size < 0:
            stat = await aiofiles.os.stat(path)
            info = BlobInfo(digest=info.digest, size=stat.st_size)
        return await self._run(self._put_file, info, path, is_config)

    async def put_blob_stream(
        self, info: BlobInfo, chunks: AsyncIterator[bytes], is_config: bool = False
    ) -> BlobInfo:
        """Write a blob arriving as an async stream of chunks.

        The stream is first copied to a temporary file, then written to the
        archive from there. A blob already in the archive is not read at all.

        Args:
            info: Blob digest and size; a negative size means unknown, and
                the number of bytes received is used
            chunks: Blob contents
            is_config: Store the blob as an image config

        Returns:
            Metadata of the blob in the archive

        Raises:
            SizeMismatchError: If a known size differs from the bytes received
        """
        reused = await self.try_reuse_blob(info)
        if reused is not None:
            return reused

        spool_path = None
        try:
            received = 0
            async with aiofiles.tempfile.NamedTemporaryFile(
                "wb", prefix="blob-", dir=self.spool_dir, delete=False
            ) as f:
                spool_path = f.name
                async for chunk in chunks:
                    await f.write(chunk)
                    received += len(chunk)
            logger.debug("Spooled %d bytes of blob %s", received, info.digest)

            if info.size < 0:
                info = BlobInfo(digest=info.digest, size=received)
            return await self._run(self._put_file, info, spool_path, is_config)
        finally:
            if spool_path is not None:
                await aiofiles.os.remove(spool_path)

    async def ensure_legacy_metadata(
        self,
        layers: Sequence[LayerDescriptor],
        config_bytes: bytes,
        repo_tags: Iterable[RepoTag] = (),
    ) -> str:
        return await self._run(
            self.writer.ensure_legacy_metadata, layers, config_bytes, list(repo_tags)
        )

    async def set_repo_tag(self, name: str, tag: str, layer_id: str) -> None:
        await self._run(self.writer.set_repo_tag, name, tag, layer_id)

    async def ensure_manifest_entry(
        self,
        layers: Sequence[LayerDescriptor],
        config_digest: str,
        repo_tags: Iterable[RepoTag] = (),
    ) -> ManifestItem:
        return await self._run(
            self.writer.ensure_manifest_entry, layers, config_digest, list(repo_tags)
        )

    async def add_image(
        self,
        layers: Sequence[LayerDescriptor],
        config_digest: str,
        config_bytes: bytes,
        repo_tags: Iterable[RepoTag] = (),
    ) -> str:
        return await self._run(
            self.writer.add_image, layers, config_digest, config_bytes, list(repo_tags)
        )

    async def close(self) -> None:
        """Finish the archive."""
        await self._run(self.writer.close)
