"""Sequential tar entry writer."""

import io
import logging
import tarfile
from collections.abc import Iterator
from contextlib import contextmanager
from typing import BinaryIO

from ..core.types import WriterConfig
from ..exceptions import ArchiveError, SizeMismatchError

logger = logging.getLogger(__name__)

FILE_MODE = 0o444
SYMLINK_MODE = 0o000
MTIME = 0


@contextmanager
def describe_errors(action: str) -> Iterator[None]:
    """Prefix errors raised while writing the archive with action.

    The exception type is kept, the original is chained as the cause.
    """
    try:
        yield
    except (OSError, ArchiveError) as e:
        raise type(e)(f"{action}: {e}") from e


class _ExactReader:
    """Wraps a stream so that every read returns as much as was asked for.

    tarfile treats a short read as the end of the data, which is wrong for
    pipes and sockets; this keeps reading until the request is filled or the
    stream is exhausted, and counts the bytes handed out.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.count = 0
        self.eof = False

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            data = self._stream.read()
            self.eof = True
            self.count += len(data)
            return data
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                self.eof = True
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self.count += len(data)
        return data


class ArchiveEmitter:
    """Writes regular files and symlinks into a tar stream.

    Every entry gets fixed ownership, permissions and a zero modification
    time, so identical input produces identical archives. The emitter does
    no locking; callers serialize access.
    """

    def __init__(self, dest: BinaryIO, config: WriterConfig) -> None:
        self._tar = tarfile.open(
            fileobj=dest,
            mode="w|",
            format=config.tar_format,
            encoding=config.encoding,
            copybufsize=config.chunk_size,
        )

    def _tar_info(self, path: str) -> tarfile.TarInfo:
        info = tarfile.TarInfo(path)
        info.mtime = MTIME
        info.uid = 0
        info.gid = 0
        info.uname = ""
        info.gname = ""
        return info

    def emit_symlink(self, path: str, target: str) -> None:
        """Write a symlink entry at path pointing to target."""
        info = self._tar_info(path)
        info.type = tarfile.SYMTYPE
        info.mode = SYMLINK_MODE
        info.linkname = target
        info.size = 0
        logger.debug("Sending as tar link %s -> %s", path, target)
        try:
            self._tar.addfile(info)
        except OSError as e:
            raise type(e)(f"Error writing {path}: {e}") from e

    def emit(self, path: str, expected_size: int, stream: BinaryIO) -> None:
        """Write a regular file entry at path with the body read from stream.

        Args:
            path: Path within the archive
            expected_size: Size declared in the entry header
            stream: Body source, must produce exactly expected_size bytes

        Raises:
            SizeMismatchError: If stream is shorter or longer than expected_size;
                the archive is corrupt afterwards
            OSError: If writing to the destination fails
        """
        info = self._tar_info(path)
        info.type = tarfile.REGTYPE
        info.mode = FILE_MODE
        info.size = expected_size
        logger.debug("Sending as tar file %s", path)

        reader = _ExactReader(stream)
        try:
            self._tar.addfile(info, reader)
        except OSError as e:
            if reader.eof and reader.count < expected_size:
                raise SizeMismatchError(
                    f"Size mismatch when copying {path}, "
                    f"expected {expected_size}, got {reader.count}"
                ) from e
            raise type(e)(f"Error copying {path}: {e}") from e
        # TODO: accept a cancellation event so long copies can be interrupted.
        if reader.read(1):
            raise SizeMismatchError(
                f"Size mismatch when copying {path}, "
                f"expected {expected_size}, got more data"
            )

    def emit_bytes(self, path: str, data: bytes) -> None:
        """Write a regular file entry holding data."""
        self.emit(path, len(data), io.BytesIO(data))

    def close(self) -> None:
        """Write the archive trailer.

        The destination stream itself is left open.
        """
        self._tar.close()
