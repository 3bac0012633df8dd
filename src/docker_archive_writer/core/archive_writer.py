"""docker-save archive writer."""

import io
import logging
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import BinaryIO, Optional

from ..exceptions import AlreadyClosedError, ArchiveError, SizeMismatchError
from ..tar.emitter import ArchiveEmitter, describe_errors
from ..tar.legacy import LegacyMetadataBuilder
from ..tar.manifest import ManifestAccumulator
from ..tar.models import ManifestItem
from ..tar.paths import (
    LEGACY_REPOSITORIES_FILE_NAME,
    MANIFEST_FILE_NAME,
    config_path,
    physical_layer_path,
)
from ..tar.registry import BlobRegistry, LegacyLayerTracker
from ..tar.tags import RepositoriesTable
from ..utils.digest import calculate_digest
from .types import BlobInfo, LayerDescriptor, RepoTag, WriterConfig

logger = logging.getLogger(__name__)


class ArchiveWriter:
    """Writes one or more images into a single (docker save)-formatted tar archive.

    The archive is written sequentially to ``dest``; blobs and legacy layers
    shared between images are written once. All operations are serialized
    by one lock, so a writer may be shared between threads. ``close()`` must
    be called to produce a valid archive.

    Per image, callers are expected to:
        1. write each layer blob and the config blob (``put_blob``, or
           ``try_reuse_blob``/``record_blob`` around their own transfer)
        2. ``ensure_legacy_metadata`` for the layer chain
        3. ``ensure_manifest_entry``
    """

    def __init__(self, dest: BinaryIO, config: Optional[WriterConfig] = None) -> None:
        """Initialize the writer.

        Args:
            dest: Writable binary stream; it does not need to be seekable
                and is not closed by the writer
            config: Writer configuration
        """
        self.config = config or WriterConfig()
        self._mutex = threading.Lock()
        # Everything below is only accessed with the mutex held, via _locked().
        self._emitter: Optional[ArchiveEmitter] = ArchiveEmitter(dest, self.config)
        self._failure: Optional[BaseException] = None
        self._blobs = BlobRegistry()
        self._legacy_layers = LegacyLayerTracker()
        self._legacy = LegacyMetadataBuilder(self._emitter, self._legacy_layers)
        self._manifest = ManifestAccumulator()
        self._repositories = RepositoriesTable()

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        # An archive that failed half-way is left unfinished.
        if exc_type is None and not self.closed:
            self.close()

    @property
    def closed(self) -> bool:
        with self._mutex:
            return self._emitter is None

    @contextmanager
    def _locked(self) -> Iterator[ArchiveEmitter]:
        """Hold the lock, checking the writer is still usable."""
        with self._mutex:
            if self._emitter is None:
                raise AlreadyClosedError(
                    "Internal error: trying to use an already closed ArchiveWriter"
                )
            if self._failure is not None:
                raise ArchiveError(
                    f"The archive is unusable after an earlier failure: {self._failure}"
                ) from self._failure
            try:
                yield self._emitter
            except (SizeMismatchError, OSError) as e:
                # The tar stream may hold a partial entry now.
                self._failure = e
                raise

    def try_reuse_blob(self, info: BlobInfo) -> Optional[BlobInfo]:
        """Check whether the archive already contains a blob.

        Args:
            info: Blob to look for; the digest must not be empty

        Returns:
            The recorded blob metadata, or None if the blob must be written

        Raises:
            MissingDigestError: If info has no digest
            AlreadyClosedError: If the writer has been closed
        """
        with self._locked():
            return self._blobs.try_reuse(info.digest)

    def record_blob(self, info: BlobInfo) -> None:
        """Record that a blob, with known digest and size, is in the archive."""
        with self._locked():
            self._blobs.record(info)

    def put_blob(
        self, info: BlobInfo, stream: BinaryIO, is_config: bool = False
    ) -> BlobInfo:
        """Write a blob into the archive unless it is already there.

        Args:
            info: Digest and size of the blob; the digest is trusted
            stream: Blob contents, exactly info.size bytes
            is_config: Store the blob as an image config instead of a layer

        Returns:
            Metadata of the blob in the archive

        Raises:
            MissingDigestError: If info has no digest
            InvalidDigestError: If the digest is malformed
            SizeMismatchError: If the stream length differs from info.size
            AlreadyClosedError: If the writer has been closed
        """
        with self._locked() as emitter:
            if info.size < 0:
                raise ValueError(f"Size of blob {info.digest} must be known")
            reused = self._blobs.try_reuse(info.digest)
            if reused is not None:
                return reused
            if is_config:
                path = config_path(info.digest)
            else:
                path = physical_layer_path(info.digest)
            emitter.emit(path, info.size, stream)
            self._blobs.record(info)
            return info

    def put_bytes(
        self, data: bytes, digest: Optional[str] = None, is_config: bool = False
    ) -> BlobInfo:
        """Write an in-memory blob; the digest is computed if not given."""
        info = BlobInfo(digest=digest or calculate_digest(data), size=len(data))
        return self.put_blob(info, io.BytesIO(data), is_config=is_config)

    def _set_repo_tags_locked(self, repo_tags: Iterable[RepoTag], layer_id: str) -> None:
        for repo_tag in repo_tags:
            self._repositories.set_tag(repo_tag.name, repo_tag.tag, layer_id)

    def ensure_legacy_metadata(
        self,
        layers: Sequence[LayerDescriptor],
        config_bytes: bytes,
        repo_tags: Iterable[RepoTag] = (),
    ) -> str:
        """Write legacy layer directories for an image and record its tags.

        Args:
            layers: Layers from the root upwards
            config_bytes: The image config JSON
            repo_tags: Tags to point at the image's top layer in the
                repositories file

        Returns:
            Legacy ID of the top layer, "" for an image without layers

        Raises:
            InvalidDigestError: If a layer digest is malformed
            SerializationError: If the config is not a JSON object
            AlreadyClosedError: If the writer has been closed
        """
        with self._locked():
            layer_id = self._legacy.materialize(layers, config_bytes)
            self._set_repo_tags_locked(repo_tags, layer_id)
            return layer_id

    def set_repo_tag(self, name: str, tag: str, layer_id: str) -> None:
        """Point name:tag at a legacy layer ID in the repositories file."""
        with self._locked():
            self._repositories.set_tag(name, tag, layer_id)

    def ensure_manifest_entry(
        self,
        layers: Sequence[LayerDescriptor],
        config_digest: str,
        repo_tags: Iterable[RepoTag] = (),
    ) -> ManifestItem:
        """Ensure manifest.json lists the image, with repo_tags added.

        Raises:
            InvalidDigestError: If a digest is malformed
            InternalInconsistencyError: If config_digest was already added
                with different layers
            AlreadyClosedError: If the writer has been closed
        """
        with self._locked():
            return self._manifest.ensure_entry(layers, config_digest, repo_tags)

    def add_image(
        self,
        layers: Sequence[LayerDescriptor],
        config_digest: str,
        config_bytes: bytes,
        repo_tags: Iterable[RepoTag] = (),
    ) -> str:
        """Write the metadata of an image whose blobs are already in the archive.

        Returns:
            Legacy ID of the top layer, "" for an image without layers
        """
        repo_tags = list(repo_tags)
        with self._locked():
            layer_id = self._legacy.materialize(layers, config_bytes)
            self._set_repo_tags_locked(repo_tags, layer_id)
            self._manifest.ensure_entry(layers, config_digest, repo_tags)
            return layer_id

    def close(self) -> None:
        """Write manifest.json and repositories, then finish the archive.

        No more images can be added afterwards. The destination stream is
        not closed.

        Raises:
            AlreadyClosedError: If the writer has already been closed
        """
        with self._locked() as emitter:
            with describe_errors("marshaling manifest"):
                manifest = self._manifest.to_json()
            with describe_errors("writing manifest file"):
                emitter.emit_bytes(MANIFEST_FILE_NAME, manifest)
            with describe_errors("marshaling repositories"):
                repositories = self._repositories.to_json()
            with describe_errors("writing repositories file"):
                emitter.emit_bytes(LEGACY_REPOSITORIES_FILE_NAME, repositories)
            with describe_errors("finishing the archive"):
                emitter.close()
            logger.info(
                "Finished archive with %d images, %d blobs and %d legacy layers",
                len(self._manifest),
                len(self._blobs),
                len(self._legacy_layers),
            )
            self._emitter = None
