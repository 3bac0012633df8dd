"""Bookkeeping of content already present in an archive."""

import logging
from typing import Optional

from ..core.types import BlobInfo
from ..exceptions import MissingDigestError

logger = logging.getLogger(__name__)


class BlobRegistry:
    """Blobs already recorded in the archive, by digest."""

    def __init__(self) -> None:
        self._blobs: dict[str, BlobInfo] = {}

    def __len__(self) -> int:
        return len(self._blobs)

    def try_reuse(self, digest: str) -> Optional[BlobInfo]:
        """Check whether a blob has already been recorded.

        Args:
            digest: Blob digest, must not be empty

        Returns:
            BlobInfo with the recorded size, or None if the blob is not known

        Raises:
            MissingDigestError: If digest is empty
        """
        if not digest:
            raise MissingDigestError("Can not check for a blob with unknown digest")
        blob = self._blobs.get(digest)
        if blob is None:
            return None
        logger.debug("Reusing blob %s (%d bytes)", digest, blob.size)
        return BlobInfo(digest=digest, size=blob.size)

    def record(self, info: BlobInfo) -> None:
        """Record a blob, which must have a digest and size."""
        self._blobs[info.digest] = info


class LegacyLayerTracker:
    """IDs of legacy layers whose files have already been written."""

    def __init__(self) -> None:
        self._layer_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._layer_ids)

    def contains(self, layer_id: str) -> bool:
        return layer_id in self._layer_ids

    def add(self, layer_id: str) -> None:
        self._layer_ids.add(layer_id)
