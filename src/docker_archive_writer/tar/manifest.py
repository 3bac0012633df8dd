"""manifest.json bookkeeping."""

from collections.abc import Iterable, Sequence

from ..core.types import LayerDescriptor, RepoTag
from ..exceptions import InternalInconsistencyError
from ..utils.jsonenc import marshal
from .models import ManifestItem
from .paths import config_path, physical_layer_path


def check_manifest_items_match(a: ManifestItem, b: ManifestItem) -> None:
    """Check that a and b describe the same image.

    RepoTags are not compared, they are merged later. Parent and
    LayerSources are never set to anything meaningful.

    Raises:
        InternalInconsistencyError: If the config or layers differ
    """
    if a.config != b.config:
        raise InternalInconsistencyError(
            f"Internal error: Trying to reuse ManifestItem values with configs "
            f"{a.config!r} vs. {b.config!r}"
        )
    if a.layers != b.layers:
        raise InternalInconsistencyError(
            f"Internal error: Trying to reuse ManifestItem values with layers "
            f"{a.layers!r} vs. {b.layers!r}"
        )


class ManifestAccumulator:
    """Ordered manifest entries, one per config digest."""

    def __init__(self) -> None:
        self._items: list[ManifestItem] = []
        self._by_config: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[ManifestItem]:
        return [item.copy() for item in self._items]

    def ensure_entry(
        self,
        layers: Sequence[LayerDescriptor],
        config_digest: str,
        repo_tags: Iterable[RepoTag],
    ) -> ManifestItem:
        """Ensure there is an entry for (layers, config_digest) carrying repo_tags.

        Args:
            layers: Layers from the root upwards
            config_digest: Digest of the image config
            repo_tags: Tags to add to the entry, duplicates are ignored

        Returns:
            A copy of the new or existing entry

        Raises:
            InvalidDigestError: If a digest is malformed
            InternalInconsistencyError: If an entry for config_digest exists
                with different paths
        """
        layer_paths = [physical_layer_path(layer.digest) for layer in layers]
        candidate = ManifestItem(config=config_path(config_digest), layers=layer_paths)

        index = self._by_config.get(config_digest)
        if index is not None:
            item = self._items[index]
            check_manifest_items_match(item, candidate)
        else:
            self._by_config[config_digest] = len(self._items)
            self._items.append(candidate)
            item = candidate

        known = set(item.repo_tags)
        for tag in repo_tags:
            # Keeps any registry host name, so hostname-qualified and short
            # references stay distinguishable for consumers that care.
            ref = f"{tag.name}:{tag.tag}"
            if ref not in known:
                item.repo_tags.append(ref)
                known.add(ref)
        return item.copy()

    def to_json(self) -> bytes:
        """Serialize the entries as manifest.json."""
        return marshal([item.to_json() for item in self._items], sort_keys=False)
