"""Archive paths of blobs and legacy layer files.

These are choices of this writer, not properties of the format.
"""

import posixpath

from ..utils.digest import encoded_digest

MANIFEST_FILE_NAME = "manifest.json"
LEGACY_REPOSITORIES_FILE_NAME = "repositories"
LEGACY_LAYER_FILE_NAME = "layer.tar"
LEGACY_VERSION_FILE_NAME = "VERSION"
LEGACY_CONFIG_FILE_NAME = "json"


def config_path(config_digest: str) -> str:
    """Return the archive path for a config blob.

    Raises:
        InvalidDigestError: If the digest is malformed
    """
    # Validated explicitly: a malformed digest could produce an unexpected path.
    return encoded_digest(config_digest) + ".json"


def physical_layer_path(layer_digest: str) -> str:
    """Return the archive path for a layer blob.

    This is the regular file holding the layer, not the symlink used by the
    legacy per-layer directories. Layers live in the archive root: most legacy
    layer IDs differ from layer digests, so a per-digest directory would hold
    only a layer and no metadata, and legacy loaders treat every top-level
    directory as an image.

    Raises:
        InvalidDigestError: If the digest is malformed
    """
    return encoded_digest(layer_digest) + ".tar"


def legacy_layer_file(layer_id: str, file_name: str) -> str:
    """Return the path of a file inside a legacy layer directory."""
    return posixpath.join(layer_id, file_name)


def legacy_layer_link_target(layer_digest: str) -> str:
    """Return the symlink target pointing from a legacy layer to its blob."""
    return posixpath.join("..", physical_layer_path(layer_digest))
