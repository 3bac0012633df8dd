"""Legacy (pre-manifest.json) per-layer metadata.

Older loaders expect one directory per layer, named by a layer ID, holding
a VERSION file, a JSON config and the layer tarball. Those IDs do not exist
in current images, so they are synthesized here from the layer digests and
the image config, in a way that produces the same IDs as other docker-save
writers for the same image.
"""

import logging
from collections.abc import Sequence
from typing import Optional, Union

from ..core.types import LayerDescriptor
from ..utils.digest import calculate_digest, check_digest, digest_from_string
from ..utils.jsonenc import RawJSON, extract_raw_fields, marshal
from .emitter import ArchiveEmitter, describe_errors
from .paths import (
    LEGACY_CONFIG_FILE_NAME,
    LEGACY_LAYER_FILE_NAME,
    LEGACY_VERSION_FILE_NAME,
    legacy_layer_file,
    legacy_layer_link_target,
)
from .registry import LegacyLayerTracker

logger = logging.getLogger(__name__)

LEGACY_VERSION = b"1.0"

# Image config fields copied onto the top layer's legacy config.
TOP_LAYER_CONFIG_FIELDS = (
    "architecture",
    "config",
    "container",
    "container_config",
    "created",
    "docker_version",
    "os",
)

LayerConfig = dict[str, Union[str, RawJSON, None]]


def next_chain_id(previous: str, layer_digest: str) -> str:
    """Fold a layer digest into the chain ID of the layers below it.

    The root layer's chain ID is its own digest.
    """
    if not previous:
        return layer_digest
    return digest_from_string(f"{previous} {layer_digest}")


def layer_config(
    parent_id: str, top_fields: Optional[dict[str, RawJSON]] = None
) -> LayerConfig:
    """Build the legacy config of one layer, without its ID."""
    config: LayerConfig = {}
    if parent_id:
        config["parent"] = parent_id
    if top_fields is not None:
        for name in TOP_LAYER_CONFIG_FIELDS:
            config[name] = top_fields.get(name)
    return config


def assign_layer_id(config: LayerConfig, chain_id: str) -> tuple[str, bytes]:
    """Derive the legacy layer ID for config and set it.

    The ID is the digest of the config with the chain ID added as
    ``layer_id``; the chain ID is then dropped and ``id`` set instead.

    Returns:
        The layer ID and the final serialized config
    """
    config["layer_id"] = chain_id
    try:
        identity = marshal(config)
    finally:
        del config["layer_id"]
    layer_id = calculate_digest(identity).split(":", 1)[1]
    config["id"] = layer_id
    return layer_id, marshal(config)


class LegacyMetadataBuilder:
    """Writes the legacy layer directories of images into an archive."""

    def __init__(self, emitter: ArchiveEmitter, tracker: LegacyLayerTracker) -> None:
        self._emitter = emitter
        self._tracker = tracker

    def _ensure_layer(self, layer_id: str, layer_digest: str, config: bytes) -> None:
        if self._tracker.contains(layer_id):
            logger.debug("Legacy layer %s already written", layer_id)
            return

        with describe_errors("creating layer symbolic link"):
            self._emitter.emit_symlink(
                legacy_layer_file(layer_id, LEGACY_LAYER_FILE_NAME),
                legacy_layer_link_target(layer_digest),
            )
        with describe_errors("writing VERSION file"):
            self._emitter.emit_bytes(
                legacy_layer_file(layer_id, LEGACY_VERSION_FILE_NAME), LEGACY_VERSION
            )
        with describe_errors("writing config json file"):
            self._emitter.emit_bytes(
                legacy_layer_file(layer_id, LEGACY_CONFIG_FILE_NAME), config
            )
        self._tracker.add(layer_id)

    def materialize(
        self, layers: Sequence[LayerDescriptor], config_bytes: bytes
    ) -> str:
        """Write legacy metadata for one image's layer chain.

        Args:
            layers: Layers from the root upwards
            config_bytes: The image's config JSON

        Returns:
            The legacy ID of the top layer, or "" if there are no layers

        Raises:
            InvalidDigestError: If a layer digest is malformed
            SerializationError: If the image config is not a JSON object
        """
        chain_id = ""
        last_layer_id = ""
        for i, layer in enumerate(layers):
            top_fields = None
            if i == len(layers) - 1:
                top_fields = extract_raw_fields(config_bytes)
            config = layer_config(last_layer_id, top_fields)

            # Keeps the chain ID computation unambiguous.
            check_digest(layer.digest)
            chain_id = next_chain_id(chain_id, layer.digest)

            layer_id, serialized = assign_layer_id(config, chain_id)
            self._ensure_layer(layer_id, layer.digest, serialized)
            last_layer_id = layer_id
        return last_layer_id
