"""Data models for docker-save archive metadata."""

from dataclasses import dataclass, field, replace
from typing import Any, Optional


@dataclass
class ManifestItem:
    """One image entry of manifest.json."""

    config: str  # Path of the config blob within the archive
    repo_tags: list[str] = field(default_factory=list)
    layers: list[str] = field(default_factory=list)  # Paths of the layer blobs
    parent: str = ""  # Not known when writing
    layer_sources: Optional[dict[str, Any]] = None  # Never set

    def copy(self) -> "ManifestItem":
        """Return a copy that shares no lists with this entry."""
        return replace(self, repo_tags=list(self.repo_tags), layers=list(self.layers))

    def to_json(self) -> dict[str, Any]:
        """Return the entry in manifest.json field order."""
        return {
            "Config": self.config,
            "RepoTags": list(self.repo_tags),
            "Layers": list(self.layers),
            "Parent": self.parent,
            "LayerSources": self.layer_sources,
        }
