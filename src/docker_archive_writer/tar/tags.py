"""Repository tags and the legacy repositories file."""

from ..core.types import RepoTag
from ..utils.jsonenc import marshal


def parse_repository_tag(repo_tag: str) -> RepoTag:
    """Parse a "repository:tag" string into its components.

    Args:
        repo_tag: Repository tag string
            - e.g. "nginx:alpine", "localhost:5000/myapp:latest"
            - with a registry: "registry.io/company/app:v1.0"

    Returns:
        RepoTag with the repository name and tag

    Examples:
        parse_repository_tag("nginx:alpine")
        # RepoTag(name="nginx", tag="alpine")

        parse_repository_tag("localhost:5000/myapp:latest")
        # RepoTag(name="localhost:5000/myapp", tag="latest")

        # No tag (default is used)
        parse_repository_tag("myapp")
        # RepoTag(name="myapp", tag="latest")
    """
    name, sep, tag = repo_tag.rpartition(":")
    # A ':' before the last '/' belongs to a registry host, not a tag.
    if sep and "/" not in tag:
        if tag:
            return RepoTag(name=name, tag=tag)
        # Empty tag after colon (e.g., "app:")
        return RepoTag(name=name, tag="latest")

    # No tag specified, use default
    return RepoTag(name=repo_tag, tag="latest")


class RepositoriesTable:
    """Repository name -> tag -> legacy ID of the image's top layer."""

    def __init__(self) -> None:
        self._table: dict[str, dict[str, str]] = {}

    def set_tag(self, name: str, tag: str, layer_id: str) -> None:
        """Point name:tag at layer_id; the last call for a name:tag wins.

        Images without layers have no layer ID and are not recorded.
        """
        if not layer_id:
            return
        self._table.setdefault(name, {})[tag] = layer_id

    def get(self, name: str, tag: str) -> str | None:
        return self._table.get(name, {}).get(tag)

    def to_json(self) -> bytes:
        """Serialize the table as the legacy repositories file."""
        return marshal(self._table)
