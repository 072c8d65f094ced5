"""YAML file store for managed clusters and their nodes.

The store backs the CLI and local runs of the reconciler. It uses
ruamel.yaml so comments and formatting in hand-edited files survive
write-backs. Updates use optimistic concurrency on ``resource_version``.
"""

import shutil
from pathlib import Path

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from cluster_agent.exceptions import ConflictError, StoreError
from cluster_agent.logging_config import get_logger
from cluster_agent.models.cluster import ManagedCluster
from cluster_agent.models.node import Node

logger = get_logger(__name__)


class StoreValidationError(StoreError):
    """Exception raised when the store file has an invalid structure."""

    pass


class ClusterStore:
    """Cluster and node records kept in a single YAML file."""

    def __init__(self, path: str | Path):
        """Initialize the store.

        Args:
            path: Path to the store file
        """
        self.path = Path(path)
        self.yaml = YAML()
        self.yaml.preserve_quotes = True
        self.yaml.default_flow_style = False
        self.yaml.indent(mapping=2, sequence=2, offset=0)

    def read(self) -> dict:
        """Read the store file and return parsed data.

        Raises:
            StoreError: If the file cannot be read or parsed
        """
        logger.debug(f"Reading cluster store: {self.path}")

        if not self.path.exists():
            logger.error(f"Cluster store not found: {self.path}")
            raise StoreError(
                f"Cluster store not found: {self.path}",
                f"Expected location: {self.path.absolute()}\n"
                "Create the file or specify a different path with --store",
            )

        try:
            with open(self.path) as f:
                data = self.yaml.load(f)
        except Exception as e:
            logger.error(f"Failed to read cluster store: {e}", exc_info=True)
            raise StoreError(
                f"Failed to read cluster store: {e}",
                f"The file may have invalid YAML syntax. Check the file at: {self.path.absolute()}",
            ) from e

        if data is None:
            data = CommentedMap()
        self.validate(data)
        return data

    def write(self, data: dict) -> None:
        """Write store data to file, keeping a backup of the previous version.

        Raises:
            StoreError: If the file cannot be written
        """
        logger.debug(f"Writing cluster store: {self.path}")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)

            if self.path.exists():
                backup_path = self.path.with_suffix(self.path.suffix + ".backup")
                logger.debug(f"Creating backup at: {backup_path}")
                shutil.copy2(self.path, backup_path)

            with open(self.path, "w") as f:
                self.yaml.dump(data, f)
        except OSError as e:
            logger.error(f"Failed to write cluster store: {e}")
            raise StoreError(
                f"Failed to write cluster store: {e}",
                "Check disk space and file system permissions",
            ) from e

    def validate(self, data: dict) -> None:
        """Validate the top-level structure of the store.

        Raises:
            StoreValidationError: If validation fails
        """
        if not isinstance(data, dict):
            raise StoreValidationError("Cluster store must be a dictionary")

        for section in ("clusters", "nodes"):
            if section in data and data[section] is not None and not isinstance(
                data[section], dict
            ):
                raise StoreValidationError(f"'{section}' must be a dictionary")

    def _section(self, data: dict, section: str) -> dict:
        if data.get(section) is None:
            data[section] = CommentedMap()
        return data[section]

    def get_cluster(self, name: str) -> ManagedCluster | None:
        """Return the cluster named ``name``, or None if it is not stored."""
        clusters = self._section(self.read(), "clusters")
        if name not in clusters:
            return None
        return self._parse_cluster(name, clusters[name])

    def list_clusters(self) -> list[ManagedCluster]:
        clusters = self._section(self.read(), "clusters")
        return [self._parse_cluster(name, data) for name, data in clusters.items()]

    def _parse_cluster(self, name: str, data: dict) -> ManagedCluster:
        try:
            return ManagedCluster.from_store_dict(name, data or {})
        except ValidationError as e:
            raise StoreValidationError(f"Cluster '{name}' validation failed", str(e)) from e

    def create_cluster(self, cluster: ManagedCluster) -> ManagedCluster:
        """Add a new cluster record.

        Raises:
            StoreError: If a cluster with the same name exists
        """
        data = self.read()
        clusters = self._section(data, "clusters")
        if cluster.name in clusters:
            raise StoreError(f"Cluster '{cluster.name}' already exists in store")

        created = cluster.model_copy(update={"resource_version": 1})
        clusters[cluster.name] = created.to_store_dict()
        self.write(data)
        logger.info(f"Created cluster '{cluster.name}'")
        return created

    def update(self, cluster: ManagedCluster) -> ManagedCluster:
        """Write back a modified cluster.

        Raises:
            StoreError: If the cluster does not exist
            ConflictError: If the stored resource version moved since ``cluster`` was read
        """
        data = self.read()
        clusters = self._section(data, "clusters")
        if cluster.name not in clusters:
            raise StoreError(f"Cluster '{cluster.name}' not found in store")

        stored_version = (clusters[cluster.name] or {}).get("resource_version", 0)
        if stored_version != cluster.resource_version:
            raise ConflictError(
                f"Cluster '{cluster.name}' was modified concurrently",
                f"Expected resource version {cluster.resource_version}, found {stored_version}",
            )

        updated = cluster.model_copy(update={"resource_version": cluster.resource_version + 1})
        clusters[cluster.name] = updated.to_store_dict()
        self.write(data)
        logger.debug(f"Updated cluster '{cluster.name}' to version {updated.resource_version}")
        return updated

    def list_nodes(self, cluster_name: str) -> list[Node]:
        """Return the nodes of ``cluster_name`` in file order."""
        nodes = self._section(self.read(), "nodes")
        result = []
        for name, node_data in nodes.items():
            try:
                node = Node.from_store_dict(name, node_data)
            except (KeyError, ValidationError) as e:
                raise StoreValidationError(f"Node '{name}' validation failed", str(e)) from e
            if node.cluster_name == cluster_name:
                result.append(node)
        return result

    def add_node(self, node: Node) -> None:
        """Add a node record.

        Raises:
            StoreError: If a node with the same name exists
        """
        logger.info(f"Adding node '{node.name}' to cluster '{node.cluster_name}'")
        data = self.read()
        nodes = self._section(data, "nodes")
        if node.name in nodes:
            raise StoreError(
                f"Node '{node.name}' already exists in store",
                f"Use 'cluster-agent remove-node {node.name}' to remove it first",
            )
        nodes[node.name] = node.to_store_dict()
        self.write(data)

    def remove_node(self, name: str) -> None:
        data = self.read()
        nodes = self._section(data, "nodes")
        if name not in nodes:
            raise StoreError(f"Node '{name}' not found in store")
        del nodes[name]
        self.write(data)
