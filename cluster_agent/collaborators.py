"""Interfaces of the services the reconciler depends on but does not implement."""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from cluster_agent.models.cluster import ManagedCluster
from cluster_agent.models.node import Node, NodeTaint


class NodeLister(Protocol):
    def list_nodes(self, cluster_name: str) -> list[Node]: ...


class ClusterUpdater(Protocol):
    def update(self, cluster: ManagedCluster) -> ManagedCluster: ...


class WorkQueue(Protocol):
    def enqueue_after(self, cluster_name: str, delay_seconds: float) -> None: ...


class SystemAccountManager(Protocol):
    """Issues the system identity each cluster's agent runs as."""

    def create_system_account(self, cluster: ManagedCluster) -> None: ...

    def remove_system_account(self, cluster_name: str) -> None: ...

    def get_system_user(self, cluster_name: str) -> str: ...

    def get_or_create_system_cluster_token(self, cluster_name: str) -> str: ...


class TokenManager(Protocol):
    def ensure_token(self, token_name: str, description: str, kind: str, user_name: str) -> str: ...


class ClusterConnectionManager(Protocol):
    """Access to downstream cluster APIs."""

    def kubeconfig(self, cluster_name: str, token: str) -> dict: ...

    def api_client(self, cluster_name: str) -> Any:
        """Return a ``kubernetes.client.ApiClient`` for the cluster."""
        ...


class ManifestRenderer(Protocol):
    def render(
        self,
        agent_image: str,
        auth_image: str,
        cluster_name: str,
        token: str,
        server_url: str,
        windows_preferred: bool,
        cluster: ManagedCluster,
        features: Mapping[str, bool],
        taints: Sequence[NodeTaint],
    ) -> bytes: ...


class KubectlRunner(Protocol):
    def apply(self, manifest: bytes, kubeconfig: dict) -> str: ...

    def delete(self, manifest: bytes, kubeconfig: dict) -> str: ...
