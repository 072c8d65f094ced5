"""Reads the agent images actually running in a downstream cluster."""

from kubernetes.client import AppsV1Api
from kubernetes.client.exceptions import ApiException

from cluster_agent.cache import AgentImages
from cluster_agent.collaborators import ClusterConnectionManager
from cluster_agent.exceptions import KubernetesError
from cluster_agent.logging_config import get_logger

logger = get_logger(__name__)

AGENT_NAMESPACE = "cattle-system"
CLUSTER_AGENT_DEPLOYMENT = "cattle-cluster-agent"
CLUSTER_AGENT_CONTAINER = "cluster-register"
NODE_AGENT_DAEMONSET = "cattle-node-agent"
NODE_AGENT_CONTAINER = "agent"


def _container_image(workload, container_name: str) -> str:
    containers = workload.spec.template.spec.containers or []
    for container in containers:
        if container.name == container_name:
            return container.image or ""
    return ""


class AgentImageReader:
    """Looks up the node-agent DaemonSet and cluster-agent Deployment images.

    A missing workload reads as "" rather than an error.
    """

    def __init__(self, connections: ClusterConnectionManager):
        self.connections = connections

    def _apps(self, cluster_name: str) -> AppsV1Api:
        return AppsV1Api(self.connections.api_client(cluster_name))

    def get_cluster_agent_image(self, cluster_name: str) -> str:
        try:
            deployment = self._apps(cluster_name).read_namespaced_deployment(
                CLUSTER_AGENT_DEPLOYMENT, AGENT_NAMESPACE
            )
        except ApiException as e:
            if e.status == 404:
                return ""
            raise KubernetesError(
                f"Failed to read {AGENT_NAMESPACE}/{CLUSTER_AGENT_DEPLOYMENT} in [{cluster_name}]",
                str(e.reason),
            ) from e
        return _container_image(deployment, CLUSTER_AGENT_CONTAINER)

    def get_node_agent_image(self, cluster_name: str) -> str:
        try:
            daemonset = self._apps(cluster_name).read_namespaced_daemon_set(
                NODE_AGENT_DAEMONSET, AGENT_NAMESPACE
            )
        except ApiException as e:
            if e.status == 404:
                return ""
            raise KubernetesError(
                f"Failed to read {AGENT_NAMESPACE}/{NODE_AGENT_DAEMONSET} in [{cluster_name}]",
                str(e.reason),
            ) from e
        return _container_image(daemonset, NODE_AGENT_CONTAINER)

    def get_agent_images(self, cluster_name: str) -> AgentImages:
        images = AgentImages(
            node_agent=self.get_node_agent_image(cluster_name),
            cluster_agent=self.get_cluster_agent_image(cluster_name),
        )
        logger.debug(f"Observed agent images for [{cluster_name}]: {images}")
        return images
