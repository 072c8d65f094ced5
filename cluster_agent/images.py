"""Desired image resolution for the agent and auth workloads."""

from cluster_agent.models.cluster import ManagedCluster, PrivateRegistry
from cluster_agent.settings import DeploySettings

# Placeholder meaning "use the current default and pin it after deploy"
FIXED_IMAGE = "fixed"


def get_private_repo(cluster: ManagedCluster) -> PrivateRegistry | None:
    """Return the cluster's primary private registry, if it declares one.

    A registry flagged ``is_default`` wins; otherwise the first one is used.
    """
    rke_config = cluster.spec.rke_config
    if rke_config is None or not rke_config.private_registries:
        return None
    for registry in rke_config.private_registries:
        if registry.is_default:
            return registry
    return rke_config.private_registries[0]


def resolve_with_cluster(image: str, cluster: ManagedCluster, settings: DeploySettings) -> str:
    """Prefix ``image`` with the registry the cluster pulls from.

    The cluster's private registry takes precedence over the system default
    registry. Images already carrying the registry prefix are returned as is.
    """
    registry = get_private_repo(cluster)
    registry_url = registry.url if registry is not None else settings.system_default_registry
    registry_url = registry_url.rstrip("/")
    if not registry_url or image.startswith(registry_url + "/"):
        return image
    return f"{registry_url}/{image}"


def desired_agent_image(cluster: ManagedCluster, settings: DeploySettings) -> str:
    image = cluster.spec.agent_image_override or cluster.spec.desired_agent_image
    if not image or image == FIXED_IMAGE:
        image = resolve_with_cluster(settings.agent_image, cluster, settings)
    return image


def desired_auth_image(cluster: ManagedCluster, settings: DeploySettings) -> str:
    """Auth image to deploy, or "" when the auth endpoint is disabled."""
    if not cluster.spec.local_cluster_auth_endpoint.enabled:
        return ""
    image = cluster.spec.desired_auth_image
    if not image or image == FIXED_IMAGE:
        image = resolve_with_cluster(settings.auth_image, cluster, settings)
    return image
