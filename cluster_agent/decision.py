"""Decides whether a cluster's agent must be redeployed.

The decision compares the desired agent state against what the cluster
status records and what the caches last observed downstream. Cache entries
proven stale by a mismatch are cleared so the next pass re-reads them.
"""

from collections.abc import Mapping, Sequence

from cluster_agent.cache import AgentImages, KeyedCache
from cluster_agent.images import get_private_repo
from cluster_agent.logging_config import get_logger
from cluster_agent.models.cluster import ConditionType, ManagedCluster, PrivateRegistry
from cluster_agent.models.node import NodeTaint
from cluster_agent.taints import get_to_diff_taints

logger = get_logger(__name__)


def agent_features_changed(desired: Mapping[str, bool], actual: Mapping[str, bool]) -> bool:
    """Compare feature maps treating a missing key as False.

    Only a feature set to True on one side is detected as a change, so a
    feature that defaults to True cannot be turned off by omitting it; it
    has to be set to False explicitly. Adding a new default-False feature
    therefore does not redeploy any agent.
    """
    for key, value in desired.items():
        if actual.get(key, False) != value:
            return True

    for key, value in actual.items():
        if desired.get(key, False) != value:
            return True

    return False


def private_repo_changed(
    desired: PrivateRegistry | None, applied: PrivateRegistry | None
) -> bool:
    """True if the primary private registry differs from the last applied one."""
    if desired is None and applied is None:
        return False
    if desired is None or applied is None:
        return True
    return desired != applied


def applied_private_repo(cluster: ManagedCluster) -> PrivateRegistry | None:
    applied_config = cluster.status.applied_spec.rke_config
    if applied_config is None or not applied_config.private_registries:
        return None
    return applied_config.private_registries[0]


def redeploy_agent(
    cluster: ManagedCluster,
    desired_agent: str,
    desired_auth: str,
    desired_features: Mapping[str, bool],
    desired_taints: Sequence[NodeTaint],
    image_cache: KeyedCache[AgentImages],
    taint_cache: KeyedCache[tuple[NodeTaint, ...]],
) -> bool:
    """Return True if the agent of ``cluster`` must be (re)deployed.

    Args:
        cluster: The cluster being reconciled (not modified)
        desired_agent: Agent image that should be running
        desired_auth: Auth image that should be running ("" when disabled)
        desired_features: Feature flags the agent should run with
        desired_taints: Control-plane taints the agent must tolerate
        image_cache: Observed agent images, cleared on mismatch
        taint_cache: Observed control-plane taints, cleared on mismatch
    """
    logger.debug(f"Evaluating agent redeploy for [{cluster.name}]")
    if not cluster.is_condition_true(ConditionType.AGENT_DEPLOYED):
        logger.debug(f"Agent never deployed for [{cluster.name}], deploying")
        return True

    force_deploy = cluster.force_deploy
    image_change = (
        cluster.status.agent_image != desired_agent or cluster.status.auth_image != desired_auth
    )
    features_change = agent_features_changed(desired_features, cluster.status.agent_features)
    repo_change = False
    if cluster.spec.rke_config is not None and cluster.status.applied_spec.rke_config is not None:
        repo_change = private_repo_changed(
            get_private_repo(cluster), applied_private_repo(cluster)
        )

    if force_deploy or image_change or repo_change or features_change:
        logger.info(
            f"Agent redeploy needed for [{cluster.name}]: force_deploy={force_deploy}, "
            f"agent/auth image changed={image_change}, private repo changed={repo_change}, "
            f"agent features changed={features_change}"
        )
        logger.debug(
            f"[{cluster.name}] agent image: {cluster.status.agent_image!r} -> {desired_agent!r}"
        )
        logger.debug(
            f"[{cluster.name}] auth image: {cluster.status.auth_image!r} -> {desired_auth!r}"
        )
        logger.debug(
            f"[{cluster.name}] agent features: {cluster.status.agent_features} -> "
            f"{dict(desired_features)}"
        )
        return True

    observed = image_cache.get(cluster.name) or AgentImages("", "")
    node_agent_mismatch = cluster.is_rke and cluster.status.agent_image != observed.node_agent
    if node_agent_mismatch or cluster.status.agent_image != observed.cluster_agent:
        logger.info(
            f"Agent redeploy needed for [{cluster.name}] due to downstream agent image mismatch: "
            f"observed node agent {observed.node_agent!r}, cluster agent "
            f"{observed.cluster_agent!r}, will be {cluster.status.agent_image!r}"
        )
        image_cache.clear(cluster.name)
        return True

    current_taints = taint_cache.get(cluster.name) or ()
    to_add, to_delete = get_to_diff_taints(current_taints, desired_taints)
    if to_add or to_delete:
        logger.info(
            f"Agent redeploy needed for [{cluster.name}] due to toleration mismatch: "
            f"was {[str(t) for t in current_taints]}, will be {[str(t) for t in desired_taints]}"
        )
        taint_cache.clear(cluster.name)
        return True

    if cluster.spec.agent_env_vars != cluster.status.applied_agent_env_vars:
        logger.info(
            f"Agent redeploy needed for [{cluster.name}] due to agent env vars mismatch: "
            f"was {cluster.status.applied_agent_env_vars}, will be {cluster.spec.agent_env_vars}"
        )
        return True

    logger.debug(f"Agent for [{cluster.name}] is up to date")
    return False
