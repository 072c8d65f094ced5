"""Per-cluster reconcile loop for the downstream agent.

A pass walks the cluster through its conditions in order:

1. Provisioned: set elsewhere; nothing happens until it is true
2. SystemAccountCreated: the agent's system identity is created once
3. AgentDeployed: the agent manifest is applied when a redeploy is needed

Passes operate on a private copy of the cluster. ``reconcile`` returns the
copy and whether it changed; ``sync`` additionally writes it back.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from cluster_agent import cache, conditions
from cluster_agent.apply import ApplyExecutor, DesiredAgentState, RetryPolicy
from cluster_agent.cache import AgentImages, KeyedCache
from cluster_agent.collaborators import (
    ClusterConnectionManager,
    ClusterUpdater,
    KubectlRunner,
    ManifestRenderer,
    NodeLister,
    SystemAccountManager,
    TokenManager,
    WorkQueue,
)
from cluster_agent.decision import redeploy_agent
from cluster_agent.exceptions import (
    ClusterAgentError,
    CredentialError,
    PersistenceError,
    ServerNotReadyError,
)
from cluster_agent.images import FIXED_IMAGE, desired_agent_image, desired_auth_image
from cluster_agent.logging_config import get_logger
from cluster_agent.models.cluster import (
    AGENT_FORCE_DEPLOY_ANNOTATION,
    NETWORK_POLICY_ANNOTATION,
    ConditionType,
    ManagedCluster,
)
from cluster_agent.models.node import Node, NodeTaint
from cluster_agent.remote import AgentImageReader
from cluster_agent.settings import DeploySettings
from cluster_agent.taints import collect_control_plane_taints

logger = get_logger(__name__)

AUTH_STRATEGY_X509 = "x509"
AUTH_STRATEGY_X509_WEBHOOK = "x509|webhook"


@dataclass
class SyncResult:
    """Outcome of one reconcile pass."""

    cluster: ManagedCluster | None
    changed: bool = False
    error: Exception | None = None
    requeued: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


def commit_agent_state(cluster: ManagedCluster, desired: DesiredAgentState) -> None:
    """Record a successful deploy on the cluster copy."""
    cluster.status.agent_image = desired.agent_image
    cluster.status.agent_features = dict(desired.features)
    if cluster.spec.desired_agent_image == FIXED_IMAGE:
        cluster.spec.desired_agent_image = desired.agent_image
    cluster.status.auth_image = desired.auth_image
    if cluster.spec.desired_auth_image == FIXED_IMAGE:
        cluster.spec.desired_auth_image = desired.auth_image
    if cluster.annotations.get(AGENT_FORCE_DEPLOY_ANNOTATION) == "true":
        cluster.annotations[AGENT_FORCE_DEPLOY_ANNOTATION] = "false"
    cluster.status.applied_agent_env_vars = [
        env.model_copy() for env in cluster.spec.agent_env_vars
    ]


def set_network_policy_default(cluster: ManagedCluster) -> None:
    """Enable network policy for canal clusters that never chose a value."""
    if cluster.spec.enable_network_policy is not None:
        return
    rke_config = cluster.spec.rke_config
    if rke_config is not None and rke_config.network.plugin == "canal":
        cluster.spec.enable_network_policy = True
        cluster.annotations[NETWORK_POLICY_ANNOTATION] = "true"


class ClusterDeployController:
    """Keeps each managed cluster's agent deployed and up to date."""

    def __init__(
        self,
        settings: DeploySettings,
        nodes: NodeLister,
        clusters: ClusterUpdater,
        system_accounts: SystemAccountManager,
        tokens: TokenManager,
        connections: ClusterConnectionManager,
        renderer: ManifestRenderer,
        kubectl: KubectlRunner,
        queue: WorkQueue,
        image_cache: KeyedCache[AgentImages] | None = None,
        taint_cache: KeyedCache[tuple[NodeTaint, ...]] | None = None,
        image_reader: AgentImageReader | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.settings = settings
        self.nodes = nodes
        self.clusters = clusters
        self.system_accounts = system_accounts
        self.tokens = tokens
        self.connections = connections
        self.image_cache = image_cache if image_cache is not None else cache.agent_images
        self.taint_cache = (
            taint_cache if taint_cache is not None else cache.control_plane_taints
        )
        self.image_reader = image_reader or AgentImageReader(connections)
        self.executor = ApplyExecutor(
            settings,
            renderer,
            kubectl,
            system_accounts,
            queue,
            retry_policy=RetryPolicy.from_settings(settings),
            sleep=sleep,
        )

    def sync(self, key: str, cluster: ManagedCluster | None) -> SyncResult:
        """Reconcile ``cluster`` and write it back if it changed.

        Raises:
            ClusterAgentError: The deployment error if there was one, else the
                persistence error. A not-ready server URL is not raised; the
                cluster has already been re-queued.
        """
        result = self.reconcile(key, cluster)

        persist_error: PersistenceError | None = None
        if result.cluster is not None and result.changed:
            logger.debug(f"Cluster [{key}] changed, updating")
            try:
                result.cluster = self.clusters.update(result.cluster)
            except PersistenceError as e:
                persist_error = e
            except Exception as e:
                persist_error = PersistenceError(f"Failed to update cluster [{key}]", str(e))
                persist_error.__cause__ = e

        if result.error is not None:
            if persist_error is not None:
                logger.error(f"Failed to update cluster [{key}] after failed deploy: {persist_error}")
            raise result.error
        if persist_error is not None:
            raise persist_error
        return result

    def reconcile(self, key: str, cluster: ManagedCluster | None) -> SyncResult:
        """Run one pass on a copy of ``cluster`` without persisting it."""
        logger.debug(f"Reconcile called for [{key}]")
        if cluster is None or cluster.deletion_timestamp is not None:
            self.system_accounts.remove_system_account(key)
            self.image_cache.clear(key)
            self.taint_cache.clear(key)
            return SyncResult(cluster=None)

        working = cluster.model_copy(deep=True)
        if working.is_rke and working.spec.rke_config is not None:
            strategy = (
                AUTH_STRATEGY_X509_WEBHOOK
                if working.spec.local_cluster_auth_endpoint.enabled
                else AUTH_STRATEGY_X509
            )
            working.spec.rke_config.authentication.strategy = strategy

        result = SyncResult(cluster=working)
        try:
            self._do_sync(working)
        except ServerNotReadyError as e:
            logger.info(f"Agent deploy for [{key}] postponed: {e.message}")
            result.requeued = True
        except Exception as e:
            result.error = e

        result.changed = working != cluster
        return result

    def _do_sync(self, cluster: ManagedCluster) -> None:
        if not cluster.is_condition_true(ConditionType.PROVISIONED):
            logger.debug(f"Cluster [{cluster.name}] is not yet provisioned")
            return

        nodes = self.nodes.list_nodes(cluster.name)
        logger.debug(f"Found {len(nodes)} nodes for cluster [{cluster.name}]")
        if not nodes:
            return

        def _create_system_account() -> None:
            logger.debug(f"Creating system account for cluster [{cluster.name}]")
            self.system_accounts.create_system_account(cluster)

        conditions.do_until_true(
            cluster, ConditionType.SYSTEM_ACCOUNT_CREATED, _create_system_account
        )

        if cluster.status.agent_image and self.image_cache.get(cluster.name) is None:
            self.cache_agent_images(cluster.name)

        if self.taint_cache.get(cluster.name) is None:
            self.taint_cache.set(cluster.name, collect_control_plane_taints(nodes))

        self.deploy_agent(cluster, nodes)
        set_network_policy_default(cluster)

    def cache_agent_images(self, cluster_name: str) -> AgentImages:
        images = self.image_reader.get_agent_images(cluster_name)
        self.image_cache.set(cluster_name, images)
        return images

    def desired_state(self, cluster: ManagedCluster, nodes: Sequence[Node]) -> DesiredAgentState:
        """Derive the agent state ``cluster`` should be running."""
        desired = DesiredAgentState(
            agent_image=desired_agent_image(cluster, self.settings),
            auth_image=desired_auth_image(cluster, self.settings),
            features=dict(self.settings.agent_features),
            taints=tuple(collect_control_plane_taints(nodes)),
        )
        logger.debug(f"Desired agent state for [{cluster.name}]: {desired}")
        return desired

    def deploy_agent(self, cluster: ManagedCluster, nodes: Sequence[Node]) -> bool:
        """Deploy the agent if needed.

        Returns:
            True if the agent manifest was applied
        """
        if cluster.spec.internal:
            return False

        desired = self.desired_state(cluster, nodes)
        if not redeploy_agent(
            cluster,
            desired.agent_image,
            desired.auth_image,
            desired.features,
            desired.taints,
            self.image_cache,
            self.taint_cache,
        ):
            return False

        kubeconfig = self.get_kubeconfig(cluster)
        self.executor.deploy(cluster, desired, kubeconfig)

        commit_agent_state(cluster, desired)
        self.cache_agent_images(cluster.name)
        return True

    def get_kubeconfig(self, cluster: ManagedCluster) -> dict:
        """Build a kubeconfig for the cluster authenticated as its system user.

        Raises:
            CredentialError: If the system user or its token cannot be obtained
        """
        try:
            user = self.system_accounts.get_system_user(cluster.name)
            token = self.tokens.ensure_token(
                f"agent-{user}", "token for agent deployment", "agent", user
            )
            return self.connections.kubeconfig(cluster.name, token)
        except ClusterAgentError:
            raise
        except Exception as e:
            raise CredentialError(
                f"Failed to build kubeconfig for cluster [{cluster.name}]", str(e)
            ) from e
