"""Pushes the agent manifest to a downstream cluster and cleans up after it."""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from cluster_agent import conditions
from cluster_agent.collaborators import (
    KubectlRunner,
    ManifestRenderer,
    SystemAccountManager,
    WorkQueue,
)
from cluster_agent.exceptions import (
    ApplyError,
    ClusterAgentError,
    CredentialError,
    DeleteError,
    KubectlError,
    RenderError,
    ServerNotReadyError,
)
from cluster_agent.kubectl import format_apply_output, is_not_found
from cluster_agent.logging_config import get_logger
from cluster_agent.models.cluster import ConditionType, ManagedCluster
from cluster_agent.models.node import NodeTaint
from cluster_agent.remote import NODE_AGENT_DAEMONSET
from cluster_agent.settings import DeploySettings
from cluster_agent.templates import (
    AUTH_DAEMONSET,
    AUTH_DAEMONSET_NAME,
    NODE_AGENT_DAEMONSET_MANIFEST,
)

logger = get_logger(__name__)

DAEMONSET_KIND = "daemonsets.apps"


@dataclass(frozen=True)
class DesiredAgentState:
    """Everything the agent manifest is rendered from."""

    agent_image: str
    auth_image: str
    features: Mapping[str, bool] = field(default_factory=dict)
    taints: Sequence[NodeTaint] = ()


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay bounded retry for manifest apply."""

    attempts: int = 5
    delay_seconds: float = 5.0

    @classmethod
    def from_settings(cls, settings: DeploySettings) -> "RetryPolicy":
        return cls(
            attempts=settings.apply_attempts, delay_seconds=settings.apply_retry_delay_seconds
        )


class ApplyExecutor:
    """Renders the agent manifest, applies it with retries and removes legacy workloads."""

    def __init__(
        self,
        settings: DeploySettings,
        renderer: ManifestRenderer,
        kubectl: KubectlRunner,
        system_accounts: SystemAccountManager,
        queue: WorkQueue,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        """Initialize the executor.

        Args:
            settings: Reconciler settings (server URL, recheck delay)
            renderer: Renders the agent manifest
            kubectl: Applies and deletes manifests downstream
            system_accounts: Issues the cluster token embedded in the manifest
            queue: Used to re-check a cluster once the server URL is set
            retry_policy: Apply attempts and delay; defaults from settings
            sleep: Sleep function used between attempts (tests pass a no-op)
        """
        self.settings = settings
        self.renderer = renderer
        self.kubectl = kubectl
        self.system_accounts = system_accounts
        self.queue = queue
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep

    def render(self, cluster: ManagedCluster, desired: DesiredAgentState) -> bytes:
        """Render the agent manifest for ``cluster``.

        Raises:
            ServerNotReadyError: If the server URL is not configured yet; the
                cluster has been re-queued
            CredentialError: If the cluster token cannot be issued
            RenderError: If rendering fails
        """
        logger.debug(
            f"Rendering agent manifest for [{cluster.name}]: agent={desired.agent_image!r}, "
            f"auth={desired.auth_image!r}, features={dict(desired.features)}, "
            f"taints={[str(t) for t in desired.taints]}"
        )
        try:
            token = self.system_accounts.get_or_create_system_cluster_token(cluster.name)
        except ClusterAgentError:
            raise
        except Exception as e:
            raise CredentialError(
                f"Failed to get system cluster token for [{cluster.name}]", str(e)
            ) from e

        server_url = self.settings.server_url
        if not server_url:
            self.queue.enqueue_after(cluster.name, self.settings.server_url_recheck_seconds)
            raise ServerNotReadyError("waiting for server-url setting to be set")

        try:
            return self.renderer.render(
                desired.agent_image,
                desired.auth_image,
                cluster.name,
                token,
                server_url,
                cluster.spec.windows_preferred_cluster,
                cluster,
                desired.features,
                desired.taints,
            )
        except ClusterAgentError:
            raise
        except Exception as e:
            raise RenderError(f"Failed to render agent manifest for [{cluster.name}]", str(e)) from e

    def apply(self, cluster_name: str, manifest: bytes, kubeconfig: dict) -> str:
        """Apply ``manifest``, retrying on kubectl failures.

        The first attempts routinely fail while the freshly created agent
        namespace has no privileges yet, so failures are only escalated once
        every attempt is used.

        Returns:
            kubectl output of the successful attempt

        Raises:
            ApplyError: With the last error and redacted output after the final attempt
        """
        policy = self.retry_policy
        retrying_kwargs = {}
        if self._sleep is not None:
            retrying_kwargs["sleep"] = self._sleep
        retrying = Retrying(
            stop=stop_after_attempt(policy.attempts),
            wait=wait_fixed(policy.delay_seconds),
            retry=retry_if_exception_type(KubectlError),
            before_sleep=lambda state: _log_failed_attempt(cluster_name, state),
            **retrying_kwargs,
        )

        try:
            for attempt in retrying:
                with attempt:
                    n = attempt.retry_state.attempt_number
                    logger.debug(f"Applying agent manifest for [{cluster_name}], try #{n}")
                    output = self.kubectl.apply(manifest, kubeconfig)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            output = getattr(last_error, "output", "")
            raise ApplyError(
                "Error while applying agent YAML, it will be retried automatically",
                error=last_error,
                output=format_apply_output(output),
            ) from last_error

        logger.debug(f"Applied agent manifest for [{cluster_name}], try #{n}")
        return output

    def delete_companion(
        self, cluster_name: str, manifest: str, name: str, kubeconfig: dict
    ) -> str:
        """Delete a companion resource, treating "not found" as success."""
        try:
            return self.kubectl.delete(manifest.encode(), kubeconfig)
        except KubectlError as e:
            logger.debug(
                f"Output from kubectl delete {name} DaemonSet: {format_apply_output(e.output)}"
            )
            if not is_not_found(e.output, DAEMONSET_KIND, name):
                raise DeleteError(
                    "kubectl delete failed", error=e, output=format_apply_output(e.output)
                ) from e
            logger.debug(f"Ignored not found error deleting {name} DaemonSet in [{cluster_name}]")
            return e.output

    def remove_companions(self, cluster: ManagedCluster, kubeconfig: dict) -> str | None:
        """Remove the legacy workloads ``cluster`` no longer runs.

        The kube-api-auth DaemonSet is removed once the auth endpoint has
        been disabled; the per-node agent DaemonSet only exists on RKE
        clusters and is removed everywhere else.

        Returns:
            Output of the last delete that ran, or None if none ran
        """
        output = None
        if (
            not cluster.spec.local_cluster_auth_endpoint.enabled
            and cluster.status.applied_spec.local_cluster_auth_endpoint.enabled
            and cluster.status.auth_image
        ):
            output = self.delete_companion(
                cluster.name, AUTH_DAEMONSET, AUTH_DAEMONSET_NAME, kubeconfig
            )

        if not cluster.is_rke:
            output = self.delete_companion(
                cluster.name, NODE_AGENT_DAEMONSET_MANIFEST, NODE_AGENT_DAEMONSET, kubeconfig
            )
        return output

    def deploy(self, cluster: ManagedCluster, desired: DesiredAgentState, kubeconfig: dict) -> None:
        """Render, apply and clean up under the AgentDeployed condition.

        The condition ends up True on success; on any error it is False with
        the error as message, and the error is raised.
        """

        def _deploy() -> None:
            manifest = self.render(cluster, desired)
            output = self.apply(cluster.name, manifest, kubeconfig)
            conditions.set_message(
                cluster, ConditionType.AGENT_DEPLOYED, format_apply_output(output)
            )
            delete_output = self.remove_companions(cluster, kubeconfig)
            if delete_output is not None:
                conditions.set_message(
                    cluster, ConditionType.AGENT_DEPLOYED, format_apply_output(delete_output)
                )

        conditions.do(cluster, ConditionType.AGENT_DEPLOYED, _deploy)


def _log_failed_attempt(cluster_name: str, state: RetryCallState) -> None:
    error = state.outcome.exception()
    logger.debug(
        f"Error applying agent manifest for [{cluster_name}], try #{state.attempt_number}: "
        f"{error.message}; {format_apply_output(error.output)}"
    )
