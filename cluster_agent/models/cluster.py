"""Data models for managed clusters, their spec, status and conditions."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

AGENT_FORCE_DEPLOY_ANNOTATION = "io.cattle.agent.force.deploy"
NETWORK_POLICY_ANNOTATION = "networking.management.cattle.io/enable-network-policy"


class ClusterDriver(str, Enum):
    """Known cluster drivers.

    Only RKE clusters run the per-node agent DaemonSet.
    """

    RKE = "rancherKubernetesEngine"
    IMPORTED = "imported"
    K3S = "k3s"
    RKE2 = "rke2"


class ConditionType(str, Enum):
    """Reconciliation milestones, evaluated in this order."""

    PROVISIONED = "Provisioned"
    SYSTEM_ACCOUNT_CREATED = "SystemAccountCreated"
    AGENT_DEPLOYED = "AgentDeployed"


class ConditionState(str, Enum):
    """Two-state view of a condition."""

    PENDING = "Pending"
    SATISFIED = "Satisfied"


class EnvVar(BaseModel):
    """Environment variable override passed to the agent."""

    name: str
    value: str = ""


class PrivateRegistry(BaseModel):
    """Private image registry configuration."""

    url: str
    user: str = ""
    password: str = ""
    is_default: bool = False


class NetworkConfig(BaseModel):
    """Cluster network configuration."""

    plugin: str = ""


class AuthenticationConfig(BaseModel):
    """Kubernetes API authentication configuration."""

    strategy: str = ""


class RKEConfig(BaseModel):
    """Configuration for clusters whose nodes are programmed individually."""

    private_registries: list[PrivateRegistry] = Field(default_factory=list)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    authentication: AuthenticationConfig = Field(default_factory=AuthenticationConfig)


class LocalClusterAuthEndpoint(BaseModel):
    """Toggle for the auxiliary authentication workload (kube-api-auth)."""

    enabled: bool = False


class ClusterSpec(BaseModel):
    """Desired cluster configuration."""

    internal: bool = False
    local_cluster_auth_endpoint: LocalClusterAuthEndpoint = Field(
        default_factory=LocalClusterAuthEndpoint
    )
    rke_config: RKEConfig | None = None
    agent_image_override: str = ""
    desired_agent_image: str = ""
    desired_auth_image: str = ""
    agent_env_vars: list[EnvVar] = Field(default_factory=list)
    windows_preferred_cluster: bool = False
    enable_network_policy: bool | None = None


class AppliedSpec(BaseModel):
    """The portion of the spec last applied to the downstream cluster."""

    local_cluster_auth_endpoint: LocalClusterAuthEndpoint = Field(
        default_factory=LocalClusterAuthEndpoint
    )
    rke_config: RKEConfig | None = None


class ClusterCondition(BaseModel):
    """A named boolean milestone with a diagnostic message."""

    type: ConditionType
    status: str = "Unknown"  # True, False, Unknown
    message: str = ""
    reason: str = ""
    last_update_time: datetime | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Validate status is True, False or Unknown."""
        allowed = ["True", "False", "Unknown"]
        if v not in allowed:
            raise ValueError(f"status must be one of {allowed}, got {v}")
        return v


class ClusterStatus(BaseModel):
    """Observed cluster state recorded by the reconciler."""

    driver: str = ""
    agent_image: str = ""
    auth_image: str = ""
    agent_features: dict[str, bool] = Field(default_factory=dict)
    applied_agent_env_vars: list[EnvVar] = Field(default_factory=list)
    applied_spec: AppliedSpec = Field(default_factory=AppliedSpec)
    conditions: list[ClusterCondition] = Field(default_factory=list)


class ManagedCluster(BaseModel):
    """A downstream cluster managed by the control plane."""

    name: str
    resource_version: int = 0
    annotations: dict[str, str] = Field(default_factory=dict)
    deletion_timestamp: datetime | None = None
    spec: ClusterSpec = Field(default_factory=ClusterSpec)
    status: ClusterStatus = Field(default_factory=ClusterStatus)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate cluster name is not empty."""
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @property
    def is_rke(self) -> bool:
        """True if the cluster uses the driver that programs nodes individually."""
        return self.status.driver == ClusterDriver.RKE.value

    @property
    def force_deploy(self) -> bool:
        """True if an operator requested an unconditional redeploy."""
        return self.annotations.get(AGENT_FORCE_DEPLOY_ANNOTATION) == "true"

    def get_condition(self, condition_type: ConditionType) -> ClusterCondition | None:
        """Return the condition of the given type, if recorded."""
        for condition in self.status.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def is_condition_true(self, condition_type: ConditionType) -> bool:
        condition = self.get_condition(condition_type)
        return condition is not None and condition.status == "True"

    def condition_state(self, condition_type: ConditionType) -> ConditionState:
        if self.is_condition_true(condition_type):
            return ConditionState.SATISFIED
        return ConditionState.PENDING

    def set_condition(
        self,
        condition_type: ConditionType,
        status: str,
        message: str | None = None,
        reason: str | None = None,
    ) -> ClusterCondition:
        """Create or update a condition.

        The update time only moves when the status actually changes, so an
        unchanged condition never makes the object look modified.
        """
        condition = self.get_condition(condition_type)
        if condition is None:
            condition = ClusterCondition(type=condition_type)
            self.status.conditions.append(condition)

        if condition.status != status:
            condition.status = status
            condition.last_update_time = datetime.now(UTC)
        if message is not None:
            condition.message = message
        if reason is not None:
            condition.reason = reason
        return condition

    def to_store_dict(self) -> dict:
        """Convert to the cluster store format."""
        return self.model_dump(mode="json", exclude={"name"})

    @classmethod
    def from_store_dict(cls, name: str, data: dict) -> "ManagedCluster":
        """Parse from the cluster store format."""
        return cls.model_validate({**data, "name": name})
