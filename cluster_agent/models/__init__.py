"""Data models for managed clusters and their nodes."""

from cluster_agent.models.cluster import (
    AGENT_FORCE_DEPLOY_ANNOTATION,
    NETWORK_POLICY_ANNOTATION,
    AppliedSpec,
    AuthenticationConfig,
    ClusterCondition,
    ClusterDriver,
    ClusterSpec,
    ClusterStatus,
    ConditionState,
    ConditionType,
    EnvVar,
    LocalClusterAuthEndpoint,
    ManagedCluster,
    NetworkConfig,
    PrivateRegistry,
    RKEConfig,
)
from cluster_agent.models.node import CONTROL_PLANE_LABELS, Node, NodeTaint

__all__ = [
    "AGENT_FORCE_DEPLOY_ANNOTATION",
    "CONTROL_PLANE_LABELS",
    "NETWORK_POLICY_ANNOTATION",
    "AppliedSpec",
    "AuthenticationConfig",
    "ClusterCondition",
    "ClusterDriver",
    "ClusterSpec",
    "ClusterStatus",
    "ConditionState",
    "ConditionType",
    "EnvVar",
    "LocalClusterAuthEndpoint",
    "ManagedCluster",
    "NetworkConfig",
    "Node",
    "NodeTaint",
    "PrivateRegistry",
    "RKEConfig",
]
