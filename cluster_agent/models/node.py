"""Data models for downstream cluster nodes and their scheduling taints."""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONTROL_PLANE_LABELS = {
    "node-role.kubernetes.io/master": "true",
    "node-role.kubernetes.io/controlplane": "true",
    "node-role.kubernetes.io/control-plane": "true",
}


class NodeTaint(BaseModel):
    """Kubernetes node taint.

    Taints are immutable and hashable so they can be compared as sets.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: str = ""
    effect: str  # NoSchedule, PreferNoSchedule, NoExecute

    @field_validator("effect")
    @classmethod
    def validate_effect(cls, v: str) -> str:
        """Validate taint effect is one of the allowed values."""
        allowed = ["NoSchedule", "PreferNoSchedule", "NoExecute"]
        if v not in allowed:
            raise ValueError(f"effect must be one of {allowed}, got {v}")
        return v

    def __str__(self) -> str:
        return f"{self.key}={self.value}:{self.effect}"

    @classmethod
    def parse(cls, spec: str) -> "NodeTaint":
        """Parse a taint from ``key=value:effect`` (value optional)."""
        if ":" not in spec:
            raise ValueError(f"Invalid taint format: '{spec}'. Expected 'key=value:effect'")
        key_value, effect = spec.rsplit(":", 1)
        key, _, value = key_value.partition("=")
        return cls(key=key.strip(), value=value.strip(), effect=effect.strip())


class Node(BaseModel):
    """A node registered for a managed cluster."""

    name: str
    cluster_name: str
    node_labels: dict[str, str] = Field(default_factory=dict)
    node_taints: list[NodeTaint] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate node name follows DNS naming conventions."""
        if not v:
            raise ValueError("name cannot be empty")
        if len(v) > 253:
            raise ValueError("name cannot exceed 253 characters")
        # RFC 1123 subdomain validation
        name_pattern = re.compile(
            r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?(\.[a-z0-9]([-a-z0-9]*[a-z0-9])?)*$", re.IGNORECASE
        )
        if not name_pattern.match(v):
            raise ValueError(
                f"name '{v}' must contain only alphanumeric characters, "
                "hyphens, and dots, and cannot start or end with a hyphen"
            )
        return v

    @field_validator("cluster_name")
    @classmethod
    def validate_cluster_name(cls, v: str) -> str:
        """Validate cluster_name is not empty."""
        if not v:
            raise ValueError("cluster_name cannot be empty")
        return v

    @property
    def is_control_plane(self) -> bool:
        """True if the node carries any recognised control-plane role label."""
        for label_key, label_value in CONTROL_PLANE_LABELS.items():
            if self.node_labels.get(label_key) == label_value:
                return True
        return False

    def to_store_dict(self) -> dict:
        """Convert to the cluster store format."""
        result: dict = {"cluster_name": self.cluster_name}

        if self.node_labels:
            result["node_labels"] = dict(self.node_labels)
        if self.node_taints:
            result["node_taints"] = [
                {"key": t.key, "value": t.value, "effect": t.effect} for t in self.node_taints
            ]

        return result

    @classmethod
    def from_store_dict(cls, name: str, data: dict) -> "Node":
        """Parse from the cluster store format."""
        taints = []
        if "node_taints" in data:
            taints = [NodeTaint(**t) for t in data["node_taints"]]

        return cls(
            name=name,
            cluster_name=data["cluster_name"],
            node_labels=dict(data.get("node_labels") or {}),
            node_taints=taints,
        )
