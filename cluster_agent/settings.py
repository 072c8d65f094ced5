"""Reconciler settings with validation.

Settings can be loaded from a YAML file or from ``CLUSTER_AGENT_*``
environment variables. Invalid values raise ConfigurationError at load
time rather than failing in the middle of a reconcile pass.
"""

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from cluster_agent.exceptions import ConfigurationError

DEFAULT_AGENT_IMAGE = "rancher/rancher-agent:v2.7.0"
DEFAULT_AUTH_IMAGE = "rancher/kube-api-auth:v0.1.8"

# The first applies after namespace creation usually fail while privileges propagate
DEFAULT_APPLY_ATTEMPTS = 5
DEFAULT_APPLY_RETRY_DELAY_SECONDS = 5.0
DEFAULT_SERVER_URL_RECHECK_SECONDS = 1.0

ENV_PREFIX = "CLUSTER_AGENT_"


class DeploySettings(BaseModel):
    """Settings consumed by the agent deployment reconciler."""

    model_config = {"extra": "ignore"}

    server_url: str = ""
    agent_image: str = DEFAULT_AGENT_IMAGE
    auth_image: str = DEFAULT_AUTH_IMAGE
    system_default_registry: str = ""
    agent_features: dict[str, bool] = Field(default_factory=dict)
    apply_attempts: int = DEFAULT_APPLY_ATTEMPTS
    apply_retry_delay_seconds: float = DEFAULT_APPLY_RETRY_DELAY_SECONDS
    server_url_recheck_seconds: float = DEFAULT_SERVER_URL_RECHECK_SECONDS
    kubectl_binary: str = "kubectl"

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        """Validate server_url is empty (not configured yet) or an http(s) URL."""
        if v and not re.match(r"^https?://[^\s/]+", v):
            raise ValueError(f"server_url '{v}' must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("agent_image", "auth_image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        """Validate default images are set."""
        if not v:
            raise ValueError("image cannot be empty")
        return v

    @field_validator("apply_attempts")
    @classmethod
    def validate_apply_attempts(cls, v: int) -> int:
        """Validate at least one apply attempt is made."""
        if v < 1:
            raise ValueError("apply_attempts must be at least 1")
        return v

    @field_validator("apply_retry_delay_seconds", "server_url_recheck_seconds")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """Validate delays are not negative."""
        if v < 0:
            raise ValueError("delay cannot be negative")
        return v

    def save(self, path: str | Path) -> None:
        """Save settings to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)

    @classmethod
    def load(cls, path: str | Path) -> "DeploySettings":
        """Load settings from YAML file."""
        import yaml

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Failed to read settings file: {path}", str(e)) from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Settings file is not valid YAML: {path}", str(e)) from e
        return cls._validate(data)

    @classmethod
    def from_env(cls) -> "DeploySettings":
        """Load settings from environment variables.

        Environment Variables:
            CLUSTER_AGENT_SERVER_URL: URL the agent connects back to
            CLUSTER_AGENT_AGENT_IMAGE: Default agent image
            CLUSTER_AGENT_AUTH_IMAGE: Default kube-api-auth image
            CLUSTER_AGENT_SYSTEM_DEFAULT_REGISTRY: Registry prefixed to default images
            CLUSTER_AGENT_AGENT_FEATURES: Comma-separated name=true|false pairs
            CLUSTER_AGENT_APPLY_ATTEMPTS: Apply attempts before giving up (default: 5)
            CLUSTER_AGENT_APPLY_RETRY_DELAY: Seconds between attempts (default: 5)
            CLUSTER_AGENT_SERVER_URL_RECHECK: Requeue delay while server URL is unset
            CLUSTER_AGENT_KUBECTL: kubectl binary (default: kubectl)
        """
        env_keys = {
            "server_url": "SERVER_URL",
            "agent_image": "AGENT_IMAGE",
            "auth_image": "AUTH_IMAGE",
            "system_default_registry": "SYSTEM_DEFAULT_REGISTRY",
            "apply_attempts": "APPLY_ATTEMPTS",
            "apply_retry_delay_seconds": "APPLY_RETRY_DELAY",
            "server_url_recheck_seconds": "SERVER_URL_RECHECK",
            "kubectl_binary": "KUBECTL",
        }
        data: dict = {}
        for field_name, suffix in env_keys.items():
            value = os.environ.get(ENV_PREFIX + suffix)
            if value is not None:
                data[field_name] = value

        features = os.environ.get(ENV_PREFIX + "AGENT_FEATURES")
        if features:
            data["agent_features"] = parse_features(features)

        return cls._validate(data)

    @classmethod
    def _validate(cls, data: dict) -> "DeploySettings":
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError("Settings validation failed", str(e)) from e


def parse_features(value: str) -> dict[str, bool]:
    """Parse ``name=true,other=false`` into a feature map."""
    features: dict[str, bool] = {}
    for pair in value.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ConfigurationError(
                f"Invalid feature format: '{pair}'. Expected 'name=true' or 'name=false'"
            )
        name, flag = pair.split("=", 1)
        flag = flag.strip().lower()
        if flag not in ("true", "false"):
            raise ConfigurationError(f"Feature '{name.strip()}' must be true or false: {flag}")
        features[name.strip()] = flag == "true"
    return features
