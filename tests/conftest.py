"""Pytest configuration and shared fixtures."""

from types import SimpleNamespace

import pytest
from hypothesis import Verbosity, settings

from cluster_agent.cache import AgentImages, ImageCache, TaintCache
from cluster_agent.deploy import ClusterDeployController
from cluster_agent.models.cluster import (
    ClusterDriver,
    ClusterStatus,
    ConditionType,
    ManagedCluster,
)
from cluster_agent.models.node import Node, NodeTaint
from cluster_agent.settings import DeploySettings

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal)
settings.register_profile("ci", max_examples=1000, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=10, verbosity=Verbosity.verbose)

# Load the default profile
settings.load_profile("default")

AGENT_IMAGE = "rancher/rancher-agent:v2.7.0"
CONTROL_PLANE_TAINT = NodeTaint(
    key="node-role.kubernetes.io/controlplane", value="true", effect="NoSchedule"
)


class FakeNodes:
    def __init__(self, nodes=None):
        self.nodes = list(nodes or [])
        self.error = None

    def list_nodes(self, cluster_name):
        if self.error is not None:
            raise self.error
        return [n for n in self.nodes if n.cluster_name == cluster_name]


class FakeClusters:
    def __init__(self):
        self.updated = []
        self.error = None

    def update(self, cluster):
        if self.error is not None:
            raise self.error
        self.updated.append(cluster)
        return cluster.model_copy(update={"resource_version": cluster.resource_version + 1})


class FakeQueue:
    def __init__(self):
        self.enqueued = []

    def enqueue_after(self, cluster_name, delay_seconds):
        self.enqueued.append((cluster_name, delay_seconds))


class FakeSystemAccounts:
    def __init__(self):
        self.created = []
        self.removed = []
        self.create_error = None
        self.token_error = None

    def create_system_account(self, cluster):
        if self.create_error is not None:
            raise self.create_error
        self.created.append(cluster.name)

    def remove_system_account(self, cluster_name):
        self.removed.append(cluster_name)

    def get_system_user(self, cluster_name):
        return f"system-{cluster_name}"

    def get_or_create_system_cluster_token(self, cluster_name):
        if self.token_error is not None:
            raise self.token_error
        return f"cluster-token-{cluster_name}"


class FakeTokens:
    def __init__(self):
        self.requests = []

    def ensure_token(self, token_name, description, kind, user_name):
        self.requests.append((token_name, description, kind, user_name))
        return f"token-{user_name}"


class FakeConnections:
    def kubeconfig(self, cluster_name, token):
        return {"clusters": [{"name": cluster_name}], "users": [{"user": {"token": token}}]}

    def api_client(self, cluster_name):
        return None


class FakeRenderer:
    def __init__(self):
        self.calls = []
        self.error = None

    def render(
        self,
        agent_image,
        auth_image,
        cluster_name,
        token,
        server_url,
        windows_preferred,
        cluster,
        features,
        taints,
    ):
        if self.error is not None:
            raise self.error
        self.calls.append(
            {
                "agent_image": agent_image,
                "auth_image": auth_image,
                "cluster_name": cluster_name,
                "token": token,
                "server_url": server_url,
                "features": dict(features),
                "taints": list(taints),
            }
        )
        return b"kind: Deployment\n"


class FakeKubectl:
    """Replays scripted results; an Exception entry is raised instead of returned."""

    def __init__(self, apply_results=None, delete_results=None):
        self.apply_results = list(apply_results or [])
        self.delete_results = list(delete_results or [])
        self.applied = []
        self.deleted = []

    def apply(self, manifest, kubeconfig):
        self.applied.append(manifest)
        result = (
            self.apply_results.pop(0)
            if self.apply_results
            else "deployment.apps/cattle-cluster-agent configured"
        )
        if isinstance(result, Exception):
            raise result
        return result

    def delete(self, manifest, kubeconfig):
        self.deleted.append(manifest)
        result = self.delete_results.pop(0) if self.delete_results else "daemonset.apps deleted"
        if isinstance(result, Exception):
            raise result
        return result


class FakeImageReader:
    def __init__(self, images=None):
        self.images = images or AgentImages(node_agent="", cluster_agent=AGENT_IMAGE)
        self.reads = []

    def get_agent_images(self, cluster_name):
        self.reads.append(cluster_name)
        return self.images


@pytest.fixture
def deploy_settings():
    """Settings with a configured server URL and no retry delay."""
    return DeploySettings(
        server_url="https://rancher.example.com",
        agent_image=AGENT_IMAGE,
        apply_attempts=5,
        apply_retry_delay_seconds=0,
    )


@pytest.fixture
def make_cluster():
    """Factory for managed clusters in a given lifecycle state."""

    def _make(
        name="c-abc12",
        provisioned=True,
        system_account=False,
        deployed=False,
        agent_image="",
        driver=ClusterDriver.IMPORTED.value,
        **spec,
    ):
        cluster = ManagedCluster(
            name=name, status=ClusterStatus(driver=driver, agent_image=agent_image)
        )
        if provisioned:
            cluster.set_condition(ConditionType.PROVISIONED, "True")
        if system_account:
            cluster.set_condition(ConditionType.SYSTEM_ACCOUNT_CREATED, "True")
        if deployed:
            cluster.set_condition(ConditionType.AGENT_DEPLOYED, "True")
        for key, value in spec.items():
            setattr(cluster.spec, key, value)
        return cluster

    return _make


@pytest.fixture
def control_plane_node():
    return Node(
        name="cp-1",
        cluster_name="c-abc12",
        node_labels={"node-role.kubernetes.io/controlplane": "true"},
        node_taints=[CONTROL_PLANE_TAINT],
    )


@pytest.fixture
def fakes(control_plane_node):
    """A fresh set of collaborator fakes."""
    return SimpleNamespace(
        nodes=FakeNodes([control_plane_node]),
        clusters=FakeClusters(),
        queue=FakeQueue(),
        system_accounts=FakeSystemAccounts(),
        tokens=FakeTokens(),
        connections=FakeConnections(),
        renderer=FakeRenderer(),
        kubectl=FakeKubectl(),
        image_reader=FakeImageReader(),
        image_cache=ImageCache(),
        taint_cache=TaintCache(),
        sleeps=[],
    )


@pytest.fixture
def controller(deploy_settings, fakes):
    """A deploy controller wired to the fakes with private caches."""
    return ClusterDeployController(
        deploy_settings,
        nodes=fakes.nodes,
        clusters=fakes.clusters,
        system_accounts=fakes.system_accounts,
        tokens=fakes.tokens,
        connections=fakes.connections,
        renderer=fakes.renderer,
        kubectl=fakes.kubectl,
        queue=fakes.queue,
        image_cache=fakes.image_cache,
        taint_cache=fakes.taint_cache,
        image_reader=fakes.image_reader,
        sleep=fakes.sleeps.append,
    )


@pytest.fixture
def sample_store_data():
    """Sample cluster store contents."""
    return {
        "clusters": {
            "c-abc12": {
                "resource_version": 3,
                "annotations": {},
                "spec": {"agent_env_vars": [{"name": "HTTP_PROXY", "value": "http://proxy:3128"}]},
                "status": {
                    "driver": "rancherKubernetesEngine",
                    "agent_image": AGENT_IMAGE,
                    "conditions": [
                        {"type": "Provisioned", "status": "True"},
                        {"type": "AgentDeployed", "status": "True"},
                    ],
                },
            }
        },
        "nodes": {
            "cp-1": {
                "cluster_name": "c-abc12",
                "node_labels": {"node-role.kubernetes.io/controlplane": "true"},
                "node_taints": [
                    {
                        "key": "node-role.kubernetes.io/controlplane",
                        "value": "true",
                        "effect": "NoSchedule",
                    }
                ],
            },
            "worker-1": {
                "cluster_name": "c-abc12",
                "node_labels": {"node-role.kubernetes.io/worker": "true"},
            },
            "other-1": {"cluster_name": "c-other"},
        },
    }
