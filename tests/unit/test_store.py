"""Tests for the YAML cluster store."""

import pytest
from ruamel.yaml import YAML

from cluster_agent.exceptions import ConflictError, PersistenceError, StoreError
from cluster_agent.models.cluster import ConditionType, ManagedCluster
from cluster_agent.models.node import Node, NodeTaint
from cluster_agent.store import ClusterStore, StoreValidationError


@pytest.fixture
def store(tmp_path, sample_store_data):
    path = tmp_path / "clusters.yml"
    yaml = YAML()
    with open(path, "w") as f:
        yaml.dump(sample_store_data, f)
    return ClusterStore(path)


def test_read_missing_file(tmp_path):
    store = ClusterStore(tmp_path / "missing.yml")

    with pytest.raises(StoreError, match="Cluster store not found"):
        store.read()


def test_read_invalid_yaml(tmp_path):
    path = tmp_path / "clusters.yml"
    path.write_text("clusters: [unclosed\n")

    with pytest.raises(StoreError, match="Failed to read cluster store"):
        ClusterStore(path).read()


def test_invalid_structure_rejected(tmp_path):
    path = tmp_path / "clusters.yml"
    path.write_text("clusters:\n  - not-a-mapping\n")

    with pytest.raises(StoreValidationError):
        ClusterStore(path).read()


def test_empty_file_reads_as_empty_store(tmp_path):
    path = tmp_path / "clusters.yml"
    path.write_text("")
    store = ClusterStore(path)

    assert store.list_clusters() == []
    assert store.list_nodes("c-abc12") == []


def test_get_cluster(store):
    cluster = store.get_cluster("c-abc12")

    assert cluster.name == "c-abc12"
    assert cluster.resource_version == 3
    assert cluster.is_rke
    assert cluster.is_condition_true(ConditionType.AGENT_DEPLOYED)
    assert cluster.spec.agent_env_vars[0].name == "HTTP_PROXY"


def test_get_unknown_cluster(store):
    assert store.get_cluster("c-unknown") is None


def test_list_nodes_filters_by_cluster(store):
    nodes = store.list_nodes("c-abc12")

    assert [n.name for n in nodes] == ["cp-1", "worker-1"]
    assert nodes[0].is_control_plane
    assert not nodes[1].is_control_plane
    assert [n.name for n in store.list_nodes("c-other")] == ["other-1"]


def test_update_bumps_resource_version(store):
    cluster = store.get_cluster("c-abc12")
    cluster.status.agent_image = "rancher/rancher-agent:v2.8.0"

    updated = store.update(cluster)

    assert updated.resource_version == 4
    reread = store.get_cluster("c-abc12")
    assert reread.resource_version == 4
    assert reread.status.agent_image == "rancher/rancher-agent:v2.8.0"
    assert reread.get_condition(ConditionType.AGENT_DEPLOYED).status == "True"


def test_update_with_stale_version_conflicts(store):
    first = store.get_cluster("c-abc12")
    second = store.get_cluster("c-abc12")
    store.update(first)

    with pytest.raises(ConflictError) as exc_info:
        store.update(second)

    assert isinstance(exc_info.value, PersistenceError)


def test_update_unknown_cluster(store):
    with pytest.raises(StoreError, match="not found"):
        store.update(ManagedCluster(name="c-unknown"))


def test_write_keeps_backup(store):
    cluster = store.get_cluster("c-abc12")
    store.update(cluster)

    backup = store.path.with_suffix(".yml.backup")
    assert backup.exists()
    assert "resource_version: 3" in backup.read_text()


def test_create_cluster(store):
    created = store.create_cluster(ManagedCluster(name="c-new"))

    assert created.resource_version == 1
    assert store.get_cluster("c-new").resource_version == 1
    assert {c.name for c in store.list_clusters()} == {"c-abc12", "c-new"}


def test_create_duplicate_cluster(store):
    with pytest.raises(StoreError, match="already exists"):
        store.create_cluster(ManagedCluster(name="c-abc12"))


def test_add_and_remove_node(store):
    node = Node(
        name="cp-2",
        cluster_name="c-abc12",
        node_labels={"node-role.kubernetes.io/control-plane": "true"},
        node_taints=[NodeTaint(key="dedicated", value="cp", effect="NoExecute")],
    )

    store.add_node(node)
    assert store.list_nodes("c-abc12")[-1] == node

    store.remove_node("cp-2")
    assert "cp-2" not in [n.name for n in store.list_nodes("c-abc12")]


def test_add_duplicate_node(store):
    with pytest.raises(StoreError, match="already exists"):
        store.add_node(Node(name="cp-1", cluster_name="c-abc12"))


def test_remove_unknown_node(store):
    with pytest.raises(StoreError, match="not found"):
        store.remove_node("ghost")


def test_comments_survive_write_back(tmp_path):
    path = tmp_path / "clusters.yml"
    path.write_text(
        "# managed clusters\n"
        "clusters:\n"
        "  c-abc12:\n"
        "    resource_version: 1\n"
        "nodes: {}\n"
    )
    store = ClusterStore(path)

    store.update(store.get_cluster("c-abc12"))

    assert path.read_text().startswith("# managed clusters")
