"""Property-based tests for taint differences and control-plane taint collection."""

from hypothesis import given
from hypothesis import strategies as st

from cluster_agent.models.node import CONTROL_PLANE_LABELS, Node, NodeTaint
from cluster_agent.taints import (
    INTERNAL_TAINT_PREFIX,
    collect_control_plane_taints,
    get_to_diff_taints,
)

taint_keys = st.sampled_from(
    [
        "node-role.kubernetes.io/controlplane",
        "node-role.kubernetes.io/etcd",
        "dedicated",
        "gpu",
        f"{INTERNAL_TAINT_PREFIX}/not-ready",
        f"{INTERNAL_TAINT_PREFIX}/unreachable",
    ]
)

taints = st.builds(
    NodeTaint,
    key=taint_keys,
    value=st.sampled_from(["", "true", "infra"]),
    effect=st.sampled_from(["NoSchedule", "PreferNoSchedule", "NoExecute"]),
)

taint_lists = st.lists(taints, max_size=6)


@st.composite
def nodes(draw):
    """Generate nodes with or without a control-plane role label."""
    index = draw(st.integers(min_value=0, max_value=999))
    labels = {}
    if draw(st.booleans()):
        label = draw(st.sampled_from(sorted(CONTROL_PLANE_LABELS)))
        labels[label] = draw(st.sampled_from(["true", "false"]))
    return Node(
        name=f"node-{index}",
        cluster_name="c-abc12",
        node_labels=labels,
        node_taints=draw(taint_lists),
    )


@given(current=taint_lists, desired=taint_lists)
def test_diff_matches_set_difference(current, desired):
    """
    Property: to_add is desired minus current and to_delete is current minus desired.
    """
    to_add, to_delete = get_to_diff_taints(current, desired)

    assert set(to_add) == set(desired) - set(current)
    assert set(to_delete) == set(current) - set(desired)
    assert len(to_add) == len(set(to_add))
    assert len(to_delete) == len(set(to_delete))


@given(current=taint_lists, desired=taint_lists)
def test_diff_is_empty_iff_sets_equal(current, desired):
    to_add, to_delete = get_to_diff_taints(current, desired)

    assert (not to_add and not to_delete) == (set(current) == set(desired))


@given(current=taint_lists, desired=taint_lists)
def test_diff_is_symmetric(current, desired):
    to_add, to_delete = get_to_diff_taints(current, desired)
    reverse_add, reverse_delete = get_to_diff_taints(desired, current)

    assert to_add == reverse_delete
    assert to_delete == reverse_add


@given(current=taint_lists, desired=taint_lists)
def test_diff_ignores_order(current, desired):
    to_add, to_delete = get_to_diff_taints(current, desired)
    shuffled_add, shuffled_delete = get_to_diff_taints(current[::-1], desired[::-1])

    assert set(to_add) == set(shuffled_add)
    assert set(to_delete) == set(shuffled_delete)


@given(node_list=st.lists(nodes(), max_size=5))
def test_collected_taints_come_from_control_plane_nodes(node_list):
    """
    Property: every collected taint is a non-internal taint of a control-plane node.
    """
    collected = collect_control_plane_taints(node_list)

    expected = {
        taint
        for node in node_list
        if node.is_control_plane
        for taint in node.node_taints
        if not taint.key.startswith(INTERNAL_TAINT_PREFIX)
    }
    assert set(collected) == expected
    assert len(collected) == len(expected)


@given(node_list=st.lists(nodes(), max_size=5))
def test_collection_is_order_insensitive_as_a_set(node_list):
    forward = collect_control_plane_taints(node_list)
    backward = collect_control_plane_taints(node_list[::-1])

    assert get_to_diff_taints(forward, backward) == ([], [])


def test_worker_taints_are_ignored():
    worker = Node(
        name="worker-1",
        cluster_name="c-abc12",
        node_labels={"node-role.kubernetes.io/worker": "true"},
        node_taints=[NodeTaint(key="gpu", value="true", effect="NoSchedule")],
    )

    assert collect_control_plane_taints([worker]) == []


def test_control_plane_label_must_be_true():
    node = Node(
        name="cp-1",
        cluster_name="c-abc12",
        node_labels={"node-role.kubernetes.io/control-plane": "false"},
        node_taints=[NodeTaint(key="dedicated", effect="NoSchedule")],
    )

    assert not node.is_control_plane
    assert collect_control_plane_taints([node]) == []
