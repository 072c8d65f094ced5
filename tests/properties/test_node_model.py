"""Property-based tests for node and taint model validation."""

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from cluster_agent.models.node import Node, NodeTaint


# Custom strategies for generating valid test data
@st.composite
def valid_hostname(draw):
    """Generate valid RFC 1123 hostnames."""
    num_labels = draw(st.integers(min_value=1, max_value=3))
    labels = []
    for _ in range(num_labels):
        # Each label: alphanumeric, can contain hyphens but not at start/end
        length = draw(st.integers(min_value=1, max_value=10))
        if length == 1:
            label = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"))
        else:
            start = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"))
            middle = "".join(
                draw(
                    st.lists(
                        st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-"),
                        min_size=length - 2,
                        max_size=length - 2,
                    )
                )
            )
            end = draw(st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789"))
            label = start + middle + end
        labels.append(label)
    return ".".join(labels)


taint_text = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyz0123456789-./", min_size=1, max_size=20
)
effects = st.sampled_from(["NoSchedule", "PreferNoSchedule", "NoExecute"])


@given(key=taint_text, value=st.one_of(st.just(""), taint_text), effect=effects)
def test_taint_string_parses_back(key, value, effect):
    """
    Property: a taint rendered as key=value:effect parses to an equal taint.
    """
    taint = NodeTaint(key=key, value=value, effect=effect)

    assert NodeTaint.parse(str(taint)) == taint


@given(key=taint_text, value=taint_text, effect=effects)
def test_equal_taints_hash_equal(key, value, effect):
    first = NodeTaint(key=key, value=value, effect=effect)
    second = NodeTaint(key=key, value=value, effect=effect)

    assert first == second
    assert len({first, second}) == 1


@given(effect=st.text(min_size=1, max_size=15))
def test_invalid_effect_rejected(effect):
    if effect in ("NoSchedule", "PreferNoSchedule", "NoExecute"):
        return
    with pytest.raises(ValidationError):
        NodeTaint(key="dedicated", effect=effect)


def test_taints_are_immutable():
    taint = NodeTaint(key="dedicated", effect="NoSchedule")

    with pytest.raises(ValidationError):
        taint.key = "other"


@given(hostname=valid_hostname())
def test_valid_hostnames_accepted(hostname):
    node = Node(name=hostname, cluster_name="c-abc12")

    assert node.name == hostname
    assert Node.from_store_dict(hostname, node.to_store_dict()) == node


@pytest.mark.parametrize("name", ["", "-leading", "trailing-", "under_score", "a" * 254])
def test_invalid_hostnames_rejected(name):
    with pytest.raises(ValidationError):
        Node(name=name, cluster_name="c-abc12")


def test_empty_cluster_name_rejected():
    with pytest.raises(ValidationError):
        Node(name="cp-1", cluster_name="")
