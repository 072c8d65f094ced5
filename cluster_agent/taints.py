"""Control-plane taint collection and taint set differences."""

from collections.abc import Iterable, Sequence

from cluster_agent.logging_config import get_logger
from cluster_agent.models.node import Node, NodeTaint

logger = get_logger(__name__)

# Taints managed by Kubernetes itself (not-ready, unreachable, pressure...)
INTERNAL_TAINT_PREFIX = "node.kubernetes.io"


def get_to_diff_taints(
    current: Iterable[NodeTaint], desired: Iterable[NodeTaint]
) -> tuple[list[NodeTaint], list[NodeTaint]]:
    """Compute the taints to add and to delete to go from current to desired.

    Taints are compared structurally (key, value, effect). Both results keep
    the input order and contain no duplicates.

    Args:
        current: Taints currently in effect
        desired: Taints that should be in effect

    Returns:
        Tuple of (to_add, to_delete)
    """
    current_list = list(dict.fromkeys(current))
    desired_list = list(dict.fromkeys(desired))
    current_set = set(current_list)
    desired_set = set(desired_list)

    to_add = [taint for taint in desired_list if taint not in current_set]
    to_delete = [taint for taint in current_list if taint not in desired_set]
    return to_add, to_delete


def collect_control_plane_taints(nodes: Sequence[Node]) -> list[NodeTaint]:
    """Accumulate the distinct taints of all control-plane nodes.

    Nodes are filtered on the control-plane role labels. Taints whose key
    carries the Kubernetes-internal prefix are skipped. The result follows
    node iteration order; callers must compare it as a set.
    """
    all_taints: list[NodeTaint] = []
    logger.debug(f"Collecting control-plane taints from {len(nodes)} nodes")

    for node in nodes:
        if not node.is_control_plane:
            continue
        logger.debug(f"Node [{node.name}] is a control-plane node")

        to_add, _ = get_to_diff_taints(all_taints, node.node_taints)
        for taint in to_add:
            if taint.key.startswith(INTERNAL_TAINT_PREFIX):
                logger.debug(f"Skipping taint [{taint}] because it is Kubernetes internal")
                continue
            all_taints.append(taint)

    logger.debug(f"Control-plane taints: {[str(t) for t in all_taints]}")
    return all_taints
