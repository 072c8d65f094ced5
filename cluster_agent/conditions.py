"""Condition-gated actions on a managed cluster.

Each condition is a small state machine: PENDING until its action succeeds,
then SATISFIED. ``do_until_true`` never re-runs an action once its
condition is SATISFIED; ``do`` always runs the action and records the
outcome.
"""

from collections.abc import Callable
from typing import TypeVar

from cluster_agent.kubectl import format_apply_output
from cluster_agent.logging_config import get_logger
from cluster_agent.models.cluster import ConditionState, ConditionType, ManagedCluster

logger = get_logger(__name__)

T = TypeVar("T")


def do_until_true(
    cluster: ManagedCluster, condition_type: ConditionType, action: Callable[[], T]
) -> T | None:
    """Run ``action`` only while the condition is PENDING.

    On success the condition becomes True. On failure it is set to False
    with the error as message and the error is re-raised.

    Returns:
        The action's result, or None if the condition was already satisfied
    """
    if cluster.condition_state(condition_type) is ConditionState.SATISFIED:
        logger.debug(f"Condition {condition_type.value} already true for [{cluster.name}]")
        return None
    return do(cluster, condition_type, action)


def do(cluster: ManagedCluster, condition_type: ConditionType, action: Callable[[], T]) -> T:
    """Run ``action`` and record its outcome on the condition.

    The message is reset first, so after success it holds whatever the
    action recorded via ``set_message`` (or nothing). A failure is recorded
    as a single line with any token redacted.
    """
    set_message(cluster, condition_type, "")
    try:
        result = action()
    except Exception as e:
        cluster.set_condition(
            condition_type, "False", message=format_apply_output(str(e)), reason="Error"
        )
        raise
    cluster.set_condition(condition_type, "True", reason="")
    return result


def set_message(cluster: ManagedCluster, condition_type: ConditionType, message: str) -> None:
    """Set the diagnostic message of a condition without changing its status."""
    condition = cluster.get_condition(condition_type)
    status = condition.status if condition is not None else "Unknown"
    cluster.set_condition(condition_type, status, message=message)
