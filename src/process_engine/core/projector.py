"""
Task instance snapshots
"""
import copy
from datetime import datetime, timezone

from ..models.instance import (
    HistoryAction, InstanceState, InstanceStatus, TaskInstance
)


def derive_status(state: InstanceState) -> InstanceStatus:
    """Status of an instance from its tokens and history.

    An instance is over once no token and no pending join remain; the last
    history action then tells a rejection from a normal completion.
    """
    if not state.is_finished():
        return InstanceStatus.RUNNING
    if state.history[-1].action == HistoryAction.REJECT:
        return InstanceStatus.REJECTED
    return InstanceStatus.COMPLETED


class TaskInstanceProjector:
    """Builds detached :class:`TaskInstance` snapshots from engine state"""

    def project(self, state: InstanceState) -> TaskInstance:
        return TaskInstance(
            id=state.instance_id,
            workflow_id=state.workflow_id,
            workflow_name=state.workflow_name,
            status=derive_status(state),
            data=copy.deepcopy(state.data),
            current_states=list(state.current_states),
            history=list(state.history),
            parallel_completion={
                parent: list(branches)
                for parent, branches in state.parallel_completion.items()
            },
            created_at=_to_datetime(state.created_at),
            updated_at=_to_datetime(state.updated_at),
            faults=dict(state.faults),
        )


def _to_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)
