"""Definition and runtime models"""

from .definition import (
    TERMINATE, ExecutionMode, CompletionRule, WorkflowCondition,
    WorkflowState, WorkflowDefinition, BaseBehaviorDefinition,
    StateTypeDefinition
)
from .instance import (
    START_MARKER, TransitionAction, HistoryAction, InstanceStatus,
    HistoryEntry, InstanceState, TaskInstance
)

__all__ = [
    "TERMINATE",
    "ExecutionMode",
    "CompletionRule",
    "WorkflowCondition",
    "WorkflowState",
    "WorkflowDefinition",
    "BaseBehaviorDefinition",
    "StateTypeDefinition",
    "START_MARKER",
    "TransitionAction",
    "HistoryAction",
    "InstanceStatus",
    "HistoryEntry",
    "InstanceState",
    "TaskInstance"
]
