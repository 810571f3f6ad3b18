"""
State type to execution mode resolution
"""
import logging
from typing import Dict, Mapping, Optional

from ..models.definition import (
    BaseBehaviorDefinition, ExecutionMode, StateTypeDefinition, WorkflowState
)


logger = logging.getLogger(__name__)


DEFAULT_EXECUTION_MODE = ExecutionMode.INTERACTIVE


def default_behaviors() -> Dict[str, BaseBehaviorDefinition]:
    """Built-in base behaviors"""
    behaviors = [
        BaseBehaviorDefinition(
            type="task",
            name="User Task",
            execution_mode=ExecutionMode.INTERACTIVE,
            description="Waits for a human approval",
            has_role=True,
            has_sla=True,
        ),
        BaseBehaviorDefinition(
            type="multi-approver",
            name="Group Approval",
            execution_mode=ExecutionMode.INTERACTIVE,
            description="Waits for an approval from a group of users",
            has_role=True,
            has_sla=True,
        ),
        BaseBehaviorDefinition(
            type="parallel",
            name="Parallel Split",
            execution_mode=ExecutionMode.PARALLEL,
            description="Splits the flow into concurrent branches",
            has_branches=True,
        ),
        BaseBehaviorDefinition(
            type="decision",
            name="Logic Gate",
            execution_mode=ExecutionMode.DECISION,
            description="Routes on the instance data",
            has_conditions=True,
        ),
        BaseBehaviorDefinition(
            type="system",
            name="System Action",
            execution_mode=ExecutionMode.AUTOMATED,
            description="Runs an automated background step",
            has_action_config=True,
        ),
    ]
    return {behavior.type: behavior for behavior in behaviors}


_DEFAULT_COLORS = {
    "task": "indigo",
    "multi-approver": "blue",
    "parallel": "purple",
    "decision": "emerald",
    "system": "slate",
}


def default_state_types() -> Dict[str, StateTypeDefinition]:
    """One state type per built-in behavior, sharing its key"""
    return {
        behavior.type: StateTypeDefinition(
            type=behavior.type,
            base_type=behavior.type,
            name=behavior.name,
            color=_DEFAULT_COLORS.get(behavior.type),
            description=behavior.description,
        )
        for behavior in default_behaviors().values()
    }


class BehaviorResolver:
    """Resolves ``WorkflowState.type`` to an :class:`ExecutionMode`.

    The lookup goes through two registries, state type then base behavior.
    A missing entry at either step yields the interactive default, so a
    definition may reference types that are not registered yet. The
    registries are read on every call; edits made while an instance runs
    are seen by its next transition.
    """

    def __init__(
        self,
        state_types: Optional[Mapping[str, StateTypeDefinition]] = None,
        behaviors: Optional[Mapping[str, BaseBehaviorDefinition]] = None,
        default_mode: ExecutionMode = DEFAULT_EXECUTION_MODE
    ):
        self.state_types = state_types if state_types is not None else default_state_types()
        self.behaviors = behaviors if behaviors is not None else default_behaviors()
        self.default_mode = default_mode

    def resolve_behavior(self, state_type: str) -> Optional[BaseBehaviorDefinition]:
        """Return the base behavior behind a state type, if any"""
        type_def = self.state_types.get(state_type)
        if type_def is None:
            logger.debug(f"State type '{state_type}' is not registered")
            return None

        behavior = self.behaviors.get(type_def.base_type)
        if behavior is None:
            logger.debug(
                f"State type '{state_type}' points at missing behavior '{type_def.base_type}'"
            )
        return behavior

    def resolve_execution_mode(self, state_type: str) -> ExecutionMode:
        """Return the execution mode for a state type"""
        behavior = self.resolve_behavior(state_type)
        if behavior is None:
            return self.default_mode
        return behavior.execution_mode

    def mode_of(self, state: WorkflowState) -> ExecutionMode:
        return self.resolve_execution_mode(state.type)
