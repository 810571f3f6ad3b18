"""Runtime records of a running workflow instance."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set


# stateId recorded on the initial history entry
START_MARKER = "START"


class TransitionAction(str, enum.Enum):
    """Inputs accepted by the transition function."""

    APPROVE = "approve"
    REJECT = "reject"
    AUTO = "auto"
    TIMEOUT = "timeout"


class HistoryAction(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"
    AUTO = "auto"
    START = "start"


class InstanceStatus(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass
class HistoryEntry:
    """One audit line of the execution log."""

    timestamp: datetime
    state_id: str
    action: HistoryAction
    details: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "timestamp": self.timestamp.isoformat(),
            "stateId": self.state_id,
            "action": self.action.value,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


@dataclass
class InstanceState:
    """Mutable engine state of one instance.

    Only the engine's transition functions mutate it. ``current_states``
    keeps activation order and never holds the same state twice.
    """

    instance_id: str
    workflow_id: str
    workflow_name: str
    data: Dict[str, Any] = field(default_factory=dict)
    current_states: List[str] = field(default_factory=list)
    history: List[HistoryEntry] = field(default_factory=list)
    parallel_completion: Dict[str, List[str]] = field(default_factory=dict)
    entered_at: Dict[str, float] = field(default_factory=dict)
    pending_joins: Dict[str, float] = field(default_factory=dict)
    merged_joins: Set[str] = field(default_factory=set)
    faults: Dict[str, str] = field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0

    def has_token(self, state_id: str) -> bool:
        return state_id in self.current_states

    def add_token(self, state_id: str, now: float) -> bool:
        if state_id in self.current_states:
            return False
        self.current_states.append(state_id)
        self.entered_at[state_id] = now
        return True

    def remove_token(self, state_id: str) -> Optional[float]:
        """Drop a token and return the time it entered its state."""
        if state_id in self.current_states:
            self.current_states.remove(state_id)
        self.faults.pop(state_id, None)
        return self.entered_at.pop(state_id, None)

    def clear_tokens(self) -> None:
        self.current_states.clear()
        self.entered_at.clear()
        self.pending_joins.clear()
        self.faults.clear()

    def is_finished(self) -> bool:
        return bool(self.history) and not self.current_states and not self.pending_joins


@dataclass
class TaskInstance:
    """Serializable snapshot of an instance for display or storage."""

    id: str
    workflow_id: str
    workflow_name: str
    status: InstanceStatus
    data: Dict[str, Any]
    current_states: List[str]
    history: List[HistoryEntry]
    parallel_completion: Dict[str, List[str]]
    created_at: datetime
    updated_at: datetime
    faults: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "workflowName": self.workflow_name,
            "status": self.status.value,
            "data": self.data,
            "currentStates": list(self.current_states),
            "history": [entry.to_dict() for entry in self.history],
            "parallelCompletion": {
                parent: list(branches)
                for parent, branches in self.parallel_completion.items()
            },
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "faults": dict(self.faults),
        }
