"""Declarative workflow definition and behavior registry models."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

# Reserved target that ends a single token's path.
TERMINATE = "__TERMINATE__"

MS_PER_HOUR = 3600000


class ExecutionMode(str, enum.Enum):
    """How the engine drives a state once a token reaches it."""

    INTERACTIVE = "interactive"
    AUTOMATED = "automated"
    DECISION = "decision"
    PARALLEL = "parallel"

    @property
    def is_automatic(self) -> bool:
        return self is not ExecutionMode.INTERACTIVE


class CompletionRule(str, enum.Enum):
    """Join policy of a parallel state."""

    ALL = "all"
    ANY = "any"


@dataclass
class WorkflowCondition:
    """One routing rule of a decision state.

    ``if_`` holds an expression; an entry without one is a fallback whose
    target is ``next`` or, in the short form ``{"else": "target"}``, the
    ``else`` value itself.
    """

    if_: Optional[str] = None
    else_: Any = None
    next: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.if_ is None and self.else_ is not None

    @property
    def target(self) -> Optional[str]:
        if self.next:
            return self.next
        if self.is_fallback and isinstance(self.else_, str):
            return self.else_
        return None


@dataclass
class WorkflowState:
    """A single node of the workflow graph."""

    type: str
    role: Optional[str] = None
    next: Optional[str] = None
    on_reject: Optional[str] = None
    branches: List[str] = field(default_factory=list)
    completion_rule: CompletionRule = CompletionRule.ALL
    conditions: List[WorkflowCondition] = field(default_factory=list)
    sla_duration: Optional[int] = None
    sla_hours: Optional[float] = None
    on_timeout: Optional[str] = None
    action: Optional[str] = None
    role_group: Optional[str] = None
    approval_rule: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def sla_ms(self) -> Optional[float]:
        """Effective SLA in milliseconds, honouring the legacy ``slaHours``."""
        if self.sla_duration is not None:
            return float(self.sla_duration)
        if self.sla_hours is not None:
            return float(self.sla_hours) * MS_PER_HOUR
        return None

    def references(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(field, target)`` for every outgoing reference."""
        for name, value in (
            ("next", self.next),
            ("onReject", self.on_reject),
            ("onTimeout", self.on_timeout),
        ):
            if value:
                yield name, value
        for branch in self.branches:
            yield "branches", branch
        for condition in self.conditions:
            if condition.target:
                yield "conditions", condition.target


@dataclass
class WorkflowDefinition:
    """Versioned graph of states, keyed by state ID."""

    workflow_id: str
    name: str
    start: str
    states: Dict[str, WorkflowState] = field(default_factory=dict)
    version: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_state(self, state_id: str) -> Optional[WorkflowState]:
        return self.states.get(state_id)

    def is_valid_target(self, target: Optional[str]) -> bool:
        return not target or target == TERMINATE or target in self.states


@dataclass
class BaseBehaviorDefinition:
    """Execution semantics shared by any number of state types."""

    type: str
    execution_mode: ExecutionMode
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    has_role: bool = False
    has_sla: bool = False
    has_action_config: bool = False
    has_conditions: bool = False
    has_branches: bool = False


@dataclass
class StateTypeDefinition:
    """Operator-facing state template pointing at a base behavior."""

    type: str
    base_type: str
    name: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
