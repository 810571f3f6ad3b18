"""Core engine components"""

from .behavior import BehaviorResolver, default_behaviors, default_state_types
from .clock import Clock, SystemClock, ManualClock
from .engine import WorkflowEngine, TickResult
from .expressions import ConditionEvaluator
from .parser import DefinitionParser
from .projector import TaskInstanceProjector, derive_status
from .scheduler import SimulationRunner

__all__ = [
    "BehaviorResolver",
    "default_behaviors",
    "default_state_types",
    "Clock",
    "SystemClock",
    "ManualClock",
    "WorkflowEngine",
    "TickResult",
    "ConditionEvaluator",
    "DefinitionParser",
    "TaskInstanceProjector",
    "derive_status",
    "SimulationRunner"
]
