"""
Process Engine - in-memory workflow execution runtime
"""

__version__ = "0.1.0"

from .core.engine import WorkflowEngine
from .core.parser import DefinitionParser
from .core.behavior import BehaviorResolver
from .core.expressions import ConditionEvaluator
from .core.scheduler import SimulationRunner
from .models.definition import WorkflowDefinition, WorkflowState
from .models.instance import TaskInstance

__all__ = [
    "WorkflowEngine",
    "DefinitionParser",
    "BehaviorResolver",
    "ConditionEvaluator",
    "SimulationRunner",
    "WorkflowDefinition",
    "WorkflowState",
    "TaskInstance"
]
