"""
Process engine exceptions
"""
from typing import Optional


class WorkflowEngineError(Exception):
    """Base class for process engine errors"""
    pass


class WorkflowParseError(WorkflowEngineError):
    """Definition document could not be decoded"""
    pass


class WorkflowValidationError(WorkflowEngineError):
    """Definition document failed validation"""
    pass


class WorkflowNotFoundError(WorkflowEngineError):
    """No workflow registered under the given ID"""
    pass


class InstanceNotFoundError(WorkflowEngineError):
    """No task instance with the given ID"""
    pass


class ExecutionLimitError(WorkflowEngineError):
    """An instance kept changing past the configured tick limit"""
    pass


class DefinitionError(WorkflowEngineError):
    """A transition traversed a reference that does not resolve to a state"""
    def __init__(self, state_id: str, target: Optional[str], message: str = None):
        self.state_id = state_id
        self.target = target
        msg = f"State '{state_id}' references unknown state '{target}'"
        if message:
            msg += f": {message}"
        super().__init__(msg)


class UnknownStateError(DefinitionError):
    """A token sits on a state that is not part of the definition"""
    def __init__(self, state_id: str, message: str = None):
        self.state_id = state_id
        self.target = state_id
        msg = f"Unknown state '{state_id}'"
        if message:
            msg += f": {message}"
        WorkflowEngineError.__init__(self, msg)


class ConditionEvaluationError(WorkflowEngineError):
    """Condition expression could not be parsed or evaluated"""
    def __init__(self, expression: str, message: str):
        self.expression = expression
        super().__init__(f"Cannot evaluate '{expression}': {message}")
