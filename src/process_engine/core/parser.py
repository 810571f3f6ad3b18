"""
Workflow definition parser
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

import yaml
from jsonschema import Draft7Validator

from ..exceptions import WorkflowParseError, WorkflowValidationError
from ..models.definition import (
    TERMINATE, BaseBehaviorDefinition, CompletionRule, ExecutionMode,
    StateTypeDefinition, WorkflowCondition, WorkflowDefinition, WorkflowState
)
from .expressions import ConditionEvaluator


logger = logging.getLogger(__name__)


_TARGET = {"type": ["string", "null"]}

DEFINITION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["workflowId", "name", "start", "states"],
    "properties": {
        "workflowId": {"type": "string", "minLength": 1},
        "version": {"type": "integer"},
        "name": {"type": "string"},
        "start": {"type": "string", "minLength": 1},
        "states": {
            "type": "object",
            "additionalProperties": {
                "type": "object",
                "required": ["type"],
                "properties": {
                    "type": {"type": "string", "minLength": 1},
                    "role": {"type": ["string", "null"]},
                    "next": _TARGET,
                    "onReject": _TARGET,
                    "onTimeout": _TARGET,
                    "branches": {"type": "array", "items": {"type": "string"}},
                    "completionRule": {"enum": ["all", "any"]},
                    "conditions": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "if": {"type": "string"},
                                "next": _TARGET,
                            },
                        },
                    },
                    "slaDuration": {"type": ["number", "null"], "minimum": 0},
                    "slaHours": {"type": ["number", "null"], "minimum": 0},
                    "action": {"type": ["string", "null"]},
                    "roleGroup": {"type": ["string", "null"]},
                    "approvalRule": {"type": ["string", "null"]},
                },
            },
        },
        "metadata": {"type": "object"},
    },
}

_STATE_KEYS = {
    "type", "role", "next", "onReject", "branches", "completionRule",
    "conditions", "slaDuration", "slaHours", "onTimeout", "action",
    "roleGroup", "approvalRule",
}


class DefinitionParser:
    """Parses workflow definition documents (YAML/JSON) into models.

    Validation here is structural. Dangling references are only reported by
    :meth:`lint`; the engine detects them when a token actually follows one.
    """

    def __init__(self, strict: bool = True):
        self.strict = strict
        self.validator = Draft7Validator(DEFINITION_SCHEMA)
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def parse(self, content: str, fmt: str = "yaml") -> WorkflowDefinition:
        """
        Parse a definition document

        Args:
            content: document text
            fmt: ``yaml`` or ``json``

        Returns:
            WorkflowDefinition: the parsed definition
        """
        if fmt not in self.parsers:
            raise WorkflowParseError(f"Unsupported workflow format: {fmt}")
        return self.parse_dict(self.parsers[fmt](content))

    def parse_file(self, file_path: Union[str, Path]) -> WorkflowDefinition:
        path = Path(file_path)
        suffix = path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        with open(path, 'r', encoding='utf-8') as f:
            content = f.read()

        return self.parse(content, suffix)

    def parse_dict(self, payload: Dict[str, Any]) -> WorkflowDefinition:
        if not isinstance(payload, dict):
            raise WorkflowValidationError("Workflow definition must be an object")
        if 'workflow' in payload:
            payload = payload['workflow']

        errors = sorted(self.validator.iter_errors(payload), key=lambda e: list(e.path))
        if errors:
            messages = [self._format_schema_error(error) for error in errors]
            raise WorkflowValidationError(f"Workflow validation failed: {messages}")

        states = {
            state_id: self._parse_state(state_id, raw)
            for state_id, raw in payload['states'].items()
        }
        definition = WorkflowDefinition(
            workflow_id=payload['workflowId'],
            name=payload['name'],
            start=payload['start'],
            states=states,
            version=payload.get('version', 1),
            metadata=payload.get('metadata', {}),
        )

        for state_id, state in states.items():
            fallbacks = [c for c in state.conditions if c.is_fallback]
            if len(fallbacks) > 1:
                message = f"Decision state '{state_id}' has {len(fallbacks)} else conditions"
                if self.strict:
                    raise WorkflowValidationError(message)
                logger.warning(f"{message}; the last one reached is used")

        return definition

    def parse_behaviors(self, items: Iterable[Dict[str, Any]]) -> Dict[str, BaseBehaviorDefinition]:
        """Parse a base behavior registry document"""
        behaviors = {}
        for item in items:
            try:
                behavior = BaseBehaviorDefinition(
                    type=item['type'],
                    execution_mode=ExecutionMode(item.get('executionMode', 'interactive')),
                    name=item.get('name'),
                    description=item.get('description'),
                    icon=item.get('icon'),
                    has_role=bool(item.get('hasRole', False)),
                    has_sla=bool(item.get('hasSla', False)),
                    has_action_config=bool(item.get('hasActionConfig', False)),
                    has_conditions=bool(item.get('hasConditions', False)),
                    has_branches=bool(item.get('hasBranches', False)),
                )
            except (KeyError, ValueError) as e:
                raise WorkflowValidationError(f"Invalid base behavior {item!r}: {e}")
            behaviors[behavior.type] = behavior
        return behaviors

    def parse_state_types(self, items: Iterable[Dict[str, Any]]) -> Dict[str, StateTypeDefinition]:
        """Parse a state type registry document"""
        state_types = {}
        for item in items:
            if 'type' not in item or 'baseType' not in item:
                raise WorkflowValidationError(f"State type needs 'type' and 'baseType': {item!r}")
            state_types[item['type']] = StateTypeDefinition(
                type=item['type'],
                base_type=item['baseType'],
                name=item.get('name'),
                color=item.get('color'),
                description=item.get('description'),
            )
        return state_types

    def lint(self, definition: WorkflowDefinition) -> List[str]:
        """Report reference and condition problems without raising"""
        problems = []
        if definition.start not in definition.states:
            problems.append(f"Start state '{definition.start}' is not defined")

        evaluator = ConditionEvaluator()
        for state_id, state in definition.states.items():
            for field_name, target in state.references():
                if target != TERMINATE and target not in definition.states:
                    problems.append(f"State '{state_id}' {field_name} -> unknown state '{target}'")
            if TERMINATE in state.branches:
                problems.append(f"State '{state_id}' lists the terminate sentinel as a branch")

            if state.conditions:
                if not any(c.is_fallback for c in state.conditions):
                    problems.append(f"Decision state '{state_id}' has no else condition")
                for condition in state.conditions:
                    if condition.if_ is not None:
                        problems.extend(
                            f"State '{state_id}': {message}"
                            for message in evaluator.validate(condition.if_)
                        )
                    if condition.target is None:
                        problems.append(f"State '{state_id}' has a condition without a target")
        return problems

    def serialize(self, definition: WorkflowDefinition, fmt: str = "json") -> str:
        data = self.to_dict(definition)
        if fmt == "json":
            return json.dumps(data, ensure_ascii=False, indent=2)
        if fmt == "yaml":
            return yaml.safe_dump(data, allow_unicode=True, sort_keys=False)
        raise WorkflowParseError(f"Unsupported serialisation format: {fmt}")

    def to_dict(self, definition: WorkflowDefinition) -> Dict[str, Any]:
        payload = {
            "workflowId": definition.workflow_id,
            "version": definition.version,
            "name": definition.name,
            "start": definition.start,
            "states": {
                state_id: self._state_to_dict(state)
                for state_id, state in definition.states.items()
            },
        }
        if definition.metadata:
            payload["metadata"] = definition.metadata
        return payload

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}")

    def _parse_state(self, state_id: str, raw: Dict[str, Any]) -> WorkflowState:
        conditions = [
            WorkflowCondition(
                if_=item.get('if'),
                else_=item.get('else'),
                next=item.get('next'),
            )
            for item in raw.get('conditions') or []
        ]
        return WorkflowState(
            type=raw['type'],
            role=raw.get('role'),
            next=raw.get('next'),
            on_reject=raw.get('onReject'),
            branches=list(raw.get('branches') or []),
            completion_rule=CompletionRule(raw.get('completionRule') or 'all'),
            conditions=conditions,
            sla_duration=raw.get('slaDuration'),
            sla_hours=raw.get('slaHours'),
            on_timeout=raw.get('onTimeout'),
            action=raw.get('action'),
            role_group=raw.get('roleGroup'),
            approval_rule=raw.get('approvalRule'),
            extra={k: v for k, v in raw.items() if k not in _STATE_KEYS},
        )

    def _state_to_dict(self, state: WorkflowState) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": state.type}
        optional = [
            ("role", state.role),
            ("next", state.next),
            ("onReject", state.on_reject),
            ("branches", state.branches),
            ("onTimeout", state.on_timeout),
            ("action", state.action),
            ("roleGroup", state.role_group),
            ("approvalRule", state.approval_rule),
        ]
        for key, value in optional:
            if value:
                payload[key] = value
        for key, value in (("slaDuration", state.sla_duration), ("slaHours", state.sla_hours)):
            if value is not None:
                payload[key] = value
        if state.branches and state.completion_rule != CompletionRule.ALL:
            payload["completionRule"] = state.completion_rule.value
        if state.conditions:
            payload["conditions"] = [self._condition_to_dict(c) for c in state.conditions]
        payload.update(state.extra)
        return payload

    @staticmethod
    def _condition_to_dict(condition: WorkflowCondition) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if condition.if_ is not None:
            payload["if"] = condition.if_
        if condition.else_ is not None:
            payload["else"] = condition.else_
        if condition.next:
            payload["next"] = condition.next
        return payload

    @staticmethod
    def _format_schema_error(error) -> str:
        location = "/".join(str(part) for part in error.path) or "<root>"
        return f"{location}: {error.message}"
