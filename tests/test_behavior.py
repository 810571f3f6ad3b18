"""
Behavior resolution tests
"""
from process_engine.core.behavior import BehaviorResolver, default_behaviors, default_state_types
from process_engine.models import (
    BaseBehaviorDefinition, ExecutionMode, StateTypeDefinition, WorkflowState
)


def test_default_registries():
    resolver = BehaviorResolver()

    assert resolver.resolve_execution_mode("task") == ExecutionMode.INTERACTIVE
    assert resolver.resolve_execution_mode("multi-approver") == ExecutionMode.INTERACTIVE
    assert resolver.resolve_execution_mode("parallel") == ExecutionMode.PARALLEL
    assert resolver.resolve_execution_mode("decision") == ExecutionMode.DECISION
    assert resolver.resolve_execution_mode("system") == ExecutionMode.AUTOMATED
    assert default_state_types()["decision"].color == "emerald"


def test_unknown_type_defaults_to_interactive():
    resolver = BehaviorResolver()
    assert resolver.resolve_behavior("wire-transfer") is None
    assert resolver.mode_of(WorkflowState(type="wire-transfer")) == ExecutionMode.INTERACTIVE


def test_type_with_missing_behavior_defaults_to_interactive():
    resolver = BehaviorResolver(
        state_types={"audit": StateTypeDefinition(type="audit", base_type="robot")},
    )
    assert resolver.resolve_execution_mode("audit") == ExecutionMode.INTERACTIVE


def test_custom_type_resolves_through_base_behavior():
    state_types = default_state_types()
    state_types["kyc-check"] = StateTypeDefinition(type="kyc-check", base_type="system", name="KYC")
    resolver = BehaviorResolver(state_types=state_types)

    assert resolver.resolve_behavior("kyc-check").type == "system"
    assert resolver.resolve_execution_mode("kyc-check") == ExecutionMode.AUTOMATED


def test_registries_are_read_live():
    state_types = default_state_types()
    behaviors = default_behaviors()
    resolver = BehaviorResolver(state_types=state_types, behaviors=behaviors)
    assert resolver.resolve_execution_mode("task") == ExecutionMode.INTERACTIVE

    behaviors["task"] = BaseBehaviorDefinition(type="task", execution_mode=ExecutionMode.AUTOMATED)

    assert resolver.resolve_execution_mode("task") == ExecutionMode.AUTOMATED


def test_registry_edit_changes_a_running_instance(engine, make_definition):
    definition = make_definition("step", {"step": {"type": "task", "next": None}})
    instance = engine.start_instance(definition)
    assert not engine.tick(instance.id).changed

    engine.resolver.behaviors["task"] = BaseBehaviorDefinition(
        type="task", execution_mode=ExecutionMode.AUTOMATED
    )

    assert engine.tick(instance.id).advanced == ["step"]
