"""
Workflow engine transition tests
"""
import logging

import pytest

from process_engine.config import EngineSettings
from process_engine.core import WorkflowEngine
from process_engine.exceptions import (
    DefinitionError, ExecutionLimitError, InstanceNotFoundError,
    UnknownStateError, WorkflowNotFoundError
)
from process_engine.integrations import FINISHED_TOPIC, SNAPSHOT_TOPIC
from process_engine.models import HistoryAction, InstanceStatus


def details(snapshot):
    return [entry.details for entry in snapshot.history]


@pytest.fixture
def linear(make_definition):
    return make_definition("draft", {
        "draft": {"type": "task", "role": "maker", "next": "review", "onReject": "draft"},
        "review": {"type": "task", "role": "checker", "next": None, "onReject": "draft"},
    })


@pytest.fixture
def fork_join(make_definition):
    def _make(rule="all", branch_type="task", next_state="done"):
        return make_definition("split", {
            "split": {
                "type": "parallel",
                "branches": ["left", "right"],
                "completionRule": rule,
                "next": next_state,
            },
            "left": {"type": branch_type, "role": "finance"},
            "right": {"type": branch_type, "role": "legal"},
            "done": {"type": "task", "role": "closer"},
        })
    return _make


class TestLinearFlow:
    """Interactive steps moved by user decisions"""

    def test_start_instance(self, engine, linear):
        snapshot = engine.start_instance(linear, {"amount": 10})

        assert snapshot.current_states == ["draft"]
        assert snapshot.status == InstanceStatus.RUNNING
        assert snapshot.workflow_id == "wf"
        assert snapshot.data == {"amount": 10}
        assert snapshot.history[0].state_id == "START"
        assert snapshot.history[0].action == HistoryAction.START

    def test_start_with_explicit_id(self, engine, linear):
        snapshot = engine.start_instance(linear, instance_id="inst-1")
        assert snapshot.id == "inst-1"
        assert engine.get_snapshot("inst-1").current_states == ["draft"]

    def test_approve_moves_token(self, engine, linear):
        instance = engine.start_instance(linear)

        snapshot = engine.approve(instance.id, "draft")

        assert snapshot.current_states == ["review"]
        assert snapshot.history[-1].action == HistoryAction.APPROVE
        assert snapshot.history[-1].details == "Approved by maker"

    def test_last_approval_completes(self, engine, linear):
        instance = engine.start_instance(linear)
        engine.approve(instance.id, "draft")

        snapshot = engine.approve(instance.id, "review")

        assert snapshot.current_states == []
        assert snapshot.status == InstanceStatus.COMPLETED
        assert snapshot.history[-1].details == "Workflow end"

    def test_decision_on_inactive_state_is_ignored(self, engine, linear):
        instance = engine.start_instance(linear)

        snapshot = engine.approve(instance.id, "review")

        assert snapshot.current_states == ["draft"]
        assert len(snapshot.history) == 1

    def test_approve_ignored_on_automated_state(self, engine, make_definition):
        definition = make_definition("sync", {
            "sync": {"type": "system", "action": "syncLedger", "next": "check"},
            "check": {"type": "task"},
        })
        instance = engine.start_instance(definition)

        snapshot = engine.approve(instance.id, "sync")

        assert snapshot.current_states == ["sync"]
        assert len(snapshot.history) == 1

    def test_unregistered_type_waits_for_approval(self, engine, make_definition):
        definition = make_definition("custom", {"custom": {"type": "wire-transfer"}})
        instance = engine.start_instance(definition)

        assert engine.run_until_blocked(instance.id).current_states == ["custom"]
        assert engine.approve(instance.id, "custom").status == InstanceStatus.COMPLETED

    def test_terminate_drops_only_the_token(self, engine, make_definition):
        definition = make_definition("a", {"a": {"type": "task", "next": "__TERMINATE__"}})
        instance = engine.start_instance(definition)

        snapshot = engine.approve(instance.id, "a")

        assert snapshot.current_states == []
        assert snapshot.history[-1].details == "Path terminated"
        assert snapshot.status == InstanceStatus.COMPLETED


class TestReject:

    def test_reject_reroutes(self, engine, linear):
        instance = engine.start_instance(linear)
        engine.approve(instance.id, "draft")

        snapshot = engine.reject(instance.id, "review")

        assert snapshot.current_states == ["draft"]
        assert snapshot.status == InstanceStatus.RUNNING
        assert snapshot.history[-1].action == HistoryAction.REJECT
        assert snapshot.history[-1].details == "Rejected. Moving to draft"

    def test_reject_without_route_stops_every_branch(self, engine, fork_join):
        instance = engine.start_instance(fork_join())
        engine.tick(instance.id)

        snapshot = engine.reject(instance.id, "left")

        assert snapshot.current_states == []
        assert snapshot.status == InstanceStatus.REJECTED
        assert snapshot.history[-1].details == "Rejected. Workflow stopped."

    def test_rerouted_branch_reject_completes_the_branch(self, engine, make_definition):
        definition = make_definition("split", {
            "split": {"type": "parallel", "branches": ["left", "right"], "next": "done"},
            "left": {"type": "task", "onReject": "rework"},
            "right": {"type": "task"},
            "rework": {"type": "task"},
            "done": {"type": "task"},
        })
        instance = engine.start_instance(definition)
        engine.tick(instance.id)

        snapshot = engine.reject(instance.id, "left")

        assert snapshot.current_states == ["right"]
        assert snapshot.parallel_completion == {"split": ["left"]}
        assert snapshot.history[-1].details == "Rejected. Branch of split finished"


class TestParallel:

    def test_fork_spawns_branches(self, engine, fork_join):
        instance = engine.start_instance(fork_join())

        result = engine.tick(instance.id)
        snapshot = engine.get_snapshot(instance.id)

        assert result.advanced == ["split"]
        assert snapshot.current_states == ["left", "right"]
        assert snapshot.parallel_completion == {"split": []}
        assert snapshot.history[-1].details == "Spawning branches: left, right"

    def test_join_all_waits_for_every_branch(self, engine, fork_join):
        instance = engine.start_instance(fork_join("all"))
        engine.tick(instance.id)

        snapshot = engine.approve(instance.id, "left")
        assert snapshot.current_states == ["right"]
        assert snapshot.parallel_completion == {"split": ["left"]}

        snapshot = engine.approve(instance.id, "right")
        # the merge is pending until the next tick
        assert snapshot.current_states == []
        assert snapshot.status == InstanceStatus.RUNNING

        result = engine.tick(instance.id)
        snapshot = engine.get_snapshot(instance.id)
        assert result.merged == ["split"]
        assert snapshot.current_states == ["done"]
        assert snapshot.parallel_completion == {"split": ["left", "right"]}

    def test_join_any_discards_other_branches(self, engine, fork_join):
        instance = engine.start_instance(fork_join("any"))
        engine.tick(instance.id)

        engine.approve(instance.id, "right")
        engine.tick(instance.id)
        snapshot = engine.get_snapshot(instance.id)

        assert snapshot.current_states == ["done"]
        assert "Parallel completion rule 'any' met. Merging." in details(snapshot)

        late = engine.approve(instance.id, "left")
        assert late.current_states == ["done"]

    def test_branches_finishing_in_one_tick_merge_once(self, engine, fork_join):
        instance = engine.start_instance(fork_join("all", branch_type="system"))
        engine.tick(instance.id)

        result = engine.tick(instance.id)
        snapshot = engine.get_snapshot(instance.id)

        assert result.advanced == ["left", "right"]
        assert result.merged == ["split"]
        assert snapshot.current_states == ["done"]
        assert engine.metrics.get_counter("joins_total", {"rule": "all"}) == 1

    def test_branch_completion_is_idempotent(self, engine, clock, fork_join):
        instance = engine.start_instance(fork_join("all"))
        engine.tick(instance.id)
        state = engine.instances[instance.id]
        definition = engine.get_workflow("wf")

        engine._finish_branch(state, definition, "split", "left", clock.now())
        engine._finish_branch(state, definition, "split", "left", clock.now())

        assert state.parallel_completion == {"split": ["left"]}
        assert state.pending_joins == {}
        assert state.current_states == ["right"]

    def test_merged_join_does_not_fire_again(self, engine, clock, fork_join):
        instance = engine.start_instance(fork_join("any"))
        engine.tick(instance.id)
        engine.approve(instance.id, "left")
        engine.tick(instance.id)
        state = engine.instances[instance.id]

        engine._finish_branch(state, engine.get_workflow("wf"), "split", "right", clock.now())

        assert state.parallel_completion == {"split": ["left", "right"]}
        assert state.pending_joins == {}
        assert state.current_states == ["done"]

    def test_join_delay(self, clock, fork_join):
        engine = WorkflowEngine(clock=clock, settings=EngineSettings(join_delay_ms=500, auto_tick=False))
        instance = engine.start_instance(fork_join("any"))
        engine.tick(instance.id)
        engine.approve(instance.id, "left")

        assert engine.tick(instance.id).merged == []
        clock.advance(ms=500)
        assert engine.tick(instance.id).merged == ["split"]

    def test_join_into_terminate(self, engine, fork_join):
        instance = engine.start_instance(fork_join("all", "system", "__TERMINATE__"))

        snapshot = engine.run_until_blocked(instance.id)

        assert snapshot.status == InstanceStatus.COMPLETED
        assert snapshot.history[-1].state_id == "split"
        assert snapshot.history[-1].details == "Path terminated"

    def test_unknown_branch_leaves_instance_untouched(self, engine, make_definition):
        definition = make_definition("split", {
            "split": {"type": "parallel", "branches": ["left", "ghost"]},
            "left": {"type": "task"},
        })
        instance = engine.start_instance(definition)

        with pytest.raises(DefinitionError) as exc_info:
            engine.tick(instance.id)

        assert exc_info.value.state_id == "split"
        assert exc_info.value.target == "ghost"
        snapshot = engine.get_snapshot(instance.id)
        assert snapshot.current_states == ["split"]
        assert snapshot.parallel_completion == {}


class TestDecision:

    def test_routes_on_first_match(self, engine, parser, leave_request):
        definition = parser.parse_dict(leave_request)
        instance = engine.start_instance(definition, {"days": 2})
        engine.approve(instance.id, "request_submission")

        snapshot = engine.run_until_blocked(instance.id)

        assert snapshot.status == InstanceStatus.COMPLETED
        assert "Condition matched: data.days < 3 -> auto_approve" in details(snapshot)
        assert "System action executed: sendEmail" in details(snapshot)

    def test_falls_back_to_else(self, engine, parser, leave_request):
        definition = parser.parse_dict(leave_request)
        instance = engine.start_instance(definition, {"days": 5})
        engine.approve(instance.id, "request_submission")

        snapshot = engine.run_until_blocked(instance.id)

        assert snapshot.current_states == ["hr_approval"]
        assert "Else condition -> hr_approval" in details(snapshot)

    def test_automated_states_advance_one_step_per_tick(self, engine, parser, leave_request):
        instance = engine.start_instance(parser.parse_dict(leave_request), {"days": 1})
        engine.approve(instance.id, "request_submission")

        engine.tick(instance.id)
        assert engine.get_snapshot(instance.id).current_states == ["auto_approve"]
        engine.tick(instance.id)
        assert engine.get_snapshot(instance.id).current_states == ["notify_employee"]

    def test_last_else_wins_when_nothing_matches(self, engine, make_definition):
        definition = make_definition("gate", {
            "gate": {"type": "decision", "conditions": [
                {"else": "first"},
                {"else": "second"},
                {"if": "data.amount > 100", "next": "big"},
            ]},
            "first": {"type": "task"},
            "second": {"type": "task"},
            "big": {"type": "task"},
        }, strict=False)
        instance = engine.start_instance(definition, {"amount": 5})

        engine.tick(instance.id)

        assert engine.get_snapshot(instance.id).current_states == ["second"]

    def test_match_after_else_wins(self, engine, make_definition):
        definition = make_definition("gate", {
            "gate": {"type": "decision", "conditions": [
                {"else": "small"},
                {"if": "data.amount > 100", "next": "big"},
            ]},
            "small": {"type": "task"},
            "big": {"type": "task"},
        })
        instance = engine.start_instance(definition, {"amount": 500})

        engine.tick(instance.id)

        assert engine.get_snapshot(instance.id).current_states == ["big"]

    def test_no_match_without_else_ends_path(self, engine, make_definition):
        definition = make_definition("gate", {
            "gate": {"type": "decision", "conditions": [{"if": "data.x == 1", "next": "one"}]},
            "one": {"type": "task"},
        })
        instance = engine.start_instance(definition, {"x": 2})

        engine.tick(instance.id)
        snapshot = engine.get_snapshot(instance.id)

        assert snapshot.current_states == []
        assert snapshot.status == InstanceStatus.COMPLETED
        assert details(snapshot)[-2:] == ["No condition matched", "Workflow end"]

    def test_malformed_condition_is_false(self, engine, make_definition, caplog):
        definition = make_definition("gate", {
            "gate": {"type": "decision", "conditions": [
                {"if": "data.amount >>> 5", "next": "big"},
                {"else": "small"},
            ]},
            "small": {"type": "task"},
            "big": {"type": "task"},
        })
        instance = engine.start_instance(definition, {"amount": 50})

        with caplog.at_level(logging.WARNING):
            engine.tick(instance.id)

        assert engine.get_snapshot(instance.id).current_states == ["small"]
        assert "data.amount >>> 5" in caplog.text


class TestDefinitionErrors:

    def test_dangling_next_raises_before_mutation(self, engine, make_definition):
        definition = make_definition("a", {"a": {"type": "task", "next": "ghost"}})
        instance = engine.start_instance(definition)

        with pytest.raises(DefinitionError) as exc_info:
            engine.approve(instance.id, "a")

        assert exc_info.value.state_id == "a"
        assert exc_info.value.target == "ghost"
        snapshot = engine.get_snapshot(instance.id)
        assert snapshot.current_states == ["a"]
        assert len(snapshot.history) == 1

    def test_faulted_token_is_parked(self, engine, make_definition):
        definition = make_definition("sync", {"sync": {"type": "system", "next": "ghost"}})
        instance = engine.start_instance(definition)

        with pytest.raises(DefinitionError):
            engine.tick(instance.id)
        assert "sync" in engine.get_snapshot(instance.id).faults

        result = engine.tick(instance.id)
        assert not result.changed

        engine.clear_faults(instance.id)
        with pytest.raises(DefinitionError):
            engine.tick(instance.id)

    def test_token_on_missing_state(self, engine, clock, linear):
        instance = engine.start_instance(linear)
        engine.instances[instance.id].add_token("ghost", clock.now())

        with pytest.raises(UnknownStateError):
            engine.tick(instance.id)

        assert "ghost" in engine.get_snapshot(instance.id).faults

    def test_missing_start_state(self, engine, make_definition):
        definition = make_definition("nowhere", {"a": {"type": "task"}})
        with pytest.raises(DefinitionError):
            engine.start_instance(definition)

    def test_unknown_ids(self, engine):
        with pytest.raises(WorkflowNotFoundError):
            engine.start_instance("missing")
        with pytest.raises(InstanceNotFoundError):
            engine.approve("missing", "a")

    def test_automated_cycle_hits_tick_limit(self, engine, make_definition):
        definition = make_definition("ping", {
            "ping": {"type": "system", "next": "pong"},
            "pong": {"type": "system", "next": "ping"},
        })
        instance = engine.start_instance(definition)

        with pytest.raises(ExecutionLimitError):
            engine.run_until_blocked(instance.id, max_ticks=10)


class TestObservability:

    def test_snapshots_and_finish_event(self, engine, linear):
        snapshots, finished = [], []
        engine.event_bus.subscribe(SNAPSHOT_TOPIC, snapshots.append)
        engine.event_bus.subscribe(FINISHED_TOPIC, finished.append)

        instance = engine.start_instance(linear)
        engine.approve(instance.id, "draft")
        engine.approve(instance.id, "review")
        engine.tick(instance.id)

        assert len(snapshots) == 3
        assert len(finished) == 1
        assert finished[0].payload.status == InstanceStatus.COMPLETED

    def test_transition_metrics(self, engine, clock, linear):
        instance = engine.start_instance(linear)
        clock.advance(seconds=5)
        engine.approve(instance.id, "draft")
        engine.approve(instance.id, "review")

        assert engine.metrics.get_counter(
            "transitions_total", {"action": "approve", "mode": "interactive"}
        ) == 2
        assert engine.metrics.get_observations("state_dwell_seconds", {"state_id": "draft"}) == [5.0]

    def test_list_and_discard(self, engine, linear):
        first = engine.start_instance(linear)
        engine.start_instance(linear)

        assert len(engine.list_instances()) == 2
        engine.discard_instance(first.id)
        assert first.id not in [s.id for s in engine.list_instances()]
        assert len(engine.list_instances()) == 1


def test_deeply_nested_condition_takes_else(engine, make_definition):
    definition = make_definition("gate", {
        "gate": {"type": "decision", "conditions": [
            {"if": "-" * 990 + "1 > 0", "next": "a"},
            {"else": "b"},
        ]},
        "a": {"type": "task"},
        "b": {"type": "task"},
    })
    instance = engine.start_instance(definition)

    result = engine.tick(instance.id)

    assert result.advanced == ["gate"]
    assert engine.get_snapshot(instance.id).current_states == ["b"]
