"""
Workflow execution engine
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from ..config import EngineSettings
from ..exceptions import (
    DefinitionError, ExecutionLimitError, InstanceNotFoundError,
    UnknownStateError, WorkflowNotFoundError
)
from ..integrations.event_bus import EventBus, FINISHED_TOPIC, SNAPSHOT_TOPIC
from ..models.definition import (
    TERMINATE, CompletionRule, ExecutionMode, WorkflowDefinition, WorkflowState
)
from ..models.instance import (
    START_MARKER, HistoryAction, HistoryEntry, InstanceState, TaskInstance,
    TransitionAction
)
from ..monitoring import (
    JOINS_TOTAL, SLA_TIMEOUTS_TOTAL, STATE_DWELL_SECONDS, TRANSITIONS_TOTAL,
    EventLogger, MetricsRecorder
)
from .behavior import BehaviorResolver
from .clock import Clock, SystemClock
from .expressions import ConditionEvaluator
from .projector import TaskInstanceProjector


logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """What one scheduling pass did to an instance"""
    instance_id: str
    timed_out: List[str] = field(default_factory=list)
    advanced: List[str] = field(default_factory=list)
    merged: List[str] = field(default_factory=list)
    errors: List[DefinitionError] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.timed_out or self.advanced or self.merged)


class WorkflowEngine:
    """Token-based interpreter for workflow definitions.

    Each instance owns an :class:`InstanceState`; its ``current_states``
    holds one token per active state. Interactive states wait for
    :meth:`approve` / :meth:`reject`, every other mode is driven by
    :meth:`tick`, which the host calls on a fixed cadence (or repeatedly
    through :meth:`run_until_blocked`). A tick checks SLA deadlines, advances
    the automatic tokens that were active when it began and finally merges
    the parallel joins that became complete, so that all branches finishing
    in the same pass are recorded before the merge token is created.
    """

    def __init__(
        self,
        resolver: BehaviorResolver = None,
        evaluator: ConditionEvaluator = None,
        clock: Clock = None,
        event_bus: EventBus = None,
        settings: EngineSettings = None,
        metrics: MetricsRecorder = None,
        event_logger: EventLogger = None
    ):
        self.settings = settings or EngineSettings()
        self.resolver = resolver or BehaviorResolver()
        self.evaluator = evaluator or ConditionEvaluator(self.settings.condition_variable)
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricsRecorder()
        self.events = event_logger or EventLogger()
        self.projector = TaskInstanceProjector()

        self.workflows: Dict[str, WorkflowDefinition] = {}
        self.instances: Dict[str, InstanceState] = {}
        self._announced: set = set()

    # -- workflows -------------------------------------------------------

    def register_workflow(self, definition: WorkflowDefinition):
        """Register (or replace) a workflow definition"""
        self.workflows[definition.workflow_id] = definition
        logger.info(f"Registered workflow: {definition.workflow_id} v{definition.version}")

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        definition = self.workflows.get(workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return definition

    # -- instances -------------------------------------------------------

    def start_instance(
        self,
        workflow: Union[str, WorkflowDefinition],
        data: Dict[str, Any] = None,
        instance_id: str = None
    ) -> TaskInstance:
        """Create an instance with one token on the start state"""
        if isinstance(workflow, WorkflowDefinition):
            self.register_workflow(workflow)
            definition = workflow
        else:
            definition = self.get_workflow(workflow)

        if definition.start not in definition.states:
            raise DefinitionError(START_MARKER, definition.start, "start state is not defined")

        now = self.clock.now()
        state = InstanceState(
            instance_id=instance_id or uuid4().hex,
            workflow_id=definition.workflow_id,
            workflow_name=definition.name,
            data=dict(data or {}),
            created_at=now,
            updated_at=now,
        )
        self._record(state, START_MARKER, HistoryAction.START, f"Workflow started at {definition.start}")
        state.add_token(definition.start, now)
        self.instances[state.instance_id] = state

        self.events.log(
            "instance_started",
            instance_id=state.instance_id,
            workflow_id=definition.workflow_id,
        )
        return self._emit(state)

    def get_snapshot(self, instance_id: str) -> TaskInstance:
        return self.projector.project(self._get_instance(instance_id))

    def list_instances(self) -> List[TaskInstance]:
        return [self.projector.project(state) for state in self.instances.values()]

    def discard_instance(self, instance_id: str):
        self.instances.pop(instance_id, None)
        self._announced.discard(instance_id)

    def clear_faults(self, instance_id: str) -> TaskInstance:
        """Let faulted tokens and joins be retried on the next tick"""
        state = self._get_instance(instance_id)
        state.faults.clear()
        return self._emit(state)

    # -- user decisions --------------------------------------------------

    def approve(self, instance_id: str, state_id: str) -> TaskInstance:
        return self._decide(instance_id, state_id, TransitionAction.APPROVE)

    def reject(self, instance_id: str, state_id: str) -> TaskInstance:
        return self._decide(instance_id, state_id, TransitionAction.REJECT)

    def _decide(self, instance_id: str, state_id: str, action: TransitionAction) -> TaskInstance:
        state = self._get_instance(instance_id)
        if not state.has_token(state_id):
            logger.debug(f"Ignoring {action.value} on inactive state '{state_id}' ({instance_id})")
            return self.projector.project(state)

        definition = self._definition_for(state)
        workflow_state = definition.get_state(state_id)
        if workflow_state is None:
            raise UnknownStateError(state_id)

        mode = self.resolver.mode_of(workflow_state)
        if mode != ExecutionMode.INTERACTIVE:
            logger.debug(f"Ignoring {action.value} on {mode.value} state '{state_id}' ({instance_id})")
            return self.projector.project(state)

        self._transition(state, definition, state_id, action)
        return self._emit(state)

    def transition(
        self,
        instance_id: str,
        state_id: str,
        action: Union[str, TransitionAction]
    ) -> TaskInstance:
        """Apply one transition to an active token regardless of its mode"""
        action = TransitionAction(action)
        state = self._get_instance(instance_id)
        if not state.has_token(state_id):
            logger.debug(f"Ignoring {action.value} on inactive state '{state_id}' ({instance_id})")
            return self.projector.project(state)

        self._transition(state, self._definition_for(state), state_id, action)
        return self._emit(state)

    # -- scheduling ------------------------------------------------------

    def tick(self, instance_id: str) -> TickResult:
        """Run one scheduling pass over an instance.

        A DefinitionError on one token is recorded in ``faults`` and does not
        stop the other tokens; the first such error is raised once the pass
        is complete.
        """
        state = self._get_instance(instance_id)
        result = TickResult(instance_id=instance_id)
        if state.is_finished():
            return result

        definition = self._definition_for(state)
        now = self.clock.now()
        processed = set()

        for state_id in list(state.current_states):
            if state_id in state.faults or not self._sla_breached(state, definition, state_id, now):
                continue
            processed.add(state_id)
            if self._guarded(state, state_id, result, lambda sid=state_id: self._transition(
                state, definition, sid, TransitionAction.TIMEOUT
            )):
                result.timed_out.append(state_id)

        for state_id in list(state.current_states):
            if state_id in processed or state_id in state.faults or not state.has_token(state_id):
                continue
            processed.add(state_id)
            workflow_state = definition.get_state(state_id)
            if workflow_state is None:
                self._fault(state, state_id, UnknownStateError(state_id), result)
                continue
            if not self.resolver.mode_of(workflow_state).is_automatic:
                continue
            if self._guarded(state, state_id, result, lambda sid=state_id: self._transition(
                state, definition, sid, TransitionAction.AUTO
            )):
                result.advanced.append(state_id)

        now = self.clock.now()
        for parent_id, ready_at in list(state.pending_joins.items()):
            if parent_id in state.faults or now < ready_at:
                continue
            if self._guarded(state, parent_id, result, lambda pid=parent_id: self._merge_join(
                state, definition, pid
            )):
                result.merged.append(parent_id)

        if result.changed or result.errors:
            self._emit(state)
        if result.errors:
            raise result.errors[0]
        return result

    def tick_all(self) -> List[TickResult]:
        """Tick every running instance; definition errors are logged only"""
        results = []
        for instance_id in list(self.instances):
            try:
                results.append(self.tick(instance_id))
            except DefinitionError as e:
                logger.debug(f"Tick of {instance_id} surfaced a definition error: {e}")
        return results

    def run_until_blocked(self, instance_id: str, max_ticks: int = None) -> TaskInstance:
        """Tick until the instance finishes or waits for outside input"""
        limit = max_ticks or self.settings.max_ticks
        for _ in range(limit):
            if not self.tick(instance_id).changed:
                return self.get_snapshot(instance_id)
        raise ExecutionLimitError(
            f"Instance {instance_id} still changing after {limit} ticks"
        )

    # -- transition function ---------------------------------------------

    def _transition(
        self,
        state: InstanceState,
        definition: WorkflowDefinition,
        state_id: str,
        action: TransitionAction
    ) -> bool:
        workflow_state = definition.get_state(state_id)
        if workflow_state is None:
            raise UnknownStateError(state_id)

        mode = self.resolver.mode_of(workflow_state)
        now = self.clock.now()
        notes: List[Tuple[HistoryAction, str]] = []
        reroute: Optional[Tuple[HistoryAction, str]] = None
        target: Optional[str] = None

        if action == TransitionAction.TIMEOUT:
            if not workflow_state.on_timeout:
                logger.debug(f"Timeout on '{state_id}' without onTimeout route, ignored")
                return False
            target = workflow_state.on_timeout
            reroute = (HistoryAction.AUTO, f"SLA of {workflow_state.sla_ms:.0f}ms breached")
            self.metrics.inc(SLA_TIMEOUTS_TOTAL)
            self.events.log(
                "sla_breached", instance_id=state.instance_id, state_id=state_id, target=target
            )

        elif action == TransitionAction.REJECT:
            if not workflow_state.on_reject:
                # No reject route: the whole instance stops, every branch included.
                self._record(state, state_id, HistoryAction.REJECT, "Rejected. Workflow stopped.")
                for token in list(state.current_states):
                    self._leave(state, token, now)
                state.clear_tokens()
                self._count(action, mode)
                return True
            target = workflow_state.on_reject
            reroute = (HistoryAction.REJECT, "Rejected")

        else:
            if action == TransitionAction.APPROVE:
                notes.append((HistoryAction.APPROVE, self._approval_details(workflow_state)))

            if mode == ExecutionMode.DECISION:
                target, details = self._route_decision(state, state_id, workflow_state)
                notes.append((HistoryAction.AUTO, details))
            elif mode == ExecutionMode.AUTOMATED:
                notes.append((HistoryAction.AUTO, f"System action executed: {workflow_state.action}"))
                target = workflow_state.next
            elif mode == ExecutionMode.PARALLEL and workflow_state.branches:
                self._fork(state, definition, state_id, workflow_state, now)
                self._count(action, mode)
                return True
            else:
                target = workflow_state.next

        parent_id = self._find_parallel_parent(definition, state_id)
        if parent_id is not None:
            if reroute:
                notes.append((reroute[0], f"{reroute[1]}. Branch of {parent_id} finished"))
            for history_action, details in notes:
                self._record(state, state_id, history_action, details)
            self._finish_branch(state, definition, parent_id, state_id, now)
            self._count(action, mode)
            return True

        if not definition.is_valid_target(target):
            raise DefinitionError(state_id, target)

        if reroute:
            notes.append((reroute[0], f"{reroute[1]}. Moving to {target}"))
        for history_action, details in notes:
            self._record(state, state_id, history_action, details)

        self._leave(state, state_id, now)
        if target == TERMINATE:
            self._record(state, state_id, HistoryAction.AUTO, "Path terminated")
        elif target:
            state.add_token(target, now)
            if not notes:
                self._record(state, state_id, HistoryAction.AUTO, f"Moved to {target}")
        else:
            self._record(state, state_id, HistoryAction.AUTO, "Workflow end")

        self._count(action, mode)
        return True

    def _route_decision(
        self,
        state: InstanceState,
        state_id: str,
        workflow_state: WorkflowState
    ) -> Tuple[Optional[str], str]:
        """Pick the target of a decision state.

        ``if`` entries are tried in order and the first true one wins. A
        fallback applies only while nothing has matched; when several are
        passed before a match, the last one seen is kept.
        """
        target = None
        details = None
        for condition in workflow_state.conditions:
            if condition.if_ is not None:
                if self.evaluator.evaluate(condition.if_, state.data):
                    target = condition.next
                    details = f"Condition matched: {condition.if_} -> {target}"
                    break
            elif condition.is_fallback:
                target = condition.target
                details = f"Else condition -> {target}"

        if details is None:
            logger.debug(f"No condition of decision '{state_id}' matched ({state.instance_id})")
            details = "No condition matched"
        return target, details

    def _fork(
        self,
        state: InstanceState,
        definition: WorkflowDefinition,
        state_id: str,
        workflow_state: WorkflowState,
        now: float
    ):
        for branch in workflow_state.branches:
            if branch not in definition.states:
                raise DefinitionError(state_id, branch, "parallel branch is not defined")

        self._record(
            state, state_id, HistoryAction.AUTO,
            f"Spawning branches: {', '.join(workflow_state.branches)}"
        )
        self._leave(state, state_id, now)
        state.parallel_completion[state_id] = []
        state.merged_joins.discard(state_id)
        state.pending_joins.pop(state_id, None)
        for branch in workflow_state.branches:
            state.add_token(branch, now)

    def _find_parallel_parent(self, definition: WorkflowDefinition, state_id: str) -> Optional[str]:
        for candidate_id, candidate in definition.states.items():
            if candidate_id == state_id or state_id not in candidate.branches:
                continue
            if self.resolver.mode_of(candidate) == ExecutionMode.PARALLEL:
                return candidate_id
        return None

    def _finish_branch(
        self,
        state: InstanceState,
        definition: WorkflowDefinition,
        parent_id: str,
        branch_id: str,
        now: float
    ):
        self._leave(state, branch_id, now)

        finished = state.parallel_completion.setdefault(parent_id, [])
        if branch_id not in finished:
            finished.append(branch_id)

        if parent_id in state.merged_joins:
            return

        parent = definition.states[parent_id]
        if parent.completion_rule == CompletionRule.ANY:
            complete = True
        else:
            complete = all(branch in finished for branch in parent.branches)

        if complete:
            state.merged_joins.add(parent_id)
            state.pending_joins[parent_id] = now + self.settings.join_delay_ms / 1000.0
            self._record(
                state, parent_id, HistoryAction.AUTO,
                f"Parallel completion rule '{parent.completion_rule.value}' met. Merging."
            )

    def _merge_join(self, state: InstanceState, definition: WorkflowDefinition, parent_id: str) -> bool:
        parent = definition.get_state(parent_id)
        if parent is None:
            raise UnknownStateError(parent_id, "parallel parent disappeared before its join")
        if not definition.is_valid_target(parent.next):
            raise DefinitionError(parent_id, parent.next)

        now = self.clock.now()
        del state.pending_joins[parent_id]
        for branch in parent.branches:
            if state.has_token(branch):
                self._leave(state, branch, now)

        if parent.next == TERMINATE:
            self._record(state, parent_id, HistoryAction.AUTO, "Path terminated")
        elif parent.next:
            state.add_token(parent.next, now)
        else:
            self._record(state, parent_id, HistoryAction.AUTO, "Workflow end")

        self.metrics.inc(JOINS_TOTAL, {"rule": parent.completion_rule.value})
        self.events.log(
            "join_merged", instance_id=state.instance_id, state_id=parent_id, target=parent.next
        )
        return True

    # -- helpers ---------------------------------------------------------

    def _sla_breached(
        self,
        state: InstanceState,
        definition: WorkflowDefinition,
        state_id: str,
        now: float
    ) -> bool:
        workflow_state = definition.get_state(state_id)
        if workflow_state is None or not workflow_state.on_timeout:
            return False
        sla_ms = workflow_state.sla_ms
        entered_at = state.entered_at.get(state_id)
        if not sla_ms or sla_ms <= 0 or entered_at is None:
            return False
        return (now - entered_at) * 1000.0 > sla_ms

    def _guarded(
        self,
        state: InstanceState,
        key: str,
        result: TickResult,
        step: Callable[[], bool]
    ) -> bool:
        try:
            return step()
        except DefinitionError as e:
            self._fault(state, key, e, result)
            return False

    def _fault(self, state: InstanceState, key: str, error: DefinitionError, result: TickResult):
        logger.error(
            f"Instance {state.instance_id}: {error} (state={error.state_id}, target={error.target})"
        )
        state.faults[key] = str(error)
        result.errors.append(error)

    def _leave(self, state: InstanceState, state_id: str, now: float):
        entered_at = state.remove_token(state_id)
        if entered_at is not None:
            self.metrics.observe(
                STATE_DWELL_SECONDS, now - entered_at, labels={"state_id": state_id}
            )

    def _record(self, state: InstanceState, state_id: str, action: HistoryAction, details: str = None):
        state.history.append(HistoryEntry(
            timestamp=self.clock.now_datetime(),
            state_id=state_id,
            action=action,
            details=details,
        ))
        state.updated_at = self.clock.now()

    def _count(self, action: TransitionAction, mode: ExecutionMode):
        self.metrics.inc(TRANSITIONS_TOTAL, {"action": action.value, "mode": mode.value})

    @staticmethod
    def _approval_details(workflow_state: WorkflowState) -> str:
        assignee = workflow_state.role or workflow_state.role_group
        return f"Approved by {assignee}" if assignee else "Approved"

    def _definition_for(self, state: InstanceState) -> WorkflowDefinition:
        return self.get_workflow(state.workflow_id)

    def _get_instance(self, instance_id: str) -> InstanceState:
        state = self.instances.get(instance_id)
        if state is None:
            raise InstanceNotFoundError(f"Instance not found: {instance_id}")
        return state

    def _emit(self, state: InstanceState) -> TaskInstance:
        snapshot = self.projector.project(state)
        self.event_bus.publish(SNAPSHOT_TOPIC, snapshot)
        if state.is_finished() and state.instance_id not in self._announced:
            self._announced.add(state.instance_id)
            self.event_bus.publish(FINISHED_TOPIC, snapshot)
            self.events.log(
                "instance_finished",
                instance_id=state.instance_id,
                status=snapshot.status.value,
            )
        return snapshot
