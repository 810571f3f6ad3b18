"""
Process engine usage example
"""
import json
import logging
from pathlib import Path

from src.process_engine import DefinitionParser, WorkflowEngine
from src.process_engine.core import ManualClock
from src.process_engine.integrations import SNAPSHOT_TOPIC


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

EXAMPLES = Path(__file__).parent


def print_snapshot(title, snapshot):
    print(f"\n=== {title} ===")
    print(f"status: {snapshot.status.value}, active: {snapshot.current_states}")
    for entry in snapshot.history:
        print(f"  [{entry.state_id}] {entry.action.value}: {entry.details}")


def example_complex_transaction(engine: WorkflowEngine, clock: ManualClock):
    """Approval with parallel reviews, an SLA and a decision"""
    definition = DefinitionParser().parse_file(EXAMPLES / "complex_transaction.yaml")
    instance = engine.start_instance(definition, {"amount": 1000000, "type": "Cash"})

    engine.approve(instance.id, "maker_submit")
    engine.run_until_blocked(instance.id)

    # one review is enough under the "any" rule
    engine.approve(instance.id, "legal_review")
    snapshot = engine.run_until_blocked(instance.id)
    print_snapshot("after legal review", snapshot)

    clock.advance(seconds=5)
    engine.approve(instance.id, "ceo_approval")
    snapshot = engine.run_until_blocked(instance.id)
    print_snapshot("complex transaction", snapshot)


def example_leave_request(engine: WorkflowEngine):
    """Short leave is approved automatically"""
    definition = DefinitionParser().parse_file(EXAMPLES / "leave_request.json")
    instance = engine.start_instance(definition, {"days": 2})

    engine.approve(instance.id, "request_submission")
    snapshot = engine.run_until_blocked(instance.id)
    print_snapshot("leave request", snapshot)
    print(json.dumps(snapshot.to_dict(), indent=2))


def main():
    clock = ManualClock()
    engine = WorkflowEngine(clock=clock)
    updates = []
    engine.event_bus.subscribe(SNAPSHOT_TOPIC, updates.append)

    example_complex_transaction(engine, clock)
    example_leave_request(engine)
    print(f"\n{len(updates)} snapshots published")


if __name__ == "__main__":
    main()
