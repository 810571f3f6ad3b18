"""
Pytest configuration and shared fixtures
"""
import pytest

from process_engine.config import EngineSettings
from process_engine.core import DefinitionParser, ManualClock, WorkflowEngine


@pytest.fixture
def clock():
    return ManualClock(start=1_700_000_000.0)


@pytest.fixture
def settings():
    return EngineSettings(auto_tick=False)


@pytest.fixture
def engine(clock, settings):
    return WorkflowEngine(clock=clock, settings=settings)


@pytest.fixture
def parser():
    return DefinitionParser()


@pytest.fixture
def make_definition(parser):
    """Build a definition from a start state and a states mapping"""
    def _make(start, states, workflow_id="wf", strict=True):
        payload = {
            "workflowId": workflow_id,
            "version": 1,
            "name": f"Workflow {workflow_id}",
            "start": start,
            "states": states,
        }
        return (parser if strict else DefinitionParser(strict=False)).parse_dict(payload)
    return _make


@pytest.fixture
def complex_transaction():
    """Maker/checker flow with parallel reviews, an SLA and a decision"""
    return {
        "workflowId": "txn_complex_v1",
        "version": 1,
        "name": "Complex Transaction Approval",
        "start": "maker_submit",
        "states": {
            "maker_submit": {"type": "task", "role": "maker", "next": "parallel_reviews"},
            "parallel_reviews": {
                "type": "parallel",
                "branches": ["finance_review", "legal_review"],
                "next": "risk_decision",
                "completionRule": "any",
            },
            "finance_review": {"type": "task", "role": "finance", "slaDuration": 60000},
            "legal_review": {"type": "task", "role": "legal"},
            "risk_decision": {
                "type": "decision",
                "conditions": [
                    {"if": "data.amount > 1000", "next": "ceo_approval"},
                    {"else": "finalize"},
                ],
            },
            "ceo_approval": {
                "type": "multi-approver",
                "roleGroup": "CEO",
                "approvalRule": "oneOf",
                "next": "finalize",
            },
            "finalize": {"type": "system", "action": "completeTransaction", "next": None},
        },
    }


@pytest.fixture
def leave_request():
    return {
        "workflowId": "simple_leave_request",
        "version": 1,
        "name": "Simple Leave Request",
        "start": "request_submission",
        "states": {
            "request_submission": {"type": "task", "role": "employee", "next": "manager_approval"},
            "manager_approval": {
                "type": "decision",
                "conditions": [
                    {"if": "data.days < 3", "next": "auto_approve"},
                    {"else": "hr_approval"},
                ],
            },
            "hr_approval": {"type": "task", "role": "hr_admin", "next": "notify_employee"},
            "auto_approve": {"type": "system", "action": "approveRequest", "next": "notify_employee"},
            "notify_employee": {"type": "system", "action": "sendEmail", "next": None},
        },
    }
