"""
Condition evaluator tests
"""
import logging

import pytest

from process_engine.core.expressions import ConditionEvaluator, normalize
from process_engine.exceptions import ConditionEvaluationError


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


DATA = {
    "amount": 1500,
    "type": "Cash",
    "approved": False,
    "customer": {"tier": "gold", "tags": ["vip", "new"]},
}


@pytest.mark.parametrize("expression, expected", [
    ("data.amount > 1000", True),
    ("data.amount <= 1000", False),
    ("data.type === 'Cash'", True),
    ('data.type !== "Cash"', False),
    ("data.amount > 1000 && data.type == 'Cash'", True),
    ("data.amount < 10 || data.customer.tier == 'gold'", True),
    ("!data.approved", True),
    ("data.customer.tags.length == 2", True),
    ("data.customer.tags[0] == 'vip'", True),
    ("data['type'] == 'Cash'", True),
    ("data.amount % 2 == 0 && data.amount * 2 > 2000", True),
    ("'vip' in data.customer.tags", True),
    ("data.missing == null", True),
    ("data.missing === undefined", True),
])
def test_evaluate(evaluator, expression, expected):
    assert evaluator.evaluate(expression, DATA) is expected


def test_operators_inside_strings_are_kept():
    assert normalize("data.note == 'a && b || !c'") == "data.note == 'a && b || !c'"
    assert " ".join(normalize("data.a === 1 && !data.b").split()) == "data.a == 1 and not data.b"


def test_missing_nested_field_is_false(evaluator, caplog):
    with caplog.at_level(logging.WARNING):
        assert evaluator.evaluate("data.customer.address.city == 'Paris'", DATA) is False
    assert "address" in caplog.text


@pytest.mark.parametrize("expression", [
    "data.amount >>> 5",
    "",
    "__import__('os').system('true')",
    "data.__class__",
    "lambda: 1",
    "unknown_name > 1",
])
def test_unsafe_or_broken_expressions_are_false(evaluator, expression):
    assert evaluator.evaluate(expression, DATA) is False


def test_type_errors_are_false(evaluator):
    assert evaluator.evaluate("data.type > 5", DATA) is False


def test_evaluate_value_propagates(evaluator):
    with pytest.raises(ConditionEvaluationError):
        evaluator.evaluate_value("data.amount >>> 5", DATA)
    assert evaluator.evaluate_value("data.amount + 500", DATA) == 2000


def test_custom_variable_name():
    evaluator = ConditionEvaluator(variable_name="ctx")
    assert evaluator.evaluate("ctx.amount > 1", {"amount": 2}) is True
    assert evaluator.evaluate("data.amount > 1", {"amount": 2}) is False


def test_validate(evaluator):
    assert evaluator.validate("data.amount > 1") == []
    problems = evaluator.validate("data.amount >")
    assert len(problems) == 1
    assert "invalid syntax" in problems[0]


def test_deeply_nested_expression_is_false(evaluator, caplog):
    expression = "-" * 990 + "1 > 0"

    with caplog.at_level(logging.WARNING):
        assert evaluator.evaluate(expression, DATA) is False

    assert "nested" in caplog.text
    assert evaluator.validate("not " * 150 + "true") != []
