"""Sandboxed condition expressions for decision states.

Expressions are written against a single bound variable (``data`` by
default), e.g. ``data.amount > 1000 && data.type == "Cash"``. The source is
normalised into Python syntax, parsed with :mod:`ast` and walked by a small
interpreter that only knows literals, the bound variable, field access,
arithmetic, comparisons and boolean connectives. No builtins, attribute
lookups on Python objects or calls are reachable.

Supported:
- Comparisons: ``>``, ``<``, ``>=``, ``<=``, ``==``, ``!=`` (``===``/``!==`` alias)
- Boolean logic: ``&&``, ``||``, ``!`` (and ``and``/``or``/``not``)
- Literals: numbers, strings, ``true``/``false``/``null``/``undefined``, lists
- Field access: ``data.a.b``, ``data["a"]``, ``data.items[0]``, ``.length``
- Arithmetic: ``+``, ``-``, ``*``, ``/``, ``%``
"""
from __future__ import annotations

import ast
import logging
import operator
import re
from functools import lru_cache
from typing import Any, Dict, List, Mapping

from ..exceptions import ConditionEvaluationError

logger = logging.getLogger(__name__)

MAX_EXPRESSION_LENGTH = 1000
# the interpreter recurses once per level
MAX_NESTING_DEPTH = 100

_COMPARE_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.In: lambda a, b: a in b,
    ast.NotIn: lambda a, b: a not in b,
}

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: operator.mod,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

_CONSTANTS = {
    "true": True,
    "True": True,
    "false": False,
    "False": False,
    "null": None,
    "undefined": None,
    "None": None,
}

_STRING_LITERAL = re.compile(r"""("(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')""")

_REWRITES = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]


def normalize(expression: str) -> str:
    """Rewrite JavaScript-style operators into Python, leaving strings alone"""
    parts = _STRING_LITERAL.split(expression)
    for index in range(0, len(parts), 2):
        code = parts[index]
        for pattern, replacement in _REWRITES:
            code = pattern.sub(replacement, code)
        parts[index] = code
    return "".join(parts).strip()


@lru_cache(maxsize=512)
def compile_expression(expression: str) -> ast.expr:
    """Parse an expression once; raises ConditionEvaluationError"""
    if not expression or not expression.strip():
        raise ConditionEvaluationError(expression, "expression is empty")
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise ConditionEvaluationError(
            expression, f"expression longer than {MAX_EXPRESSION_LENGTH} characters"
        )
    try:
        tree = ast.parse(normalize(expression), mode="eval")
    except SyntaxError as e:
        raise ConditionEvaluationError(expression, f"invalid syntax: {e.msg}") from e
    except (RecursionError, MemoryError) as e:
        raise ConditionEvaluationError(expression, "expression is nested too deeply") from e
    if _nesting_depth(tree.body) > MAX_NESTING_DEPTH:
        raise ConditionEvaluationError(
            expression, f"expression nested deeper than {MAX_NESTING_DEPTH} levels"
        )
    return tree.body


def _nesting_depth(node: ast.AST) -> int:
    deepest = 0
    stack = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((child, depth + 1) for child in ast.iter_child_nodes(current))
    return deepest


class _Interpreter:
    """Walks a parsed expression against the bound variables"""

    def __init__(self, expression: str, variables: Mapping[str, Any]):
        self.expression = expression
        self.variables = variables

    def fail(self, message: str) -> ConditionEvaluationError:
        return ConditionEvaluationError(self.expression, message)

    def eval(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in _CONSTANTS:
                return _CONSTANTS[node.id]
            if node.id in self.variables:
                return self.variables[node.id]
            raise self.fail(f"unknown variable '{node.id}'")

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result = True
                for value in node.values:
                    result = self.eval(value)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self.eval(value)
                if result:
                    return result
            return result

        if isinstance(node, ast.Compare):
            left = self.eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                op_func = _COMPARE_OPS.get(type(op))
                if op_func is None:
                    raise self.fail(f"unsupported comparison {type(op).__name__}")
                right = self.eval(comparator)
                if not op_func(left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.UnaryOp):
            op_func = _UNARY_OPS.get(type(node.op))
            if op_func is None:
                raise self.fail(f"unsupported operator {type(node.op).__name__}")
            return op_func(self.eval(node.operand))

        if isinstance(node, ast.BinOp):
            op_func = _BIN_OPS.get(type(node.op))
            if op_func is None:
                raise self.fail(f"unsupported operator {type(node.op).__name__}")
            return op_func(self.eval(node.left), self.eval(node.right))

        if isinstance(node, ast.Attribute):
            return self.member(self.eval(node.value), node.attr)

        if isinstance(node, ast.Subscript):
            return self.member(self.eval(node.value), self.eval(node.slice))

        if isinstance(node, (ast.List, ast.Tuple)):
            return [self.eval(element) for element in node.elts]

        raise self.fail(f"unsupported syntax {type(node).__name__}")

    def member(self, value: Any, key: Any) -> Any:
        # Missing keys read as null, like an undefined property.
        if isinstance(value, Mapping):
            return value.get(key)
        if isinstance(value, (list, tuple, str)):
            if key == "length":
                return len(value)
            if isinstance(key, int) and not isinstance(key, bool):
                return value[key] if -len(value) <= key < len(value) else None
        raise self.fail(f"cannot read '{key}' of {type(value).__name__}")


class ConditionEvaluator:
    """Evaluates decision conditions against an instance's data.

    Failures of any kind are logged and evaluate to ``False`` so that one
    broken rule cannot take the instance down.
    """

    def __init__(self, variable_name: str = "data"):
        self.variable_name = variable_name

    def evaluate(self, expression: str, context: Any) -> bool:
        try:
            return bool(self.evaluate_value(expression, context))
        except ConditionEvaluationError as e:
            logger.warning(str(e))
        except (TypeError, ValueError, ArithmeticError, IndexError, RecursionError) as e:
            logger.warning(f"Failed to evaluate condition '{expression}': {e}")
        return False

    def evaluate_value(self, expression: str, context: Any) -> Any:
        """Evaluate without the fail-safe; errors propagate"""
        node = compile_expression(expression)
        interpreter = _Interpreter(expression, {self.variable_name: context})
        return interpreter.eval(node)

    def validate(self, expression: str) -> List[str]:
        """Return syntax problems of an expression without evaluating it"""
        try:
            compile_expression(expression)
        except ConditionEvaluationError as e:
            return [str(e)]
        return []
