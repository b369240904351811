"""
Safe Expressions - Restricted evaluator for user-supplied aggregation expressions.

Expressions are parsed with ``ast`` and walked node by node; only the
node types and functions listed here are evaluated. There is no access
to attributes of Python objects, imports, or builtins outside the
whitelist, so user expressions cannot reach the interpreter.

Supported:
- literals, list/tuple/dict displays
- arithmetic, comparisons, ``and``/``or``/``not``, ``x if c else y``
- ``item.field`` / ``item["field"]`` / ``items[0]`` on dicts and lists
- ``items.length`` (JS-style length)
- single-generator comprehensions: ``[i["n"] for i in items if i["n"] > 1]``
- lambdas (for folds): ``reduce(lambda acc, i: acc + i.price, items, 0)``
- functions: len, sum, min, max, sorted, round, abs, str, int, float,
  bool, list, reduce, add, mul
"""

from __future__ import annotations

import ast
import operator
from functools import reduce
from typing import Any, Callable, Dict, Optional

from .errors import ErrorCode, ExecutionError


MAX_EXPRESSION_LENGTH = 2000
MAX_POWER_EXPONENT = 100
MAX_REPEAT = 10_000
MAX_INT_BITS = 4096


class ExpressionError(ExecutionError):
    """Expression could not be parsed or evaluated."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(
            ErrorCode.EXPRESSION_ERROR,
            message,
            retryable=False,
            details={"expression": expression} if expression else None,
        )
        self.expression = expression


def _check_size(value: Any) -> Any:
    if isinstance(value, (str, list, tuple)) and len(value) > MAX_REPEAT:
        raise ValueError("Result too large")
    if isinstance(value, int) and value.bit_length() > MAX_INT_BITS:
        raise ValueError("Integer result too large")
    return value


def _safe_pow(base: Any, exponent: Any) -> Any:
    if isinstance(exponent, (int, float)) and abs(exponent) > MAX_POWER_EXPONENT:
        raise ValueError("Exponent too large")
    # Reject before computing, the result can be huge even for a small exponent
    if isinstance(base, int) and isinstance(exponent, int) and base.bit_length() * exponent > MAX_INT_BITS:
        raise ValueError("Integer result too large")
    return _check_size(operator.pow(base, exponent))


def _safe_mul(left: Any, right: Any) -> Any:
    for seq, count in ((left, right), (right, left)):
        if isinstance(seq, (str, list, tuple)) and isinstance(count, int):
            if count > MAX_REPEAT or len(seq) * max(count, 0) > MAX_REPEAT:
                raise ValueError("Sequence repetition too large")
    if isinstance(left, int) and isinstance(right, int) and left.bit_length() + right.bit_length() > MAX_INT_BITS + 1:
        raise ValueError("Integer result too large")
    return _check_size(operator.mul(left, right))


def _safe_add(left: Any, right: Any) -> Any:
    if isinstance(left, (str, list, tuple)) and isinstance(right, (str, list, tuple)):
        if len(left) + len(right) > MAX_REPEAT:
            raise ValueError("Result too large")
    return _check_size(operator.add(left, right))


_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: _safe_add,
    ast.Sub: operator.sub,
    ast.Mult: _safe_mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: _safe_pow,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda x, y: x in y,
    ast.NotIn: lambda x, y: x not in y,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "len": len,
    "sum": sum,
    "min": min,
    "max": max,
    "sorted": sorted,
    "round": round,
    "abs": abs,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "list": list,
    "reduce": reduce,
    "add": _safe_add,
    "mul": _safe_mul,
}

_CONSTANTS = {"true": True, "false": False, "null": None}


class SafeExpressionEvaluator:
    """
    Evaluate a restricted Python-syntax expression against named values.

    Usage:
        evaluator = SafeExpressionEvaluator()
        total = evaluator.evaluate("sum(i.price for i in items)", {"items": rows})
    """

    def evaluate(self, expression: str, names: Optional[Dict[str, Any]] = None) -> Any:
        if not isinstance(expression, str) or not expression.strip():
            raise ExpressionError("Expression is empty", str(expression or ""))
        if len(expression) > MAX_EXPRESSION_LENGTH:
            raise ExpressionError("Expression is too long", expression[:100])

        try:
            tree = ast.parse(expression.strip(), mode="eval")
        except SyntaxError as e:
            raise ExpressionError(f"Syntax error in expression: {e.msg}", expression) from e

        try:
            return self._eval(tree.body, dict(names or {}))
        except ExpressionError:
            raise
        except Exception as e:
            raise ExpressionError(f"Expression evaluation failed: {e}", expression) from e

    def _eval(self, node: ast.AST, scope: Dict[str, Any]) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            if node.id in scope:
                return scope[node.id]
            if node.id in _FUNCTIONS:
                return _FUNCTIONS[node.id]
            if node.id in _CONSTANTS:
                return _CONSTANTS[node.id]
            raise NameError(f"Name '{node.id}' is not defined")

        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise ValueError(f"Access to '{node.attr}' is not allowed")
            obj = self._eval(node.value, scope)
            if obj is None:
                return None
            if node.attr == "length" and isinstance(obj, (list, tuple, str)):
                return len(obj)
            # Attribute access reads dict keys only
            if isinstance(obj, dict):
                return obj.get(node.attr)
            raise ValueError(f"Cannot read '{node.attr}' of {type(obj).__name__}")

        if isinstance(node, ast.Subscript):
            obj = self._eval(node.value, scope)
            if isinstance(node.slice, ast.Slice):
                return obj[self._eval_slice(node.slice, scope)]
            key = self._eval(node.slice, scope)
            if obj is None:
                return None
            if isinstance(obj, dict):
                return obj.get(key)
            if isinstance(obj, (list, tuple, str)) and isinstance(key, int):
                return obj[key] if -len(obj) <= key < len(obj) else None
            raise ValueError(f"Cannot index {type(obj).__name__}")

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPS.get(type(node.op))
            if op is None:
                raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
            return op(self._eval(node.left, scope), self._eval(node.right, scope))

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise ValueError(f"Unsupported operator: {type(node.op).__name__}")
            return op(self._eval(node.operand, scope))

        if isinstance(node, ast.BoolOp):
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval(value, scope)
                    if not result:
                        return result
                return result
            result = False
            for value in node.values:
                result = self._eval(value, scope)
                if result:
                    return result
            return result

        if isinstance(node, ast.Compare):
            left = self._eval(node.left, scope)
            for op, right_node in zip(node.ops, node.comparators):
                right = self._eval(right_node, scope)
                if not _COMPARISONS[type(op)](left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            if self._eval(node.test, scope):
                return self._eval(node.body, scope)
            return self._eval(node.orelse, scope)

        if isinstance(node, ast.Call):
            func = self._eval(node.func, scope)
            if not callable(func):
                raise ValueError("Object is not callable")
            if node.keywords:
                raise ValueError("Keyword arguments are not supported")
            return func(*[self._eval(arg, scope) for arg in node.args])

        if isinstance(node, ast.Lambda):
            return self._make_lambda(node, scope)

        if isinstance(node, (ast.List, ast.Tuple)):
            values = [self._eval(item, scope) for item in node.elts]
            return values if isinstance(node, ast.List) else tuple(values)

        if isinstance(node, ast.Dict):
            return {
                self._eval(k, scope): self._eval(v, scope)
                for k, v in zip(node.keys, node.values)
                if k is not None
            }

        if isinstance(node, (ast.ListComp, ast.GeneratorExp)):
            return self._eval_comprehension(node, scope)

        raise ValueError(f"Unsupported expression: {type(node).__name__}")

    def _eval_slice(self, node: ast.Slice, scope: Dict[str, Any]) -> slice:
        return slice(
            self._eval(node.lower, scope) if node.lower else None,
            self._eval(node.upper, scope) if node.upper else None,
            self._eval(node.step, scope) if node.step else None,
        )

    def _eval_comprehension(self, node: ast.ListComp | ast.GeneratorExp, scope: Dict[str, Any]) -> list:
        if len(node.generators) != 1:
            raise ValueError("Only one 'for' clause is supported")
        generator = node.generators[0]
        if not isinstance(generator.target, ast.Name) or generator.is_async:
            raise ValueError("Comprehension target must be a plain name")

        results = []
        for value in self._eval(generator.iter, scope):
            inner = {**scope, generator.target.id: value}
            if all(self._eval(cond, inner) for cond in generator.ifs):
                results.append(self._eval(node.elt, inner))
        return results

    def _make_lambda(self, node: ast.Lambda, scope: Dict[str, Any]) -> Callable[..., Any]:
        args = node.args
        if args.vararg or args.kwarg or args.kwonlyargs or args.defaults:
            raise ValueError("Only simple positional lambda arguments are supported")
        names = [arg.arg for arg in args.args]

        def call(*values: Any) -> Any:
            if len(values) != len(names):
                raise ValueError("Lambda called with wrong number of arguments")
            return self._eval(node.body, {**scope, **dict(zip(names, values))})

        return call


__all__ = ["ExpressionError", "SafeExpressionEvaluator"]
