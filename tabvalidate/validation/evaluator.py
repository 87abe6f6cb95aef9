"""Default expression evaluator backed by polars.

PolarsEvaluator compiles an expression tree into a single polars expression
and runs it with ``DataFrame.select`` against the primary dataset. It is a
small closed interpreter: names, qualified reference columns, constants,
arithmetic, comparisons, logical operators, conditionals and a fixed table
of functions.

Comparison semantics:
    - ``a == b`` on numeric operands passes when ``|a - b| <= linear_equality_epsilon``
    - ``a != b`` on numeric operands passes when ``|a - b| > linear_equality_epsilon``
    - ``a <= b`` passes when ``a - b <= numeric_tolerance``
    - ``a >= b`` passes when ``a - b >= -numeric_tolerance``
    - ``<``, ``>`` and comparisons of non-numeric operands are exact
    - integer operands are compared without conversion to float

``not``, ``and`` and ``or`` treat numeric operands as true when non-zero;
``~``, ``&`` and ``|`` are applied as is (bitwise on integers).

Missing values propagate: any comparison involving a null yields null (NA).
"""

import ast
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import polars as pl

from tabvalidate.core.expression import Expression
from tabvalidate.core.protocols import EvaluationContext
from tabvalidate.validation.exceptions import (
    EvaluationError,
    EvaluationErrorKind,
    RuleEvaluationWarning,
)

RESULT_NAME = "value"

# Reduce a column to a single value
AGGREGATES: dict[str, Callable[[pl.Expr], pl.Expr]] = {
    "mean": lambda x: x.mean(),
    "sum": lambda x: x.sum(),
    "min": lambda x: x.min(),
    "max": lambda x: x.max(),
    "median": lambda x: x.median(),
    "sd": lambda x: x.std(),
    "var": lambda x: x.var(),
    "count": lambda x: x.count(),
    "n_distinct": lambda x: x.n_unique(),
    "any": lambda x: x.any(),
    "all": lambda x: x.all(),
}

# Element-wise functions with a fixed number of expression arguments
ELEMENTWISE: dict[str, tuple[int, Callable[..., pl.Expr]]] = {
    "abs": (1, lambda x: x.abs()),
    "sqrt": (1, lambda x: x.sqrt()),
    "log": (1, lambda x: x.log()),
    "exp": (1, lambda x: x.exp()),
    "is_na": (1, lambda x: x.is_null()),
    "not_na": (1, lambda x: x.is_not_null()),
    "is_unique": (1, lambda x: x.is_unique()),
    "nchar": (1, lambda x: x.cast(pl.Utf8).str.len_chars()),
    "between": (3, lambda x, lo, hi: (x >= lo) & (x <= hi)),
    "implies": (2, lambda a, b: ~a | b),
}

# Functions whose extra arguments must be constants
SPECIAL = ("round", "matches", "nrow")

FUNCTIONS = sorted([*AGGREGATES, *ELEMENTWISE, *SPECIAL])

_ARITHMETIC: dict[type[ast.operator], Callable[[pl.Expr, pl.Expr], pl.Expr]] = {
    ast.Add: lambda a, b: a + b,
    ast.Sub: lambda a, b: a - b,
    ast.Mult: lambda a, b: a * b,
    ast.Div: lambda a, b: a / b,
    ast.FloorDiv: lambda a, b: a // b,
    ast.Mod: lambda a, b: a % b,
    ast.Pow: lambda a, b: a**b,
    ast.BitAnd: lambda a, b: a & b,
    ast.BitOr: lambda a, b: a | b,
}


@dataclass(frozen=True)
class _Compiled:
    expr: pl.Expr
    scalar: bool


def _type_mismatch(message: str, **context: Any) -> EvaluationError:
    return EvaluationError(message, kind=EvaluationErrorKind.TYPE_MISMATCH, **context)


def _undefined(message: str, variable: str) -> EvaluationError:
    return EvaluationError(
        message, kind=EvaluationErrorKind.UNDEFINED_REFERENCE, variable=variable
    )


class _Compiler(ast.NodeVisitor):
    """Translates an expression tree into a polars expression."""

    def __init__(self, context: EvaluationContext) -> None:
        self.context = context
        self.frame = context.data
        self.tolerance = context.options.numeric_tolerance
        self.epsilon = context.options.linear_equality_epsilon

    def compile(self, node: ast.expr) -> _Compiled:
        return self.visit(node)

    def generic_visit(self, node: ast.AST) -> _Compiled:
        raise _type_mismatch(f"Unsupported expression: {type(node).__name__}")

    # -- references ---------------------------------------------------------

    def _column(self, name: str) -> _Compiled:
        if name not in self.frame.columns:
            raise _undefined(f"Variable '{name}' not found in dataset '{self.context.name}'", name)
        return _Compiled(pl.col(name), scalar=False)

    def _reference_series(self, node: ast.Attribute) -> pl.Series:
        source, column = node.value.id, node.attr  # type: ignore[attr-defined]
        qualified = f"{source}.{column}"
        if source == self.context.name:
            frame = self.frame
        elif source in self.context.references:
            frame = self.context.references[source]
        else:
            raise _undefined(f"Unknown dataset '{source}' in reference '{qualified}'", qualified)
        if column not in frame.columns:
            raise _undefined(f"Variable '{column}' not found in dataset '{source}'", qualified)
        return frame[column]

    def visit_Name(self, node: ast.Name) -> _Compiled:
        return self._column(node.id)

    def visit_Attribute(self, node: ast.Attribute) -> _Compiled:
        if node.value.id == self.context.name:  # type: ignore[attr-defined]
            return self._column(node.attr)
        return _Compiled(pl.lit(self._reference_series(node)), scalar=False)

    def visit_Constant(self, node: ast.Constant) -> _Compiled:
        return _Compiled(pl.lit(node.value), scalar=True)

    def visit_List(self, node: ast.AST) -> _Compiled:
        raise _type_mismatch("Literal collections are only supported on the right of 'in'")

    visit_Tuple = visit_List
    visit_Set = visit_List

    # -- operators ----------------------------------------------------------

    def visit_BinOp(self, node: ast.BinOp) -> _Compiled:
        operator = _ARITHMETIC.get(type(node.op))
        if operator is None:
            raise _type_mismatch(f"Unsupported operator: {type(node.op).__name__}")
        left, right = self.visit(node.left), self.visit(node.right)
        return _Compiled(operator(left.expr, right.expr), left.scalar and right.scalar)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> _Compiled:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.USub):
            expr = -operand.expr
        elif isinstance(node.op, ast.UAdd):
            expr = operand.expr
        elif isinstance(node.op, ast.Not):
            expr = ~self._logical(operand.expr)
        else:
            expr = ~operand.expr
        return _Compiled(expr, operand.scalar)

    def visit_BoolOp(self, node: ast.BoolOp) -> _Compiled:
        values = [self.visit(v) for v in node.values]
        operands = [self._logical(v.expr) for v in values]
        expr = operands[0]
        for operand in operands[1:]:
            expr = expr & operand if isinstance(node.op, ast.And) else expr | operand
        return _Compiled(expr, all(v.scalar for v in values))

    def visit_IfExp(self, node: ast.IfExp) -> _Compiled:
        test, body, orelse = self.visit(node.test), self.visit(node.body), self.visit(node.orelse)
        expr = pl.when(test.expr).then(body.expr).otherwise(orelse.expr)
        return _Compiled(expr, test.scalar and body.scalar and orelse.scalar)

    # -- comparisons ----------------------------------------------------------

    def _dtype(self, expr: pl.Expr) -> pl.DataType:
        schema = self.frame.lazy().select(expr.alias(RESULT_NAME)).collect_schema()
        return schema[RESULT_NAME]

    def _is_numeric(self, expr: pl.Expr) -> bool:
        return self._dtype(expr).is_numeric()

    def _logical(self, expr: pl.Expr) -> pl.Expr:
        """Coerce an operand of not, and, or: numbers are true when non-zero."""
        dtype = self._dtype(expr)
        if dtype == pl.Null:
            return expr.cast(pl.Boolean)
        if dtype.is_float():
            return expr.fill_nan(None) != 0
        if dtype.is_numeric():
            return expr != 0
        return expr

    def _membership(self, left: _Compiled, node: ast.expr) -> pl.Expr:
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            values = []
            for element in node.elts:
                if not isinstance(element, ast.Constant):
                    raise _type_mismatch("Only constants are allowed in a membership list")
                values.append(element.value)
            return left.expr.is_in(values)
        if isinstance(node, ast.Attribute):
            if node.value.id != self.context.name:  # type: ignore[attr-defined]
                return left.expr.is_in(self._reference_series(node).implode())
            node = ast.Name(id=node.attr, ctx=ast.Load())
        if isinstance(node, ast.Name):
            self._column(node.id)
            return left.expr.is_in(self.frame[node.id].implode())
        raise _type_mismatch("Right-hand side of 'in' must be a list or a column reference")

    def _compare(self, op: ast.cmpop, left: _Compiled, right: _Compiled) -> pl.Expr:
        a, b = left.expr, right.expr
        if isinstance(op, (ast.Lt, ast.Gt)):
            return a < b if isinstance(op, ast.Lt) else a > b

        numeric = self._is_numeric(a) and self._is_numeric(b)
        if not numeric:
            comparisons = {
                ast.Eq: lambda: a == b,
                ast.NotEq: lambda: a != b,
                ast.LtE: lambda: a <= b,
                ast.GtE: lambda: a >= b,
            }
            return comparisons[type(op)]()

        if self._dtype(a).is_integer() and self._dtype(b).is_integer():
            return self._compare_integers(op, a, b)

        difference = a.cast(pl.Float64) - b.cast(pl.Float64)
        if isinstance(op, ast.Eq):
            return difference.abs() <= self.epsilon
        if isinstance(op, ast.NotEq):
            return difference.abs() > self.epsilon
        if isinstance(op, ast.LtE):
            return difference <= self.tolerance
        return difference >= -self.tolerance

    def _compare_integers(self, op: ast.cmpop, a: pl.Expr, b: pl.Expr) -> pl.Expr:
        # Integer differences are whole, so only the whole part of a slack matters
        slack = int(self.epsilon if isinstance(op, (ast.Eq, ast.NotEq)) else self.tolerance)
        if slack == 0:
            exact = {ast.Eq: a == b, ast.NotEq: a != b, ast.LtE: a <= b, ast.GtE: a >= b}
            return exact[type(op)]

        difference = a.cast(pl.Int64) - b.cast(pl.Int64)
        if isinstance(op, ast.Eq):
            return difference.abs() <= slack
        if isinstance(op, ast.NotEq):
            return difference.abs() > slack
        if isinstance(op, ast.LtE):
            return difference <= slack
        return difference >= -slack

    def visit_Compare(self, node: ast.Compare) -> _Compiled:
        left = self.visit(node.left)
        scalar = left.scalar
        result: pl.Expr | None = None

        for op, comparator in zip(node.ops, node.comparators):
            if isinstance(op, (ast.In, ast.NotIn)):
                test = self._membership(left, comparator)
                if isinstance(op, ast.NotIn):
                    test = ~test
                right = left
            elif isinstance(op, (ast.Is, ast.IsNot)):
                if not (isinstance(comparator, ast.Constant) and comparator.value is None):
                    raise _type_mismatch("'is' comparisons are only supported with None")
                test = left.expr.is_null() if isinstance(op, ast.Is) else left.expr.is_not_null()
                right = left
            else:
                right = self.visit(comparator)
                scalar = scalar and right.scalar
                test = self._compare(op, left, right)

            result = test if result is None else result & test
            left = right

        return _Compiled(result, scalar)  # type: ignore[arg-type]

    # -- functions ----------------------------------------------------------

    def _constant_arg(self, node: ast.Call, index: int, kind: type | tuple[type, ...]) -> Any:
        arg = node.args[index]
        if not (isinstance(arg, ast.Constant) and isinstance(arg.value, kind)):
            name = node.func.id  # type: ignore[attr-defined]
            raise _type_mismatch(f"Argument {index + 1} of '{name}' must be a constant")
        return arg.value

    def _check_arity(self, name: str, node: ast.Call, low: int, high: int) -> None:
        count = len(node.args)
        if not low <= count <= high:
            expected = str(low) if low == high else f"{low}-{high}"
            raise _type_mismatch(
                f"Function '{name}' takes {expected} arguments, got {count}",
                function=name,
            )

    def visit_Call(self, node: ast.Call) -> _Compiled:
        name = node.func.id  # type: ignore[attr-defined]

        if name in AGGREGATES:
            self._check_arity(name, node, 1, 1)
            return _Compiled(AGGREGATES[name](self.visit(node.args[0]).expr), scalar=True)

        if name in ELEMENTWISE:
            arity, builder = ELEMENTWISE[name]
            self._check_arity(name, node, arity, arity)
            args = [self.visit(arg) for arg in node.args]
            return _Compiled(builder(*(a.expr for a in args)), all(a.scalar for a in args))

        if name == "nrow":
            self._check_arity(name, node, 0, 0)
            return _Compiled(pl.len(), scalar=True)

        if name == "round":
            self._check_arity(name, node, 1, 2)
            digits = self._constant_arg(node, 1, int) if len(node.args) == 2 else 0
            value = self.visit(node.args[0])
            return _Compiled(value.expr.round(digits), value.scalar)

        if name == "matches":
            self._check_arity(name, node, 2, 2)
            pattern = self._constant_arg(node, 1, str)
            value = self.visit(node.args[0])
            return _Compiled(value.expr.cast(pl.Utf8).str.contains(pattern), value.scalar)

        raise EvaluationError(
            f"Unknown function '{name}'",
            kind=EvaluationErrorKind.UNDEFINED_REFERENCE,
            variable=name,
            available=", ".join(FUNCTIONS),
        )


def _as_outcome(series: pl.Series) -> pl.Series:
    dtype = series.dtype
    if dtype == pl.Null:
        return series.cast(pl.Boolean)
    if dtype == pl.Boolean or dtype.is_numeric():
        return series
    raise _type_mismatch(
        f"Rule must evaluate to a logical or numeric value, got {dtype}",
        dtype=str(dtype),
    )


class PolarsEvaluator:
    """Evaluates expression trees with polars.

    Returns a pl.Series with one value per record for vectorised rules and a
    Python scalar for rules that reduce to one value (constants and
    aggregates such as ``mean(x) > 0``).

    Example:
        >>> evaluator = PolarsEvaluator()
        >>> ctx = EvaluationContext(data=pl.DataFrame({"x": [1, -1]}), options=ConfrontOptions())
        >>> evaluator.evaluate(Expression.parse("x > 0"), ctx).to_list()
        [True, False]
        >>> evaluator.evaluate(Expression.parse("mean(x) == 0"), ctx)
        True
    """

    def compile(self, expression: Expression, context: EvaluationContext) -> tuple[pl.Expr, bool]:
        """Compile without evaluating; returns (polars expression, is_scalar)."""
        compiled = _Compiler(context).compile(expression.node)
        return compiled.expr, compiled.scalar

    def evaluate(self, expression: Expression, context: EvaluationContext) -> Any:
        try:
            expr, scalar = self.compile(expression, context)
            series = context.data.select(expr.alias(RESULT_NAME)).to_series()
        except EvaluationError:
            raise
        except pl.exceptions.ColumnNotFoundError as e:
            raise EvaluationError(
                f"Undefined reference: {e}",
                kind=EvaluationErrorKind.UNDEFINED_REFERENCE,
                reason=str(e),
            ) from e
        except (pl.exceptions.InvalidOperationError, pl.exceptions.SchemaError, TypeError) as e:
            raise EvaluationError(
                f"Type mismatch: {e}",
                kind=EvaluationErrorKind.TYPE_MISMATCH,
                reason=str(e),
            ) from e
        except (pl.exceptions.PolarsError, ArithmeticError, ValueError) as e:
            raise EvaluationError(
                f"Evaluation failed: {e}",
                kind=EvaluationErrorKind.RUNTIME_FAULT,
                reason=str(e),
            ) from e

        series = _as_outcome(series)
        if series.dtype.is_float():
            nan_count = series.is_nan().sum()
            if nan_count:
                warnings.warn(
                    f"Result contains {nan_count} NaN values",
                    RuleEvaluationWarning,
                    stacklevel=2,
                )

        if scalar and len(series) == 1:
            return series.item()
        return series
