"""Protocol definitions for tabvalidate evaluation components.

This module defines the interface between the rule engine and the host
expression evaluator. The engine only orchestrates (storage, substitution,
dependency analysis, evaluation dispatch, aggregation); arithmetic and
comparison are the evaluator's job.

Protocols:
    - ExpressionEvaluator: Executes an expression tree against a data context

All implementations must:
    - Not mutate the datasets in the context
    - Be deterministic (same expression and context produce the same value)
    - Signal failures with EvaluationError carrying a kind
    - Signal non-fatal problems with warnings.warn
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import polars as pl

from tabvalidate.core.expression import Expression

if TYPE_CHECKING:
    from tabvalidate.validation.options import ConfrontOptions


@dataclass(frozen=True)
class EvaluationContext:
    """Data an expression is evaluated against.

    Attributes:
        data: Primary dataset; its rows are the records being validated
        name: Name of the primary dataset (usable as a qualifier, "data.x")
        references: Other named datasets, addressable as "source.column"
        options: Options in effect (tolerances used by comparisons)
    """

    data: pl.DataFrame
    options: "ConfrontOptions"
    name: str = "data"
    references: dict[str, pl.DataFrame] = field(default_factory=dict)

    @property
    def records(self) -> int:
        return self.data.height


class ExpressionEvaluator(Protocol):
    """Protocol for expression evaluators.

    An evaluator turns a (fully substituted) rule expression and a context
    into a value: a polars Series with one entry per record for vectorised
    rules, or a Python scalar (bool, number or None) for rules that reduce
    to a single value (e.g. ``mean(x) > 0``).

    Example:
        >>> class ConstantEvaluator:
        ...     def evaluate(self, expression, context):
        ...         return True
        ...
        >>> cf = confront(df, ["x > 0"], evaluator=ConstantEvaluator())
    """

    def evaluate(self, expression: Expression, context: EvaluationContext) -> Any:
        """Evaluate an expression against a data context.

        Args:
            expression: Expression tree with all derivations substituted
            context: Datasets and options to evaluate against

        Returns:
            pl.Series (one value per record) or a scalar

        Raises:
            EvaluationError: With kind UNDEFINED_REFERENCE for unknown names,
                            TYPE_MISMATCH for operand type problems, and
                            RUNTIME_FAULT for anything else
        """
        ...
