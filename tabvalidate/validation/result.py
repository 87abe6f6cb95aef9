"""RuleOutcome data structure.

This module defines the RuleOutcome class that represents the result of
confronting one check rule with a dataset: either a value (a per-record
Series or a scalar) or the evaluation error that prevented one, plus any
warnings the evaluation signalled.
"""

from dataclasses import dataclass, field
from typing import Any

import polars as pl

from tabvalidate.validation.exceptions import EvaluationError


def as_logical(value: Any) -> pl.Series:
    """Interpret an outcome value as a boolean Series.

    Booleans are taken as-is, numbers pass when non-zero, NaN and null are
    NA. A scalar becomes a one-element Series.

    Example:
        >>> as_logical(pl.Series([1.0, 0.0, None])).to_list()
        [True, False, None]
        >>> as_logical(True).to_list()
        [True]
    """
    series = value if isinstance(value, pl.Series) else pl.Series("value", [value])
    if series.dtype == pl.Boolean:
        return series
    if series.dtype == pl.Null:
        return series.cast(pl.Boolean)
    values = series.cast(pl.Float64)
    return values.fill_nan(None) != 0


@dataclass
class RuleOutcome:
    """Outcome of evaluating one check rule.

    Exactly one of ``value`` and ``error`` is set: a rule whose evaluation
    failed has no value, and a rule that produced a value has no error. A
    value of None without an error is a scalar NA outcome.

    Attributes:
        name: Rule name
        expression: Expanded expression text that was evaluated
        value: pl.Series with one entry per record, or a Python scalar
        scalar: True if the rule reduced to a single value
        error: EvaluationError that prevented evaluation, if any
        warnings: Warnings signalled while evaluating the rule

    Example:
        >>> outcome = RuleOutcome(
        ...     name="V1",
        ...     expression="height > 0",
        ...     value=pl.Series([True, False, None]),
        ... )
        >>> outcome.counts()
        (3, 1, 1, 1)
        >>> print(outcome.format())
        [V1] height > 0: 1 passes, 1 fails, 1 NA
    """

    name: str
    expression: str
    value: Any = None
    scalar: bool = False
    error: EvaluationError | None = None
    warnings: list[Warning] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.error is not None and self.value is not None:
            msg = f"Outcome of rule '{self.name}' cannot have both a value and an error"
            raise ValueError(msg)

    def has_error(self) -> bool:
        return self.error is not None

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    @property
    def items(self) -> int:
        """Number of evaluated items: one for scalar outcomes, zero on error."""
        if self.has_error():
            return 0
        if isinstance(self.value, pl.Series):
            return len(self.value)
        return 1

    def logical(self) -> pl.Series:
        """Outcome as a boolean Series (empty for errored rules)."""
        if self.has_error():
            return pl.Series("value", [], dtype=pl.Boolean)
        return as_logical(self.value)

    def counts(self) -> tuple[int, int, int, int]:
        """Return (items, passes, fails, nNA).

        ``passes + fails + nNA == items`` always holds.
        """
        logical = self.logical()
        missing = logical.null_count()
        passes = int(logical.sum() or 0)
        return len(logical), passes, len(logical) - missing - passes, missing

    def format(self) -> str:
        """Format the outcome as a single human-readable line, plus warnings."""
        if self.error is not None:
            lines = [f"[{self.name}] {self.expression}: error: {self.error.message}"]
        else:
            _, passes, fails, missing = self.counts()
            lines = [f"[{self.name}] {self.expression}: {passes} passes, {fails} fails, {missing} NA"]
        for warning in self.warnings:
            lines.append(f"  warning: {warning}")
        return "\n".join(lines)
