"""Confronting data with a Validator.

This module defines ``confront`` and the Confrontation it returns. A
confrontation expands every rule (substituting derivations) once, up front,
then evaluates the check rules one by one in validator order. Each rule is
evaluated in isolation: an error or warning in one rule never prevents the
others from running, unless the raise policy says so.

Raise policies (``raise_mode`` option, alias ``raise``):
    - "none": capture errors and warnings per rule
    - "errors": propagate the first evaluation error, capture warnings
    - "all": propagate the first evaluation error or warning
"""

import logging
import math
import warnings
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime
from typing import Any

import polars as pl

from tabvalidate.core.exceptions import DataSourceError, NotFoundError
from tabvalidate.core.expression import Expression
from tabvalidate.core.protocols import EvaluationContext, ExpressionEvaluator
from tabvalidate.core.schema import DataSources, as_data_sources
from tabvalidate.validation.aggregate import (
    AggregateBy,
    ScalarPolicy,
    aggregate,
    record_outcomes,
    sort,
    summary,
)
from tabvalidate.validation.evaluator import PolarsEvaluator
from tabvalidate.validation.exceptions import EvaluationError, EvaluationErrorKind
from tabvalidate.validation.options import ConfrontOptions, RaiseMode, resolve_options
from tabvalidate.validation.result import RuleOutcome, as_logical
from tabvalidate.validation.validator import (
    Key,
    RuleLike,
    Selector,
    Validator,
    as_validator,
    select_names,
)

logger = logging.getLogger(__name__)


class Confrontation:
    """Results of confronting data with a Validator.

    Holds one RuleOutcome per check rule, in validator order, together with
    the validator, the dataset names and the options that were used. A
    Confrontation is not modified after creation; ``subset`` returns a new
    one sharing the outcome objects.

    Attributes:
        timestamp: When the confrontation was performed

    Example:
        >>> df = pl.DataFrame({"height": [58, 59, 60], "weight": [115, 117, 120]})
        >>> cf = confront(df, ["height > 0", "weight > 0", "height / weight >= 0.5"])
        >>> cf.all()
        True
        >>> cf.errors()
        {}
    """

    def __init__(
        self,
        validator: Validator,
        outcomes: Iterable[RuleOutcome],
        sources: DataSources,
        options: ConfrontOptions,
        timestamp: datetime | None = None,
    ) -> None:
        self._validator = validator
        self._outcomes = {outcome.name: outcome for outcome in outcomes}
        self._sources = sources
        self._options = options
        self.timestamp = timestamp or datetime.now()

    # -- properties -----------------------------------------------------

    @property
    def validator(self) -> Validator:
        return self._validator

    @property
    def options(self) -> ConfrontOptions:
        return self._options

    @property
    def datasets(self) -> list[str]:
        """Names of the datasets, primary first."""
        return self._sources.names

    @property
    def records(self) -> int:
        """Number of records in the primary dataset."""
        return self._sources.records

    @property
    def names(self) -> list[str]:
        return list(self._outcomes)

    # -- access ---------------------------------------------------------

    def __len__(self) -> int:
        return len(self._outcomes)

    def __iter__(self) -> Iterator[RuleOutcome]:
        return iter(list(self._outcomes.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._outcomes

    def _resolve(self, key: Key) -> str:
        names = self.names
        if isinstance(key, int) and not isinstance(key, bool):
            try:
                return names[key]
            except IndexError:
                msg = f"No outcome at position {key}"
                raise NotFoundError(msg, key=key, available=len(names)) from None
        if key not in self._outcomes:
            msg = f"No outcome for rule '{key}'"
            raise NotFoundError(msg, key=key, available=len(names))
        return key  # type: ignore[return-value]

    def outcome(self, key: Key) -> RuleOutcome:
        """Return the outcome of one check rule by name or position.

        Raises:
            NotFoundError: If the confrontation has no such rule
        """
        return self._outcomes[self._resolve(key)]

    def __getitem__(self, key: Key) -> RuleOutcome:
        return self.outcome(key)

    def values(self) -> pl.DataFrame:
        """Record-aligned outcomes, one column per vector rule.

        Scalar rules, errored rules and outcomes whose length differs from
        the number of records are left out; see ``scalars()``.
        """
        columns = [
            outcome.value.alias(outcome.name)
            for outcome in self
            if not outcome.has_error() and not outcome.scalar and len(outcome.value) == self.records
        ]
        return pl.DataFrame(columns)

    def scalars(self) -> dict[str, Any]:
        """Outcomes of rules that reduced to a single value."""
        return {o.name: o.value for o in self if o.scalar and not o.has_error()}

    def errors(self) -> dict[str, EvaluationError]:
        """Captured evaluation errors by rule name."""
        return {o.name: o.error for o in self if o.error is not None}

    def warnings(self) -> dict[str, list[Warning]]:
        """Captured warnings by rule name, for rules that signalled any."""
        return {o.name: list(o.warnings) for o in self if o.has_warnings()}

    def subset(self, selector: Selector) -> "Confrontation":
        """Select outcomes by name, position, list, slice or boolean mask.

        The new Confrontation shares the selected RuleOutcome objects. Its
        validator holds the corresponding rules and the derive rules they
        depend on, so expanding it gives the same expressions.
        """
        selected = select_names(self.names, selector, self._resolve)
        checks = [n for n in selected if n in self._validator]
        expansions = self._validator.substitution().expansions
        needed = {v for n in checks if n in expansions for v in expansions[n].variables}
        derivations = [
            name
            for name, rule in self._validator.items()
            if rule.is_derive and rule.target in needed and name not in checks
        ]
        validator = self._validator.subset(derivations + checks)
        return Confrontation(
            validator,
            [self._outcomes[name] for name in selected],
            self._sources,
            self._options,
            timestamp=self.timestamp,
        )

    # -- aggregation ------------------------------------------------------

    def summary(self) -> pl.DataFrame:
        return summary(self)

    def aggregate(
        self,
        by: AggregateBy | str = AggregateBy.RULE,
        scalar_policy: ScalarPolicy | str = ScalarPolicy.ONCE,
    ) -> pl.DataFrame:
        return aggregate(self, by, scalar_policy)

    def sort(
        self,
        by: AggregateBy | str = AggregateBy.RULE,
        scalar_policy: ScalarPolicy | str = ScalarPolicy.ONCE,
    ) -> pl.DataFrame:
        return sort(self, by, scalar_policy)

    def all(self, na_rm: bool = False) -> bool | None:
        """Check whether every rule is satisfied on every item.

        Args:
            na_rm: Ignore NA outcomes instead of letting them make the
                   result undetermined

        Returns:
            False if any rule failed or errored, None if some outcomes are
            NA (and ``na_rm`` is False), True otherwise
        """
        missing = False
        for outcome in self:
            if outcome.has_error():
                return False
            _, _, fails, n_missing = outcome.counts()
            if fails:
                return False
            missing = missing or n_missing > 0
        if missing and not na_rm:
            return None
        return True

    def any_failed(self) -> bool:
        """Check whether any rule has at least one failing item."""
        return any(outcome.counts()[2] > 0 for outcome in self)

    def violating(self, data: pl.DataFrame | None = None) -> pl.DataFrame:
        """Rows failing at least one record-level rule.

        Args:
            data: Frame to filter, row-aligned with the primary dataset;
                  defaults to the primary dataset itself

        Raises:
            DataSourceError: If ``data`` has a different number of rows
        """
        frame = self._sources.primary if data is None else data
        if frame.height != self.records:
            msg = f"Data has {frame.height} rows, confrontation has {self.records} records"
            raise DataSourceError(msg, source="data", reason="row count mismatch")

        outcomes = record_outcomes(self, ScalarPolicy.ONCE)
        if outcomes.width == 0:
            return frame.clear()
        mask = outcomes.select(
            pl.any_horizontal((~pl.all()).fill_null(False)).alias("violating")
        ).to_series()
        return frame.filter(mask)

    # -- reporting --------------------------------------------------------

    def to_json(self) -> dict[str, Any]:
        """Export the confrontation as a JSON-serialisable dictionary."""
        results = []
        totals = {"passes": 0, "fails": 0, "nNA": 0}
        for outcome in self:
            items, passes, fails, missing = outcome.counts()
            totals["passes"] += passes
            totals["fails"] += fails
            totals["nNA"] += missing
            results.append(
                {
                    "name": outcome.name,
                    "expression": outcome.expression,
                    "scalar": outcome.scalar,
                    "items": items,
                    "passes": passes,
                    "fails": fails,
                    "nNA": missing,
                    "error": None if outcome.error is None else {
                        "kind": outcome.error.kind.value,
                        "message": outcome.error.message,
                    },
                    "warnings": [str(w) for w in outcome.warnings],
                }
            )

        return {
            "timestamp": self.timestamp.isoformat(),
            "datasets": self.datasets,
            "records": self.records,
            "options": self._options.to_dict(),
            "summary": {
                "rules": len(self),
                **totals,
                "errors": len(self.errors()),
                "warnings": len(self.warnings()),
                "all": self.all(),
            },
            "results": results,
        }

    def format(self) -> str:
        """Format the confrontation as human-readable text."""
        header = (
            f"Confrontation ({self.timestamp.strftime('%Y-%m-%d %H:%M:%S')}): "
            f"{len(self)} rules, dataset '{self.datasets[0]}' with {self.records} records"
        )
        lines = [header, "=" * len(header)]
        fails = sum(1 for o in self if o.counts()[2] > 0)
        lines.append(
            f"Rules with fails: {fails}, errors: {len(self.errors())}, "
            f"warnings: {len(self.warnings())}"
        )
        lines.append("")
        lines.extend(outcome.format() for outcome in self)
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"Confrontation({len(self)} rules, {self.records} records, "
            f"{len(self.errors())} errors, {len(self.warnings())} warnings)"
        )


def _normalise_value(value: Any) -> Any:
    if isinstance(value, pl.Series):
        return value
    if isinstance(value, (list, tuple)):
        return pl.Series("value", list(value))
    if value is None or isinstance(value, (bool, int, float)):
        return value
    msg = f"Rule must evaluate to a logical or numeric value, got {type(value).__name__}"
    raise EvaluationError(msg, kind=EvaluationErrorKind.TYPE_MISMATCH)


def _fill_missing(value: Any, na_value: bool) -> Any:
    if isinstance(value, pl.Series):
        return as_logical(value).fill_null(na_value)
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return na_value
    return value


def _evaluate_rule(
    name: str,
    expression: Expression,
    evaluator: ExpressionEvaluator,
    context: EvaluationContext,
    options: ConfrontOptions,
) -> RuleOutcome:
    text = expression.text
    logger.debug("Evaluating rule '%s': %s", name, text)

    value = None
    error: EvaluationError | None = None
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("error" if options.raise_mode is RaiseMode.ALL else "always")
        try:
            value = _normalise_value(evaluator.evaluate(expression, context))
        except EvaluationError as e:
            error = e.for_rule(name, text)
        except Exception as e:
            if isinstance(e, Warning) and options.raise_mode is RaiseMode.ALL:
                raise
            error = EvaluationError(
                f"Evaluation failed: {e}",
                kind=EvaluationErrorKind.RUNTIME_FAULT,
                rule=name,
                expression=text,
                reason=type(e).__name__,
            )
            error.__cause__ = e
    captured = [w.message for w in caught]

    if error is not None:
        if options.raise_mode is not RaiseMode.NONE:
            raise error
        logger.warning("Rule '%s' could not be evaluated: %s", name, error)
        return RuleOutcome(name=name, expression=text, error=error, warnings=captured)

    for warning in captured:
        logger.debug("Rule '%s' signalled a warning: %s", name, warning)

    if options.na_value is not None:
        value = _fill_missing(value, options.na_value)

    return RuleOutcome(
        name=name,
        expression=text,
        value=value,
        scalar=not isinstance(value, pl.Series),
        warnings=captured,
    )


def confront(
    data: Any,
    rules: "Validator | RuleLike | Iterable[RuleLike]",
    reference: Mapping[str, Any] | None = None,
    *,
    evaluator: ExpressionEvaluator | None = None,
    options: ConfrontOptions | Mapping[str, Any] | None = None,
    **option_overrides: Any,
) -> Confrontation:
    """Confront data with a set of rules.

    Every rule is expanded (derivations substituted) before any evaluation,
    then check rules are evaluated in validator order. Derive rules produce
    no outcome of their own.

    Args:
        data: pl.DataFrame, mapping of column -> values, or mapping of
              dataset name -> pl.DataFrame (first entry is the primary dataset)
        rules: Validator, a single rule, or an iterable of rules (text,
               Expression or Rule)
        reference: Additional named datasets, addressable as "name.column"
        evaluator: Expression evaluator (PolarsEvaluator by default)
        options: Options for this call, layered over the validator's options
        **option_overrides: Individual options, e.g. ``raise_mode="errors"``
                            or ``numeric_tolerance=0.0``

    Returns:
        Confrontation with one outcome per check rule

    Raises:
        CyclicDefinitionError: If derivations form a cycle
        DataSourceError: If the data cannot be normalised
        ConfigurationError: If options are invalid
        EvaluationError: Under raise_mode "errors" or "all"
        Warning: Under raise_mode "all", the first warning signalled

    Example:
        >>> df = pl.DataFrame({"height": [5], "weight": [150]})
        >>> cf = confront(df, ["BMI := weight / height^2", "BMI < 23"])
        >>> cf["V2"].expression
        'weight / height ** 2 < 23'
        >>> cf["V2"].value.to_list()
        [True]
    """
    validator = as_validator(rules)
    resolved = resolve_options(validator.options, options, option_overrides)
    sources = as_data_sources(data, reference)

    substitution = validator.substitution()
    substitution.raise_for_errors()

    context = EvaluationContext(
        data=sources.primary,
        options=resolved,
        name=sources.primary_name,
        references=sources.references,
    )
    evaluator = evaluator or PolarsEvaluator()

    check_rules = [(name, rule) for name, rule in validator.items() if rule.is_check]
    logger.info(
        "Confronting dataset '%s' (%d records) with %d rules",
        sources.primary_name,
        sources.records,
        len(check_rules),
    )

    outcomes = [
        _evaluate_rule(
            name,
            substitution.expansions[name].expression,
            evaluator,
            context,
            resolved,
        )
        for name, _ in check_rules
    ]
    cf = Confrontation(validator, outcomes, sources, resolved)
    logger.info(
        "Confrontation finished: %d rules, %d errors, %d warnings",
        len(cf),
        len(cf.errors()),
        len(cf.warnings()),
    )
    return cf
