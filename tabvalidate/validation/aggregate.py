"""Summary statistics over confrontation results.

This module reduces a Confrontation into polars DataFrames: a per-rule
summary, per-rule or per-record aggregates with relative frequencies, and
sorted aggregates that surface the most violated rules or records first.

Counting rules:
    - Boolean outcomes count as pass (True), fail (False) or NA (null)
    - Numeric outcomes pass when non-zero; NaN counts as NA
    - A scalar outcome is one item
    - Errored rules contribute zero items
    - For every row: passes + fails + nNA == items (or checked, by record)
"""

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any

import polars as pl

if TYPE_CHECKING:
    from tabvalidate.validation.confrontation import Confrontation
    from tabvalidate.validation.validator import Validator


class AggregateBy(Enum):
    """Grouping for aggregate and sort.

    Attributes:
        RULE: One row per check rule
        RECORD: One row per record of the primary dataset
    """

    RULE = "rule"
    RECORD = "record"


class ScalarPolicy(Enum):
    """How scalar (dataset-level) outcomes enter record aggregates.

    Attributes:
        ONCE: Scalar rules are counted once, in rule aggregates only; they
              do not inflate record-level counts
        BROADCAST: A scalar outcome counts on every record
    """

    ONCE = "once"
    BROADCAST = "broadcast"


def _coerce(enum: type[Enum], value: Any, parameter: str) -> Any:
    if isinstance(value, enum):
        return value
    try:
        return enum(value)
    except ValueError as e:
        choices = ", ".join(m.value for m in enum)  # type: ignore[attr-defined]
        msg = f"Invalid {parameter}: {value!r}. Must be one of: {choices}"
        raise ValueError(msg) from e


def _relative(frame: pl.DataFrame, total: str) -> pl.DataFrame:
    denominator = pl.when(pl.col(total) > 0).then(pl.col(total)).otherwise(None)
    return frame.with_columns(
        (pl.col("passes") / denominator).alias("rel_pass"),
        (pl.col("fails") / denominator).alias("rel_fail"),
        (pl.col("nNA") / denominator).alias("rel_NA"),
    )


def summary(cf: "Confrontation") -> pl.DataFrame:
    """Per-rule counts of items, passes, fails and NAs.

    Returns:
        DataFrame with columns name, items, passes, fails, nNA, error,
        warning, expression; one row per check rule in validator order

    Example:
        >>> cf = confront(pl.DataFrame({"x": [1, -1, None]}), ["x > 0"])
        >>> summary(cf).row(0)
        ('V1', 3, 1, 1, 1, False, False, 'x > 0')
    """
    rows = []
    for outcome in cf:
        items, passes, fails, missing = outcome.counts()
        rows.append(
            {
                "name": outcome.name,
                "items": items,
                "passes": passes,
                "fails": fails,
                "nNA": missing,
                "error": outcome.has_error(),
                "warning": outcome.has_warnings(),
                "expression": outcome.expression,
            }
        )
    schema = {
        "name": pl.Utf8,
        "items": pl.Int64,
        "passes": pl.Int64,
        "fails": pl.Int64,
        "nNA": pl.Int64,
        "error": pl.Boolean,
        "warning": pl.Boolean,
        "expression": pl.Utf8,
    }
    return pl.DataFrame(rows, schema=schema)


def _by_rule(cf: "Confrontation") -> pl.DataFrame:
    frame = summary(cf)
    labels = [cf.validator[name].label if name in cf.validator else "" for name in frame["name"]]
    frame = frame.with_columns(pl.Series("label", labels, dtype=pl.Utf8))
    frame = _relative(frame, "items")
    return frame.select(
        "name",
        "label",
        "items",
        "passes",
        "fails",
        "nNA",
        "rel_pass",
        "rel_fail",
        "rel_NA",
        "error",
        "warning",
        "expression",
    )


def record_outcomes(
    cf: "Confrontation", scalar_policy: ScalarPolicy | str = ScalarPolicy.ONCE
) -> pl.DataFrame:
    """Record-aligned boolean outcomes, one column per applicable rule.

    Errored rules and vector outcomes whose length differs from the number
    of records are left out. Scalar outcomes are left out under
    ScalarPolicy.ONCE and repeated on every record under BROADCAST.
    """
    policy = _coerce(ScalarPolicy, scalar_policy, "scalar_policy")
    records = cf.records
    columns: list[pl.Series] = []
    for outcome in cf:
        if outcome.has_error():
            continue
        logical = outcome.logical()
        if outcome.scalar:
            if policy is ScalarPolicy.ONCE:
                continue
            logical = pl.Series(outcome.name, [logical[0]] * records, dtype=pl.Boolean)
        elif len(logical) != records:
            continue
        columns.append(logical.alias(outcome.name))
    return pl.DataFrame(columns)


def _by_record(cf: "Confrontation", scalar_policy: ScalarPolicy | str) -> pl.DataFrame:
    outcomes = record_outcomes(cf, scalar_policy)
    checked = outcomes.width
    records = pl.Series("record", range(cf.records), dtype=pl.Int64)

    if checked == 0:
        zeros = pl.Series([0] * cf.records, dtype=pl.Int64)
        frame = pl.DataFrame(
            [records, zeros.alias("checked"), zeros.alias("passes"), zeros.alias("fails"), zeros.alias("nNA")]
        )
        return _relative(frame, "checked")

    frame = outcomes.select(
        pl.lit(checked, dtype=pl.Int64).alias("checked"),
        pl.sum_horizontal(pl.all().cast(pl.Int64)).alias("passes"),
        pl.sum_horizontal(pl.all().is_null().cast(pl.Int64)).alias("nNA"),
    )
    frame = frame.with_columns(
        (pl.col("checked") - pl.col("passes") - pl.col("nNA")).alias("fails")
    ).insert_column(0, records)
    frame = frame.select("record", "checked", "passes", "fails", "nNA")
    return _relative(frame, "checked")


def aggregate(
    cf: "Confrontation",
    by: AggregateBy | str = AggregateBy.RULE,
    scalar_policy: ScalarPolicy | str = ScalarPolicy.ONCE,
) -> pl.DataFrame:
    """Aggregate confrontation results by rule or by record.

    Args:
        cf: Confrontation to aggregate
        by: "rule" for one row per check rule, "record" for one row per
            record of the primary dataset
        scalar_policy: How scalar outcomes enter record aggregates
                       ("once" or "broadcast"); ignored when by="rule"

    Returns:
        By rule: name, label, items, passes, fails, nNA, rel_pass, rel_fail,
        rel_NA, error, warning, expression.
        By record: record, checked, passes, fails, nNA, rel_pass, rel_fail,
        rel_NA. Relative columns are null where the denominator is zero.

    Raises:
        ValueError: For an unknown grouping or scalar policy

    Example:
        >>> df = pl.DataFrame({"x": [1, -1], "y": [1, 1]})
        >>> cf = confront(df, ["x > 0", "y > 0"])
        >>> aggregate(cf, by="record")["fails"].to_list()
        [0, 1]
    """
    grouping = _coerce(AggregateBy, by, "by")
    if grouping is AggregateBy.RULE:
        return _by_rule(cf)
    return _by_record(cf, scalar_policy)


def sort(
    cf: "Confrontation",
    by: AggregateBy | str = AggregateBy.RULE,
    scalar_policy: ScalarPolicy | str = ScalarPolicy.ONCE,
) -> pl.DataFrame:
    """Aggregate, then order rows by descending failure count.

    Ties keep their original (validator or record) order.
    """
    return aggregate(cf, by, scalar_policy).sort("fails", descending=True, maintain_order=True)


def subset(
    obj: "Confrontation | Validator",
    selector: str | int | Sequence[str | int] | Sequence[bool] | slice,
) -> "Confrontation | Validator":
    """Select rules from a Confrontation or Validator by name, position or mask."""
    return obj.subset(selector)
