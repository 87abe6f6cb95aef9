"""Property-based tests for result aggregation.

This module tests universal properties of summaries and aggregates:
- Count consistency (passes + fails + nNA == items)
- Scalar outcome policies for record aggregates
- Stable descending sort by failure count
- Subsetting before or after aggregation
"""

import polars as pl
import pytest
from hypothesis import given
from hypothesis import strategies as st

from tabvalidate.validation.aggregate import (
    AggregateBy,
    ScalarPolicy,
    aggregate,
    record_outcomes,
    sort,
    subset,
    summary,
)
from tabvalidate.validation.confrontation import confront
from tabvalidate.validation.validator import Validator
from tests.conftest import numeric_dataframe, rule_set


@pytest.fixture
def cf():
    df = pl.DataFrame({"x": [1, -1, None, 4], "y": [1, 1, 1, -1]})
    v = Validator("x > 0", "y > 0", "mean(y) > 0", "z > 0")
    v["V2"].label = "positive y"
    return confront(df, v)


class TestSummary:
    """Tests for the per-rule summary."""

    def test_columns_and_counts(self, cf):
        frame = summary(cf)

        assert frame.columns == ["name", "items", "passes", "fails", "nNA", "error", "warning", "expression"]
        assert frame.row(0) == ("V1", 4, 2, 1, 1, False, False, "x > 0")
        assert frame.row(2) == ("V3", 1, 1, 0, 0, False, False, "mean(y) > 0")
        assert frame.row(3) == ("V4", 0, 0, 0, 0, True, False, "z > 0")

    def test_empty_confrontation(self):
        frame = summary(confront(pl.DataFrame({"x": [1]}), []))
        assert frame.height == 0
        assert frame.schema["items"] == pl.Int64

    def test_method_matches_function(self, cf):
        assert cf.summary().equals(summary(cf))


class TestAggregateByRule:
    """Tests for aggregate(by="rule")."""

    def test_columns(self, cf):
        frame = aggregate(cf)
        assert frame.columns == [
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
        ]

    def test_labels_and_relative_counts(self, cf):
        frame = aggregate(cf, by="rule")

        assert frame["label"].to_list() == ["", "positive y", "", ""]
        assert frame["rel_pass"][0] == 0.5
        assert frame["rel_fail"][1] == 0.25

    def test_relative_counts_are_null_without_items(self, cf):
        errored = aggregate(cf).filter(pl.col("name") == "V4")
        assert errored["rel_pass"].to_list() == [None]


class TestAggregateByRecord:
    """Tests for aggregate(by="record")."""

    def test_scalar_rules_counted_once(self, cf):
        frame = aggregate(cf, by=AggregateBy.RECORD)

        assert frame.columns == [
            "record",
            "checked",
            "passes",
            "fails",
            "nNA",
            "rel_pass",
            "rel_fail",
            "rel_NA",
        ]
        assert frame["record"].to_list() == [0, 1, 2, 3]
        assert frame["checked"].to_list() == [2, 2, 2, 2]
        assert frame["passes"].to_list() == [2, 1, 1, 1]
        assert frame["fails"].to_list() == [0, 1, 0, 1]
        assert frame["nNA"].to_list() == [0, 0, 1, 0]

    def test_scalar_rules_broadcast(self, cf):
        frame = aggregate(cf, by="record", scalar_policy="broadcast")

        assert frame["checked"].to_list() == [3, 3, 3, 3]
        assert frame["passes"].to_list() == [3, 2, 2, 2]

    def test_record_outcomes_columns(self, cf):
        assert record_outcomes(cf).columns == ["V1", "V2"]
        assert record_outcomes(cf, ScalarPolicy.BROADCAST).columns == ["V1", "V2", "V3"]

    def test_no_record_rules(self):
        cf = confront(pl.DataFrame({"x": [1, 2]}), "mean(x) > 0")
        frame = aggregate(cf, by="record")

        assert frame["checked"].to_list() == [0, 0]
        assert frame["rel_pass"].to_list() == [None, None]

    def test_invalid_grouping(self, cf):
        with pytest.raises(ValueError, match="Invalid by"):
            aggregate(cf, by="column")

    def test_invalid_scalar_policy(self, cf):
        with pytest.raises(ValueError, match="Invalid scalar_policy"):
            aggregate(cf, by="record", scalar_policy="twice")


class TestSort:
    """Tests for sorting by descending failure count."""

    def test_sort_rules(self):
        df = pl.DataFrame({"x": [1, -1, -1], "y": [1, 1, -1], "z": [1, 1, 1]})
        cf = confront(df, Validator(a="z > 0", b="y > 0", c="x > 0", d="z < 5"))

        assert sort(cf)["name"].to_list() == ["c", "b", "a", "d"]

    def test_sort_records_is_stable(self):
        df = pl.DataFrame({"x": [1, -1, 1, -1], "y": [1, 1, 1, 1]})
        cf = confront(df, ["x > 0", "y > 0"])

        assert cf.sort(by="record")["record"].to_list() == [1, 3, 0, 2]


def test_subset_dispatches(cf):
    assert subset(cf, ["V1"]).names == ["V1"]
    assert subset(cf.validator, slice(0, 2)).names == ["V1", "V2"]


def test_subset_then_aggregate_matches_filter(cf):
    names = ["V2", "V3", "V4"]
    expected = aggregate(cf).filter(pl.col("name").is_in(names))
    assert aggregate(cf.subset(names)).equals(expected)


# Feature: aggregation, Property 1: Counts Add Up Per Rule
@given(df=numeric_dataframe(), texts=rule_set(min_size=1))
def test_property_rule_counts_add_up(df, texts):
    """For every rule: passes + fails + nNA == items."""
    frame = aggregate(confront(df, texts), by="rule")
    assert (frame["passes"] + frame["fails"] + frame["nNA"] == frame["items"]).all()


# Feature: aggregation, Property 2: Counts Add Up Per Record
@given(df=numeric_dataframe(), texts=rule_set(min_size=1))
def test_property_record_counts_add_up(df, texts):
    """For every record: passes + fails + nNA == checked, and totals match the rules."""
    cf = confront(df, texts)
    by_record = aggregate(cf, by="record")
    by_rule = aggregate(cf, by="rule")

    assert by_record.height == df.height
    assert (by_record["passes"] + by_record["fails"] + by_record["nNA"] == by_record["checked"]).all()
    assert by_record["fails"].sum() == by_rule["fails"].sum()


# Feature: aggregation, Property 3: Sorting Orders By Failures
@given(df=numeric_dataframe(min_rows=1), texts=rule_set(min_size=1))
def test_property_sort_descending(df, texts):
    """Sorted fails never increase from one row to the next."""
    fails = sort(confront(df, texts), by="record")["fails"].to_list()
    assert fails == sorted(fails, reverse=True)


# Feature: aggregation, Property 4: Subsetting Commutes With Aggregation
@given(df=numeric_dataframe(), texts=rule_set(min_size=1), data=st.data())
def test_property_subset_commutes_with_aggregate(df, texts, data):
    """Aggregating a subset equals filtering the full aggregate to its rules."""
    cf = confront(df, [*texts, "mean(a) > 0", "missing > 0"])
    mask = data.draw(st.lists(st.booleans(), min_size=len(cf), max_size=len(cf)))
    names = [name for name, keep in zip(cf.names, mask) if keep]

    expected = aggregate(cf).filter(pl.col("name").is_in(pl.Series(names, dtype=pl.Utf8)))
    assert aggregate(cf.subset(names)).equals(expected)
