"""Tests for confronting data with rules.

This module tests the confront entry point and the Confrontation it returns:
- Substitution before evaluation
- Per-rule capture of errors and warnings
- Raise policies
- NA handling
- Reference datasets
- Selection, violating records and export
"""

import json
import logging
import warnings

import polars as pl
import pytest
from hypothesis import given

from tabvalidate.core.exceptions import CyclicDefinitionError, DataSourceError, NotFoundError
from tabvalidate.validation.confrontation import Confrontation, confront
from tabvalidate.validation.exceptions import (
    ConfigurationError,
    EvaluationError,
    EvaluationErrorKind,
    RuleEvaluationWarning,
)
from tabvalidate.validation.options import RaiseMode, set_options
from tabvalidate.validation.validator import Validator
from tests.conftest import numeric_dataframe, rule_set


class WarningEvaluator:
    """Evaluator that passes every record but always signals a warning."""

    def evaluate(self, expression, context):
        warnings.warn(f"suspicious: {expression.text}", RuleEvaluationWarning)
        return pl.Series([True] * context.records)


class FailingEvaluator:
    """Evaluator that raises a plain Python exception."""

    def evaluate(self, expression, context):
        raise ZeroDivisionError("division by zero")


class ConstantEvaluator:
    def __init__(self, value):
        self.value = value

    def evaluate(self, expression, context):
        return self.value


class TestConfront:
    """Tests for basic confrontation behavior."""

    def test_all_rules_pass(self, people):
        cf = confront(people, ["height > 0", "weight > 0", "height / weight >= 0.5"])

        assert isinstance(cf, Confrontation)
        assert cf.names == ["V1", "V2", "V3"]
        assert cf.records == 3
        assert cf.all() is True
        assert cf.errors() == {}

    def test_derivations_are_substituted(self):
        df = pl.DataFrame({"height": [5.0], "weight": [150.0]})
        cf = confront(df, ["BMI := weight / height^2", "BMI < 23"])

        assert cf.names == ["V2"]
        assert cf["V2"].expression == "weight / height ** 2 < 23"
        assert cf["V2"].value.to_list() == [True]

    def test_derived_column_does_not_leak_into_data(self):
        df = pl.DataFrame({"height": [5.0], "weight": [150.0]})
        confront(df, ["BMI := weight / height^2", "BMI < 23"])
        assert df.columns == ["height", "weight"]

    def test_outcomes_follow_validator_order(self):
        cf = confront(pl.DataFrame({"x": [1]}), Validator(b="x > 0", a="x < 5", c="x == 1"))
        assert cf.names == ["b", "a", "c"]

    def test_single_rule_and_mapping_data(self):
        cf = confront({"x": [1, -1]}, "x > 0")
        assert cf["V1"].value.to_list() == [True, False]
        assert cf.datasets == ["data"]

    def test_validator_is_not_mutated(self, people):
        v = Validator("height > 0", "BMI := weight / height^2", "BMI < 23")
        confront(people, v)

        assert v.names == ["V1", "V2", "V3"]
        assert v["V3"].text == "BMI < 23"

    def test_cycle_raises_before_evaluation(self, people):
        with pytest.raises(CyclicDefinitionError) as exc_info:
            confront(people, ["a := b + 1", "b := a - 1", "a > 0", "height > 0"])

        assert exc_info.value.context["rules"] == ["V1", "V2", "V3"]

    def test_renamed_subset_reports_current_names(self, people):
        v = Validator("BMI := weight / height^2", "BMI < 30")
        sub = v.subset([0, 1])
        sub.rename("V2", "bmi_check")

        assert confront(people, sub).names == ["bmi_check"]
        assert confront(people, v).names == ["V2"]

    def test_numeric_operands_of_not(self):
        cf = confront(pl.DataFrame({"x": [0, 1, 2]}), ["not x"])
        assert cf["V1"].logical().to_list() == [True, False, False]

    def test_integer_keys_beyond_float_precision(self):
        cf = confront(pl.DataFrame({"a": [2**53 + 1], "b": [2**53]}), ["a == b"])
        assert cf["V1"].logical().to_list() == [False]

    def test_invalid_data(self):
        with pytest.raises(DataSourceError):
            confront({"x": [1, 2], "y": [1]}, "x > 0")


class TestErrorCapture:
    """Tests for per-rule error and warning capture."""

    def test_undefined_variable_is_captured(self, people):
        cf = confront(people, ["hite > 0", "weight > 0"])

        error = cf.errors()["V1"]
        assert error.kind is EvaluationErrorKind.UNDEFINED_REFERENCE
        assert error.context["rule"] == "V1"
        assert error.context["expression"] == "hite > 0"
        assert cf["V2"].value.to_list() == [True, True, True]
        assert cf.all() is False

    def test_errored_outcome_has_no_value(self, people):
        cf = confront(people, "hite > 0")
        assert cf["V1"].value is None
        assert cf["V1"].counts() == (0, 0, 0, 0)

    def test_error_is_logged(self, people, caplog):
        with caplog.at_level(logging.WARNING, logger="tabvalidate.validation.confrontation"):
            confront(people, "hite > 0")

        assert "Rule 'V1' could not be evaluated" in caplog.text

    def test_plain_exceptions_become_runtime_faults(self, people):
        cf = confront(people, "height > 0", evaluator=FailingEvaluator())

        error = cf.errors()["V1"]
        assert error.kind is EvaluationErrorKind.RUNTIME_FAULT
        assert error.context["reason"] == "ZeroDivisionError"
        assert isinstance(error.__cause__, ZeroDivisionError)

    def test_non_logical_value_is_type_mismatch(self, people):
        cf = confront(people, "height > 0", evaluator=ConstantEvaluator("yes"))
        assert cf.errors()["V1"].kind is EvaluationErrorKind.TYPE_MISMATCH

    def test_list_value_becomes_series(self, people):
        cf = confront(people, "height > 0", evaluator=ConstantEvaluator([True, False, True]))
        assert cf["V1"].value.to_list() == [True, False, True]
        assert cf["V1"].scalar is False

    def test_warnings_are_captured(self, people):
        cf = confront(people, ["height > 0", "weight > 0"], evaluator=WarningEvaluator())

        assert list(cf.warnings()) == ["V1", "V2"]
        assert str(cf["V1"].warnings[0]) == "suspicious: height > 0"
        assert cf["V1"].value.to_list() == [True, True, True]

    def test_nan_warning_from_default_evaluator(self):
        cf = confront(pl.DataFrame({"x": [-1.0, 4.0]}), "sqrt(x)")

        assert isinstance(cf["V1"].warnings[0], RuleEvaluationWarning)
        assert cf["V1"].counts() == (2, 1, 0, 1)


class TestRaisePolicies:
    """Tests for raise_mode."""

    def test_errors_mode_raises_first_error(self, people):
        with pytest.raises(EvaluationError) as exc_info:
            confront(people, ["height > 0", "hite > 0", "wieght > 0"], raise_mode="errors")

        assert exc_info.value.context["rule"] == "V2"

    def test_raise_alias_via_options(self, people):
        with pytest.raises(EvaluationError):
            confront(people, "hite > 0", options={"raise": "errors"})

    def test_validator_options_apply(self, people):
        v = Validator("hite > 0", options={"raise": "all"})
        with pytest.raises(EvaluationError):
            confront(people, v)

    def test_call_options_override_validator_options(self, people):
        v = Validator("hite > 0", options={"raise": "all"})
        cf = confront(people, v, raise_mode="none")
        assert "V1" in cf.errors()

    def test_errors_mode_captures_warnings(self, people):
        cf = confront(people, "height > 0", evaluator=WarningEvaluator(), raise_mode="errors")
        assert cf.options.raise_mode is RaiseMode.ERRORS
        assert list(cf.warnings()) == ["V1"]

    def test_all_mode_raises_warnings(self, people):
        with pytest.raises(RuleEvaluationWarning, match="suspicious"):
            confront(people, "height > 0", evaluator=WarningEvaluator(), raise_mode="all")

    def test_invalid_raise_mode(self, people):
        with pytest.raises(ConfigurationError):
            confront(people, "height > 0", raise_mode="sometimes")

    def test_global_options_apply(self, people):
        set_options(raise_mode="errors")
        with pytest.raises(EvaluationError):
            confront(people, "hite > 0")


class TestMissingValues:
    """Tests for NA outcomes."""

    def test_na_outcomes_make_all_undetermined(self):
        cf = confront(pl.DataFrame({"x": [1, None]}), "x > 0")

        assert cf.all() is None
        assert cf.all(na_rm=True) is True
        assert cf.any_failed() is False

    def test_na_value_replaces_missing(self):
        cf = confront(pl.DataFrame({"x": [1, None]}), "x > 0", na_value=False)

        assert cf["V1"].value.to_list() == [True, False]
        assert cf.all() is False

    def test_na_value_on_scalar(self):
        cf = confront(pl.DataFrame({"x": [None, None]}, schema={"x": pl.Int64}), "mean(x) > 0", na_value=True)
        assert cf["V1"].value is True


class TestReferences:
    """Tests for reference datasets."""

    def test_reference_mapping(self):
        cf = confront(
            pl.DataFrame({"x": [1, 5]}),
            "x <= ref.limit",
            reference={"ref": pl.DataFrame({"limit": [3, 3]})},
        )

        assert cf.datasets == ["data", "ref"]
        assert cf["V1"].value.to_list() == [True, False]

    def test_named_datasets(self):
        survey = pl.DataFrame({"x": [1, 5]})
        limits = pl.DataFrame({"x": [2]})
        cf = confront({"survey": survey, "limits": limits}, ["survey.x <= limits.x", "x > 0"])

        assert cf.datasets == ["survey", "limits"]
        assert cf.records == 2
        assert cf["V1"].value.to_list() == [True, False]


class TestAccess:
    """Tests for outcome access and selection."""

    @pytest.fixture
    def cf(self) -> Confrontation:
        df = pl.DataFrame({"x": [1, -1, 3], "y": [1, 1, -1]})
        return confront(df, ["x > 0", "y > 0", "mean(x) > 0", "z > 0"])

    def test_outcome_by_position(self, cf):
        assert cf[0] is cf["V1"]
        assert cf.outcome(-1) is cf["V4"]

    def test_unknown_outcome(self, cf):
        with pytest.raises(NotFoundError):
            cf["V9"]
        with pytest.raises(NotFoundError):
            cf[9]

    def test_container_protocol(self, cf):
        assert len(cf) == 4
        assert "V2" in cf
        assert [o.name for o in cf] == ["V1", "V2", "V3", "V4"]

    def test_values_holds_vector_outcomes(self, cf):
        values = cf.values()
        assert values.columns == ["V1", "V2"]
        assert values["V1"].to_list() == [True, False, True]

    def test_scalars(self, cf):
        assert cf.scalars() == {"V3": True}

    def test_subset(self, cf):
        sub = cf.subset(["V2", "V3"])

        assert sub.names == ["V2", "V3"]
        assert sub.validator.names == ["V2", "V3"]
        assert sub["V2"] is cf["V2"]
        assert sub.timestamp == cf.timestamp

    def test_subset_by_mask(self, cf):
        assert cf.subset([True, False, False, True]).names == ["V1", "V4"]

    def test_subset_keeps_derivations(self, people):
        cf = confront(people, ["BMI := weight / height^2", "BMI < 23", "height > 0"])
        sub = cf.subset(["V2"])

        assert sub.names == ["V2"]
        assert sub.validator.names == ["V1", "V2"]
        assert sub.validator.expressions()["V2"].text == sub["V2"].expression

    def test_violating(self, cf):
        violating = cf.violating()
        assert violating.to_dict(as_series=False) == {"x": [-1, 3], "y": [1, -1]}

    def test_violating_other_frame(self, cf):
        ids = pl.DataFrame({"id": ["a", "b", "c"]})
        assert cf.violating(ids)["id"].to_list() == ["b", "c"]

    def test_violating_row_mismatch(self, cf):
        with pytest.raises(DataSourceError, match="row count mismatch|rows"):
            cf.violating(pl.DataFrame({"id": ["a"]}))

    def test_violating_without_record_rules(self):
        cf = confront(pl.DataFrame({"x": [1, 2]}), "mean(x) > 5")
        assert cf.violating().height == 0

    def test_any_failed(self, cf):
        assert cf.any_failed() is True


class TestReporting:
    """Tests for export and text output."""

    def test_to_json(self, people):
        cf = confront(people, ["height > 58", "hite > 0"])
        report = cf.to_json()

        assert report["datasets"] == ["data"]
        assert report["records"] == 3
        assert report["options"]["raise_mode"] == "none"
        assert report["summary"] == {
            "rules": 2,
            "passes": 2,
            "fails": 1,
            "nNA": 0,
            "errors": 1,
            "warnings": 0,
            "all": False,
        }
        assert report["results"][1]["error"]["kind"] == "UndefinedReference"
        json.dumps(report)

    def test_format(self, people):
        cf = confront(people, ["height > 58", "hite > 0"])
        text = cf.format()

        assert "2 rules, dataset 'data' with 3 records" in text
        assert "Rules with fails: 1, errors: 1, warnings: 0" in text
        assert "[V1] height > 58: 2 passes, 1 fails, 0 NA" in text
        assert "[V2] hite > 0: error:" in text

    def test_repr(self, people):
        cf = confront(people, ["height > 58", "hite > 0"])
        assert repr(cf) == "Confrontation(2 rules, 3 records, 1 errors, 0 warnings)"


# Feature: confrontation, Property 1: One Outcome Per Check Rule
@given(df=numeric_dataframe(), texts=rule_set())
def test_property_one_outcome_per_check_rule(df, texts):
    """Every check rule gets exactly one outcome, in validator order."""
    v = Validator(*texts)
    cf = confront(df, v)

    assert cf.names == [rule.name for rule in v.check_rules()]
    assert cf.errors() == {}
    for outcome in cf:
        items, passes, fails, missing = outcome.counts()
        assert passes + fails + missing == items
