"""Tests for confrontation options and their resolution."""

import pytest

from tabvalidate.validation.exceptions import ConfigurationError
from tabvalidate.validation.options import (
    DEFAULT_OPTIONS,
    ConfrontOptions,
    RaiseMode,
    get_options,
    reset_options,
    resolve_options,
    set_options,
)


class TestConfrontOptions:
    """Tests for ConfrontOptions validation."""

    def test_defaults(self):
        options = ConfrontOptions()
        assert options.raise_mode is RaiseMode.NONE
        assert options.numeric_tolerance == 1e-8
        assert options.linear_equality_epsilon == 1e-8
        assert options.na_value is None

    def test_raise_mode_from_string(self):
        assert ConfrontOptions(raise_mode="all").raise_mode is RaiseMode.ALL  # type: ignore[arg-type]

    def test_invalid_raise_mode(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ConfrontOptions(raise_mode="sometimes")  # type: ignore[arg-type]
        assert exc_info.value.context["parameter"] == "raise_mode"

    def test_negative_tolerance(self):
        with pytest.raises(ConfigurationError, match="non-negative"):
            ConfrontOptions(numeric_tolerance=-0.1)

    def test_non_numeric_tolerance(self):
        with pytest.raises(ConfigurationError, match="must be a number"):
            ConfrontOptions(linear_equality_epsilon="small")  # type: ignore[arg-type]

    def test_boolean_is_not_a_tolerance(self):
        with pytest.raises(ConfigurationError):
            ConfrontOptions(numeric_tolerance=True)

    def test_integer_tolerance_becomes_float(self):
        assert isinstance(ConfrontOptions(numeric_tolerance=0).numeric_tolerance, float)

    def test_invalid_na_value(self):
        with pytest.raises(ConfigurationError, match="na_value"):
            ConfrontOptions(na_value="yes")  # type: ignore[arg-type]

    def test_is_immutable(self):
        with pytest.raises(AttributeError):
            DEFAULT_OPTIONS.numeric_tolerance = 1.0  # type: ignore[misc]


class TestMerge:
    """Tests for merging option overrides."""

    def test_raise_alias(self):
        merged = DEFAULT_OPTIONS.merge({"raise": "errors"})
        assert merged.raise_mode is RaiseMode.ERRORS

    def test_keyword_overrides(self):
        merged = DEFAULT_OPTIONS.merge(na_value=False, numeric_tolerance=0.5)
        assert merged.na_value is False
        assert merged.numeric_tolerance == 0.5

    def test_none_values_are_ignored(self):
        base = ConfrontOptions(na_value=True)
        assert base.merge({"na_value": None}) is base

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError, match="Unknown option: 'tolerance'"):
            DEFAULT_OPTIONS.merge({"tolerance": 1.0})

    def test_to_dict(self):
        assert ConfrontOptions(raise_mode=RaiseMode.ALL).to_dict() == {
            "raise_mode": "all",
            "numeric_tolerance": 1e-8,
            "linear_equality_epsilon": 1e-8,
            "na_value": None,
        }

    def test_from_mapping(self):
        options = ConfrontOptions.from_mapping({"raise": "all", "na_value": True})
        assert options.raise_mode is RaiseMode.ALL
        assert options.na_value is True


class TestResolution:
    """Tests for the global defaults and layered resolution."""

    def test_set_and_reset_global_options(self):
        set_options(numeric_tolerance=0.01)
        assert get_options().numeric_tolerance == 0.01

        reset_options()
        assert get_options() is DEFAULT_OPTIONS

    def test_layers_later_wins(self):
        set_options(numeric_tolerance=0.01, na_value=True)

        resolved = resolve_options({"raise": "errors", "numeric_tolerance": 0.02}, None, {"raise": "all"})

        assert resolved.raise_mode is RaiseMode.ALL
        assert resolved.numeric_tolerance == 0.02
        assert resolved.na_value is True

    def test_options_object_replaces_earlier_layers(self):
        set_options(numeric_tolerance=0.01)
        resolved = resolve_options({"raise": "errors"}, ConfrontOptions())
        assert resolved == ConfrontOptions()

    def test_no_layers_gives_global_defaults(self):
        assert resolve_options() is get_options()
