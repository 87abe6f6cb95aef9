"""Tests for declarative rule-set configuration.

This module tests loading rule sets from dictionaries and YAML files,
schema validation, and writing rule sets back to YAML.
"""

from pathlib import Path

import polars as pl
import pytest
import yaml

from tabvalidate.validation.confrontation import confront
from tabvalidate.validation.declarative import (
    dump_rules,
    get_rules_schema,
    load_rule_config,
    load_rules,
    parse_rules,
    save_rules,
)
from tabvalidate.validation.exceptions import ConfigurationSchemaError
from tabvalidate.validation.options import RaiseMode
from tabvalidate.validation.validator import Validator

RULES_YAML = """\
rules:
  - expr: height > 0
    name: positive_height
    label: positive height
  - expr: "BMI := weight / height^2"
    description: body mass index
  - BMI < 23
options:
  raise: errors
  numeric_tolerance: 1e-6
"""


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML)
    return path


class TestLoadRuleConfig:
    """Tests for load_rule_config function."""

    def test_load_from_dict(self):
        config = {"rules": ["x > 0"]}
        assert load_rule_config(config) is config

    def test_load_from_dict_validates_schema(self):
        with pytest.raises(ConfigurationSchemaError, match="must contain 'rules'"):
            load_rule_config({"checks": ["x > 0"]})

    def test_load_from_nonexistent_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Rule file not found"):
            load_rule_config(tmp_path / "missing.yaml")

    def test_load_from_yaml(self, rules_file):
        config = load_rule_config(rules_file)
        assert len(config["rules"]) == 3
        assert config["options"]["raise"] == "errors"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("rules: [x > 0\n")

        with pytest.raises(ConfigurationSchemaError) as exc_info:
            load_rule_config(path)

        assert exc_info.value.context["reason"] == "Invalid YAML"

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- x > 0\n- y > 0\n")

        with pytest.raises(ConfigurationSchemaError, match="must contain a YAML dictionary"):
            load_rule_config(path)


class TestParseRules:
    """Tests for parse_rules and load_rules."""

    def test_parse_rule_entries(self):
        validator = parse_rules(
            {
                "rules": [
                    "x > 0",
                    {"expr": "y > 0", "name": "y_pos", "label": "positive y"},
                    {"rule": "z := x + y"},
                ]
            }
        )

        assert validator.names == ["V1", "y_pos", "V2"]
        assert validator["y_pos"].label == "positive y"
        assert validator["V2"].is_derive

    def test_parse_empty_rules_list(self):
        validator = parse_rules({"rules": []})
        assert len(validator) == 0

    def test_load_from_file_records_origin(self, rules_file):
        validator = load_rules(rules_file)

        assert validator.names == ["positive_height", "V1", "V2"]
        assert set(validator.origins.values()) == {str(rules_file)}
        assert validator.descriptions["V1"] == "body mass index"

    def test_options_become_validator_options(self, rules_file):
        validator = load_rules(rules_file)

        # YAML reads 1e-6 as a string; it is coerced to a float
        assert validator.options == {"raise": "errors", "numeric_tolerance": 1e-6}

    def test_loaded_rules_confront(self, rules_file):
        validator = load_rules(rules_file)
        df = pl.DataFrame({"height": [1.0, 10.0], "weight": [150.0, 100.0]})

        cf = confront(df, validator)

        assert cf.options.raise_mode is RaiseMode.ERRORS
        assert cf.options.numeric_tolerance == 1e-6
        assert cf["V2"].value.to_list() == [False, True]

    def test_invalid_rule_text(self):
        with pytest.raises(ConfigurationSchemaError) as exc_info:
            parse_rules({"rules": ["x > 0", "y >"]})

        assert exc_info.value.context["rule_index"] == 1
        assert exc_info.value.context["field"] == "expr"

    def test_duplicate_names(self):
        with pytest.raises(ConfigurationSchemaError, match="Duplicate rule name"):
            parse_rules({"rules": [{"expr": "x > 0", "name": "a"}, {"expr": "y > 0", "name": "a"}]})

    def test_invalid_options(self):
        with pytest.raises(ConfigurationSchemaError) as exc_info:
            parse_rules({"rules": ["x > 0"], "options": {"raise": "sometimes"}})

        assert exc_info.value.context["field"] == "options"

    def test_non_numeric_tolerance_string(self):
        with pytest.raises(ConfigurationSchemaError, match="must be a number"):
            parse_rules({"rules": ["x > 0"], "options": {"numeric_tolerance": "small"}})


class TestConfigurationSchemaValidation:
    """Tests for rule-set schema validation."""

    def test_rules_not_list(self):
        with pytest.raises(ConfigurationSchemaError, match="'rules' must be a list"):
            parse_rules({"rules": "x > 0"})

    def test_rule_missing_expr(self):
        with pytest.raises(ConfigurationSchemaError) as exc_info:
            parse_rules({"rules": [{"name": "a"}]})

        assert exc_info.value.context["reason"] == "Required field missing"

    def test_unknown_rule_field(self):
        with pytest.raises(ConfigurationSchemaError, match="unknown fields: severity"):
            parse_rules({"rules": [{"expr": "x > 0", "severity": "error"}]})

    def test_non_string_field(self):
        with pytest.raises(ConfigurationSchemaError, match="must be a string"):
            parse_rules({"rules": [{"expr": "x > 0", "name": 3}]})

    def test_rule_not_dict_or_string(self):
        with pytest.raises(ConfigurationSchemaError, match="string or a dictionary"):
            parse_rules({"rules": [["x > 0"]]})

    def test_options_not_dict(self):
        with pytest.raises(ConfigurationSchemaError, match="'options' must be a dictionary"):
            parse_rules({"rules": [], "options": ["raise"]})


class TestDumpRules:
    """Tests for writing rule sets back out."""

    def test_dump_keeps_names_and_metadata(self):
        validator = Validator("x > 0", options={"raise": "all"})
        validator.add("y := x * 2", name="double")
        validator["double"].label = "twice x"

        config = dump_rules(validator)

        assert config == {
            "rules": [
                {"name": "V1", "expr": "x > 0"},
                {"name": "double", "expr": "y := x * 2", "label": "twice x"},
            ],
            "options": {"raise": "all"},
        }

    def test_save_and_load(self, tmp_path, rules_file):
        original = load_rules(rules_file)
        path = save_rules(original, tmp_path / "out.yaml")

        reloaded = load_rules(path)

        assert reloaded.names == original.names
        assert [r.text for r in reloaded] == [r.text for r in original]
        assert reloaded.labels == original.labels
        assert yaml.safe_load(path.read_text())["rules"][0]["name"] == "positive_height"


class TestGetRulesSchema:
    """Tests for the exported schema."""

    def test_schema_structure(self):
        schema = get_rules_schema()
        assert schema["required"] == ["rules"]
        assert "options" in schema["properties"]

    def test_schema_raise_enum(self):
        raise_schema = get_rules_schema()["properties"]["options"]["properties"]["raise"]
        assert raise_schema["enum"] == [m.value for m in RaiseMode]
