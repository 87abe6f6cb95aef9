"""Declarative rule-set support.

This module loads rule sets from Python dictionaries or YAML files and
writes them back. A rule set lists rules with optional metadata and may
carry confrontation options that become the Validator's options.

Example configuration:
    {
        "rules": [
            {"expr": "height > 0", "name": "positive_height"},
            {"expr": "BMI := weight / height^2", "label": "body mass index"},
            {"expr": "BMI < 23", "description": "Upper bound on BMI"},
            "weight > 0"
        ],
        "options": {"raise": "errors", "numeric_tolerance": 1e-6}
    }

A rule entry is either a string or a mapping with ``expr`` (or its alias
``rule``) and optional ``name``, ``label`` and ``description``.
"""

from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from tabvalidate.core.exceptions import DuplicateNameError, RuleParseError
from tabvalidate.core.rule import Rule
from tabvalidate.validation.exceptions import ConfigurationError, ConfigurationSchemaError
from tabvalidate.validation.options import ConfrontOptions
from tabvalidate.validation.validator import Validator

RULE_FIELDS = ("expr", "rule", "name", "label", "description")
_NUMERIC_OPTIONS = ("numeric_tolerance", "linear_equality_epsilon")


def load_rule_config(config_source: dict[str, Any] | str | Path) -> dict[str, Any]:
    """Load a rule-set configuration from a dict or YAML file.

    The configuration is validated against the schema before being returned.

    Args:
        config_source: Either a dict containing the configuration, or a
                       string/Path pointing to a YAML file

    Returns:
        Dictionary containing the validated configuration

    Raises:
        ConfigurationSchemaError: If the configuration is invalid
        FileNotFoundError: If the YAML file doesn't exist
    """
    if isinstance(config_source, dict):
        _validate_config_schema(config_source)
        return config_source

    config_path = Path(config_source)
    if not config_path.exists():
        msg = f"Rule file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open("r") as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            msg = f"Rule file is not valid YAML: {config_path}: {e}"
            raise ConfigurationSchemaError(msg, reason="Invalid YAML", path=str(config_path)) from e

    if not isinstance(config, dict):
        msg = f"Rule file must contain a YAML dictionary, got: {type(config).__name__}"
        raise ConfigurationSchemaError(msg, reason="Invalid YAML structure", path=str(config_path))

    _validate_config_schema(config)
    return config


def load_rules(config_source: dict[str, Any] | str | Path) -> Validator:
    """Build a Validator from a dict or YAML file.

    Rules read from a file get the file path as their origin.

    Example:
        >>> v = load_rules({"rules": ["x > 0", {"expr": "y > 0", "name": "y_pos"}]})
        >>> v.names
        ['V1', 'y_pos']
    """
    config = load_rule_config(config_source)
    origin = None if isinstance(config_source, dict) else str(config_source)
    return parse_rules(config, origin=origin)


def parse_rules(config: dict[str, Any], origin: str | None = None) -> Validator:
    """Construct a Validator from a validated configuration dictionary.

    Args:
        config: Rule-set configuration with keys:
                - rules: List of rule entries
                - options: Optional confrontation options
        origin: Origin recorded on every rule (defaults to the rule's own)

    Raises:
        ConfigurationSchemaError: If a rule cannot be parsed, names collide
                                 or the options are invalid
    """
    _validate_config_schema(config)
    validator = Validator(options=_parse_options(config.get("options") or {}))

    for idx, spec in enumerate(config["rules"]):
        if isinstance(spec, str):
            spec = {"expr": spec}
        text = spec.get("expr", spec.get("rule"))
        metadata = {
            key: spec[key] for key in ("label", "description") if spec.get(key) is not None
        }
        if origin is not None:
            metadata["origin"] = origin
        try:
            rule = Rule.from_text(text, **metadata)
            validator.add(rule, name=spec.get("name"))
        except RuleParseError as e:
            msg = f"Invalid rule at index {idx}: {e.message}"
            raise ConfigurationSchemaError(
                msg, rule_index=idx, field="expr", value=text, reason=e.message
            ) from e
        except DuplicateNameError as e:
            msg = f"Duplicate rule name at index {idx}: '{spec.get('name')}'"
            raise ConfigurationSchemaError(
                msg, rule_index=idx, field="name", value=spec.get("name"), reason="Duplicate name"
            ) from e

    return validator


def _parse_options(options: Mapping[str, Any]) -> dict[str, Any]:
    parsed = dict(options)
    # YAML reads 1e-6 (no dot) as a string
    for key in _NUMERIC_OPTIONS:
        value = parsed.get(key)
        if isinstance(value, str):
            try:
                parsed[key] = float(value)
            except ValueError as e:
                msg = f"Option '{key}' must be a number, got: {value!r}"
                raise ConfigurationSchemaError(
                    msg, field=f"options.{key}", value=value, reason="Invalid field type"
                ) from e
    try:
        ConfrontOptions.from_mapping(parsed)
    except ConfigurationError as e:
        msg = f"Invalid options: {e.message}"
        raise ConfigurationSchemaError(
            msg, field="options", value=dict(options), reason=e.message
        ) from e
    return parsed


def _validate_config_schema(config: dict[str, Any]) -> None:
    """Validate configuration against the rule-set schema.

    - Must have a "rules" key with a list value
    - Each rule is a string or a dict with a string "expr" (or "rule")
    - Optional "name", "label", "description" must be strings
    - Optional "options" must be a dict

    Raises:
        ConfigurationSchemaError: If configuration violates schema
    """
    if not isinstance(config, dict):
        msg = f"Configuration must be a dictionary, got: {type(config).__name__}"
        raise ConfigurationSchemaError(msg, reason="Invalid configuration type")

    if "rules" not in config:
        msg = "Configuration must contain 'rules' key"
        raise ConfigurationSchemaError(msg, field="rules", reason="Required field missing")

    rules = config["rules"]
    if not isinstance(rules, list):
        msg = f"'rules' must be a list, got: {type(rules).__name__}"
        raise ConfigurationSchemaError(
            msg, field="rules", value=rules, reason="Invalid field type"
        )

    for idx, spec in enumerate(rules):
        _validate_rule_spec(spec, idx)

    options = config.get("options")
    if options is not None and not isinstance(options, dict):
        msg = f"'options' must be a dictionary, got: {type(options).__name__}"
        raise ConfigurationSchemaError(
            msg, field="options", value=options, reason="Invalid field type"
        )


def _validate_rule_spec(spec: Any, index: int) -> None:
    if isinstance(spec, str):
        return

    if not isinstance(spec, dict):
        msg = f"Rule at index {index} must be a string or a dictionary, got: {type(spec).__name__}"
        raise ConfigurationSchemaError(
            msg, rule_index=index, reason="Invalid rule specification type"
        )

    unknown = sorted(set(spec) - set(RULE_FIELDS))
    if unknown:
        msg = f"Rule at index {index} has unknown fields: {', '.join(unknown)}"
        raise ConfigurationSchemaError(
            msg, rule_index=index, field=unknown[0], reason="Unknown field"
        )

    if "expr" not in spec and "rule" not in spec:
        msg = f"Rule at index {index} missing required 'expr' field"
        raise ConfigurationSchemaError(
            msg, rule_index=index, field="expr", reason="Required field missing"
        )

    for key in RULE_FIELDS:
        value = spec.get(key)
        if value is not None and not isinstance(value, str):
            msg = f"Rule field '{key}' at index {index} must be a string, got: {type(value).__name__}"
            raise ConfigurationSchemaError(
                msg, rule_index=index, field=key, value=value, reason="Invalid field type"
            )


def dump_rules(validator: Validator) -> dict[str, Any]:
    """Export a Validator as a rule-set dictionary.

    Auto-generated names are written out too, so a load/dump cycle keeps
    rule names stable.
    """
    rules = []
    for name, rule in validator.items():
        spec: dict[str, Any] = {"name": name, "expr": rule.text}
        if rule.label:
            spec["label"] = rule.label
        if rule.description:
            spec["description"] = rule.description
        rules.append(spec)

    config: dict[str, Any] = {"rules": rules}
    if validator.options:
        config["options"] = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in validator.options.items()
        }
    return config


def save_rules(validator: Validator, path: str | Path) -> Path:
    """Write a Validator to a YAML rule file and return its path."""
    path = Path(path)
    with path.open("w") as f:
        yaml.safe_dump(dump_rules(validator), f, sort_keys=False)
    return path


def get_rules_schema() -> dict[str, Any]:
    """Export the rule-set schema for documentation.

    Example:
        >>> schema = get_rules_schema()
        >>> schema["required"]
        ['rules']
    """
    return {
        "type": "object",
        "required": ["rules"],
        "properties": {
            "rules": {
                "type": "array",
                "description": "Rules in evaluation order",
                "items": {
                    "oneOf": [
                        {"type": "string", "description": "Rule text"},
                        {
                            "type": "object",
                            "required": ["expr"],
                            "properties": {
                                "expr": {
                                    "type": "string",
                                    "description": "Rule text, 'NAME := expr' for derivations",
                                },
                                "rule": {"type": "string", "description": "Alias of 'expr'"},
                                "name": {"type": "string", "description": "Unique rule name"},
                                "label": {"type": "string", "description": "Short label"},
                                "description": {"type": "string", "description": "Long description"},
                            },
                        },
                    ],
                },
            },
            "options": {
                "type": "object",
                "description": "Confrontation options",
                "properties": {
                    "raise": {"type": "string", "enum": ["none", "errors", "all"], "default": "none"},
                    "numeric_tolerance": {"type": "number", "default": 1e-8},
                    "linear_equality_epsilon": {"type": "number", "default": 1e-8},
                    "na_value": {"type": ["boolean", "null"], "default": None},
                },
            },
        },
    }
