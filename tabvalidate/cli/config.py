"""Configuration file loading and validation.

This module handles loading CLI configuration from JSON and YAML files,
merging CLI arguments into file-based configuration (with CLI taking
precedence), and validating the configuration structure.

Configuration files can specify:
- rules: Path to a YAML rule file
- reference: Mapping of dataset name -> data file path
- options: Confrontation options (raise, numeric_tolerance, ...)
- by: Aggregation ("rule" or "record")
- sort: Whether to sort by descending failure count

Relative paths in a configuration file are resolved against the file's
directory.
"""

import json
from pathlib import Path
from typing import Any

import yaml

from tabvalidate.core.exceptions import TabValidateError
from tabvalidate.validation.aggregate import AggregateBy
from tabvalidate.validation.exceptions import ConfigurationError
from tabvalidate.validation.options import ConfrontOptions

CONFIG_KEYS = ("rules", "reference", "options", "by", "sort")


class ConfigError(TabValidateError):
    """Configuration file error.

    Raised when configuration files cannot be loaded, parsed, or validated.
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message, {"path": str(path)} if path is not None else None)


def load_config(path: Path) -> dict[str, Any]:
    """Load configuration from a JSON or YAML file.

    Format is determined by file extension (.json, .yaml, .yml) or
    auto-detected otherwise.

    Args:
        path: Path to configuration file

    Returns:
        Configuration dictionary, with relative paths resolved

    Raises:
        ConfigError: If the file cannot be loaded or parsed

    Example:
        >>> config = load_config(Path("tabvalidate.yaml"))
        >>> config["rules"]
        PosixPath('/project/rules.yaml')
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    content = path.read_text()
    try:
        if path.suffix == ".json":
            config = json.loads(content)
        elif path.suffix in (".yaml", ".yml"):
            config = yaml.safe_load(content)
        else:
            try:
                config = json.loads(content)
            except json.JSONDecodeError:
                config = yaml.safe_load(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}", path=path) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", path=path) from e

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError(
            f"Configuration must be a mapping, got: {type(config).__name__}", path=path
        )

    base = path.parent
    if isinstance(config.get("rules"), str):
        config["rules"] = base / config["rules"]
    if isinstance(config.get("reference"), dict):
        config["reference"] = {
            name: base / ref if isinstance(ref, str) else ref
            for name, ref in config["reference"].items()
        }
    return config


def merge_config(base: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    """Merge CLI arguments into base configuration.

    Only non-None override values are applied, allowing config file values
    to be used when CLI arguments are not specified. ``reference`` and
    ``options`` mappings are merged key by key.

    Example:
        >>> merged = merge_config({"by": "rule", "options": {"raise": "none"}},
        ...                       by="record", options={"raise": "errors"})
        >>> merged
        {'by': 'record', 'options': {'raise': 'errors'}}
    """
    merged = base.copy()
    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("reference", "options") and isinstance(value, dict):
            nested = dict(merged.get(key) or {})
            nested.update({k: v for k, v in value.items() if v is not None})
            merged[key] = nested
        else:
            merged[key] = value
    return merged


def validate_config(config: dict[str, Any]) -> list[str]:
    """Validate configuration structure.

    Returns:
        List of validation error messages (empty list if valid)

    Example:
        >>> validate_config({"by": "column"})
        ["Invalid 'by': 'column'. Must be 'rule' or 'record'"]
    """
    errors = []

    for key in config:
        if key not in CONFIG_KEYS:
            errors.append(f"Unknown configuration key: '{key}'")

    if "by" in config and config["by"] not in [m.value for m in AggregateBy]:
        errors.append(f"Invalid 'by': {config['by']!r}. Must be 'rule' or 'record'")

    if "sort" in config and not isinstance(config["sort"], bool):
        errors.append(f"'sort' must be true or false, got: {config['sort']!r}")

    reference = config.get("reference")
    if reference is not None and not isinstance(reference, dict):
        errors.append("'reference' must map dataset names to file paths")

    options = config.get("options")
    if options is not None:
        if not isinstance(options, dict):
            errors.append("'options' must be a mapping")
        else:
            try:
                ConfrontOptions.from_mapping(options)
            except ConfigurationError as e:
                errors.append(e.message)

    return errors
