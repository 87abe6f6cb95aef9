"""CLI command implementations.

This module implements the CLI commands of the tabvalidate tool:
- confront: Confront a data file with a YAML rule set
- check_rules: Parse and expand a rule set, show rules and blocks
- variables: List the variables a rule set depends on
- blocks: Show the dependency blocks of a rule set

Each command is implemented as a function that returns an exit code,
enabling both direct invocation and subprocess-based testing.
"""

import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import polars as pl
from cyclopts import Parameter

from tabvalidate.cli.config import ConfigError, load_config, merge_config, validate_config
from tabvalidate.cli.exit_codes import ExitCode
from tabvalidate.cli.output import ProgressIndicator, configure_logging, handle_error, print_frame
from tabvalidate.core.exceptions import CyclicDefinitionError, DataSourceError
from tabvalidate.validation.confrontation import confront as run_confrontation
from tabvalidate.validation.declarative import load_rules
from tabvalidate.validation.exceptions import (
    ConfigurationError,
    ConfigurationSchemaError,
    EvaluationError,
)

logger = logging.getLogger(__name__)

DATA_FORMATS = {
    ".csv": "csv",
    ".json": "json",
    ".ndjson": "ndjson",
    ".jsonl": "ndjson",
    ".parquet": "parquet",
    ".pq": "parquet",
}


def infer_format(path: Path) -> str:
    """Infer the data format from a file extension.

    Raises:
        DataSourceError: If the extension is not recognized
    """
    suffix = path.suffix.lower()
    if suffix not in DATA_FORMATS:
        msg = (
            f"Cannot infer data format from extension '{suffix}'. "
            f"Supported: {', '.join(sorted(DATA_FORMATS))}"
        )
        raise DataSourceError(msg, source=str(path), reason="unknown extension")
    return DATA_FORMATS[suffix]


def read_data(path: Path) -> pl.DataFrame:
    """Read a data file into a DataFrame, choosing the reader by extension.

    Raises:
        DataSourceError: If the file is missing, of unknown type or unreadable
    """
    if not path.exists():
        msg = f"Data file not found: {path}"
        raise DataSourceError(msg, source=str(path), reason="file not found")

    readers = {
        "csv": pl.read_csv,
        "json": pl.read_json,
        "ndjson": pl.read_ndjson,
        "parquet": pl.read_parquet,
    }
    data_format = infer_format(path)
    try:
        return readers[data_format](path)
    except (pl.exceptions.PolarsError, OSError, ValueError) as e:
        msg = f"Cannot read {data_format} file {path}: {e}"
        raise DataSourceError(msg, source=str(path), reason=str(e)) from e


def write_table(frame: pl.DataFrame, path: Path) -> None:
    """Write a result table, choosing the writer by extension."""
    data_format = infer_format(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if data_format == "csv":
        frame.write_csv(path)
    elif data_format == "json":
        frame.write_json(path)
    elif data_format == "ndjson":
        frame.write_ndjson(path)
    else:
        frame.write_parquet(path)


def _parse_references(references: list[str] | None) -> dict[str, Path] | None:
    if not references:
        return None
    parsed = {}
    for item in references:
        name, sep, path = item.partition("=")
        if not sep or not name or not path:
            msg = f"Invalid reference '{item}'. Expected NAME=PATH"
            raise ConfigError(msg)
        parsed[name] = Path(path)
    return parsed


def _setup_logging(log_level: str, log_file: Path | None) -> bool:
    try:
        configure_logging(log_level, log_file)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return False
    return True


def confront(
    data_path: Annotated[Path, Parameter(help="Data file (csv, json, ndjson, parquet)")],
    rules: Annotated[Path | None, Parameter(help="YAML rule file")] = None,
    reference: Annotated[
        list[str] | None, Parameter(help="Reference dataset NAME=PATH (repeatable)")
    ] = None,
    by: Annotated[str | None, Parameter(help="Aggregate by 'rule' or 'record'")] = None,
    sort: Annotated[bool | None, Parameter(help="Sort by descending failure count")] = None,
    raise_mode: Annotated[str | None, Parameter(help="Raise policy (none, errors, all)")] = None,
    config: Annotated[Path | None, Parameter(help="Configuration file path")] = None,
    output: Annotated[Path | None, Parameter(help="Write the result table to this file")] = None,
    quiet: Annotated[bool, Parameter(help="Suppress progress output")] = False,
    verbose: Annotated[bool, Parameter(help="Show detailed error information")] = False,
    log_level: Annotated[str, Parameter(help="Log level (debug, info, warning, error)")] = "warning",
    log_file: Annotated[Path | None, Parameter(help="Log file path")] = None,
) -> int:
    """Confront a data file with a rule set.

    Reads the data file (and any reference datasets), loads the rule set,
    evaluates every check rule and prints the aggregated results.

    Args:
        data_path: Path to the primary data file
        rules: Path to the YAML rule file (or set "rules" in the config)
        reference: Reference datasets as NAME=PATH, addressable as NAME.column
        by: Aggregate by "rule" (default) or "record"
        sort: Order rows by descending failure count
        raise_mode: Override the raise policy of the rule set
        config: Path to configuration file (optional)
        output: Write the result table (csv, json, ndjson, parquet)
        quiet: Suppress progress indicators
        verbose: Show detailed error information including stack traces
        log_level: Logging level (debug, info, warning, error)
        log_file: Path to log file (optional)

    Returns:
        Exit code: 0 when every rule is satisfied, 2 for violations or
        evaluation errors, 3 for data errors, 6 for configuration errors,
        7 for rule-set errors

    Example:
        >>> exit_code = confront(
        ...     data_path=Path("people.csv"),
        ...     rules=Path("rules.yaml"),
        ...     by="record",
        ...     sort=True,
        ... )
    """
    if not _setup_logging(log_level, log_file):
        return ExitCode.CONFIG_ERROR

    try:
        cfg: dict[str, Any] = load_config(config) if config else {}
        cfg = merge_config(
            cfg,
            rules=rules,
            reference=_parse_references(reference),
            options={"raise_mode": raise_mode} if raise_mode else None,
            by=by,
            sort=sort,
        )

        errors = validate_config(cfg)
        if errors:
            print("✗ Configuration validation failed:", file=sys.stderr)
            for error in errors:
                print(f"  {error}", file=sys.stderr)
            return ExitCode.CONFIG_ERROR
        if not cfg.get("rules"):
            print("Error: No rule file given (use --rules or set 'rules' in the config)", file=sys.stderr)
            return ExitCode.CONFIG_ERROR
    except ConfigError as e:
        handle_error(e, verbose=verbose)
        return ExitCode.CONFIG_ERROR

    try:
        validator = load_rules(cfg["rules"])
    except (ConfigurationSchemaError, FileNotFoundError) as e:
        handle_error(e, verbose=verbose)
        return ExitCode.RULE_ERROR

    try:
        data = read_data(data_path)
        references = {name: read_data(Path(p)) for name, p in (cfg.get("reference") or {}).items()}
    except DataSourceError as e:
        handle_error(e, verbose=verbose)
        return ExitCode.DATA_ERROR

    progress = ProgressIndicator(enabled=not quiet)
    progress.start(f"Confronting {data_path.name} with {len(validator)} rules")
    try:
        cf = run_confrontation(data, validator, reference=references, options=cfg.get("options"))
    except CyclicDefinitionError as e:
        progress.error("Rule set has cyclic definitions")
        handle_error(e, verbose=verbose)
        return ExitCode.RULE_ERROR
    except DataSourceError as e:
        progress.error("Invalid data")
        handle_error(e, verbose=verbose)
        return ExitCode.DATA_ERROR
    except ConfigurationError as e:
        progress.error("Invalid options")
        handle_error(e, verbose=verbose)
        return ExitCode.CONFIG_ERROR
    except (EvaluationError, Warning) as e:
        progress.error("Evaluation stopped")
        handle_error(e, verbose=verbose)
        return ExitCode.VIOLATIONS
    except Exception as e:
        logger.exception("Unexpected error during confrontation")
        handle_error(e, verbose=verbose)
        return ExitCode.UNEXPECTED_ERROR

    by_value = cfg.get("by", "rule")
    table = cf.sort(by=by_value) if cfg.get("sort") else cf.aggregate(by=by_value)

    failed = cf.any_failed()
    n_errors = len(cf.errors())
    progress.success(
        f"{len(cf)} rules on {cf.records} records: "
        f"{'violations found' if failed else 'no violations'}, {n_errors} errors"
    )
    print_frame(table)

    for name, error in cf.errors().items():
        print(f"Error in rule '{name}': {error.message} ({error.kind.value})", file=sys.stderr)

    if output is not None:
        try:
            write_table(table, output)
        except (DataSourceError, OSError, pl.exceptions.PolarsError) as e:
            handle_error(e, verbose=verbose)
            return ExitCode.UNEXPECTED_ERROR

    if failed or n_errors:
        return ExitCode.VIOLATIONS
    return ExitCode.SUCCESS


def _load_for_inspection(rules_path: Path, verbose: bool):
    try:
        return load_rules(rules_path)
    except (ConfigurationSchemaError, FileNotFoundError) as e:
        handle_error(e, verbose=verbose)
        return None


def check_rules(
    rules_path: Annotated[Path, Parameter(help="YAML rule file")],
    verbose: Annotated[bool, Parameter(help="Show detailed error information")] = False,
) -> int:
    """Parse and expand a rule set.

    Displays every rule, the expanded form of each check rule (derivations
    substituted) and the dependency blocks.

    Returns:
        Exit code (0 for a valid rule set, 7 for an invalid one)
    """
    validator = _load_for_inspection(rules_path, verbose)
    if validator is None:
        return ExitCode.RULE_ERROR

    try:
        expressions = validator.expressions()
        blocks = validator.blocks()
    except CyclicDefinitionError as e:
        print("✗ Rule set has cyclic definitions:", file=sys.stderr)
        handle_error(e, verbose=verbose)
        return ExitCode.RULE_ERROR

    print(f"✓ Rule set is valid: {len(validator.check_rules())} checks, "
          f"{len(validator.derive_rules())} derivations")
    print(validator.format())

    print("\nExpanded checks:")
    for name, expression in expressions.items():
        print(f"  {name}: {expression.text}")

    print(f"\nBlocks ({len(blocks)}):")
    for idx, block in enumerate(blocks, start=1):
        print(f"  {idx}: {', '.join(block)}")

    return ExitCode.SUCCESS


def variables(
    rules_path: Annotated[Path, Parameter(help="YAML rule file")],
    per_rule: Annotated[bool, Parameter(help="List variables per rule")] = False,
    verbose: Annotated[bool, Parameter(help="Show detailed error information")] = False,
) -> int:
    """List the variables a rule set depends on, through its derivations."""
    validator = _load_for_inspection(rules_path, verbose)
    if validator is None:
        return ExitCode.RULE_ERROR

    try:
        if per_rule:
            for name, names in validator.variables(scope="rule").items():
                print(f"{name}: {', '.join(names)}")
        else:
            for name in validator.variables():
                print(name)
    except CyclicDefinitionError as e:
        handle_error(e, verbose=verbose)
        return ExitCode.RULE_ERROR

    return ExitCode.SUCCESS


def blocks(
    rules_path: Annotated[Path, Parameter(help="YAML rule file")],
    verbose: Annotated[bool, Parameter(help="Show detailed error information")] = False,
) -> int:
    """Show groups of rules connected through shared variables."""
    validator = _load_for_inspection(rules_path, verbose)
    if validator is None:
        return ExitCode.RULE_ERROR

    try:
        found = validator.blocks()
    except CyclicDefinitionError as e:
        handle_error(e, verbose=verbose)
        return ExitCode.RULE_ERROR

    for idx, block in enumerate(found, start=1):
        print(f"Block {idx}: {', '.join(block)}")
    return ExitCode.SUCCESS
