"""Rule-based data validation for tabular data.

This module provides the validation engine: Validator rule containers,
substitution of derivation rules, dependency analysis of rules into blocks,
confrontation of data with rules under isolated per-rule error and warning
capture, and aggregation of the results.

Typical use:
    >>> import polars as pl
    >>> from tabvalidate.validation import Validator, confront
    >>> v = Validator("height > 0", "weight > 0", bmi="BMI := weight / height^2", upper="BMI < 23")
    >>> cf = confront(pl.DataFrame({"height": [5], "weight": [150]}), v)
    >>> cf.summary()["passes"].to_list()
    [1, 1, 1]
"""

# Aggregation
from tabvalidate.validation.aggregate import (
    AggregateBy,
    ScalarPolicy,
    aggregate,
    record_outcomes,
    sort,
    subset,
    summary,
)

# Dependency analysis
from tabvalidate.validation.blocks import compute_blocks

# Confrontation
from tabvalidate.validation.confrontation import Confrontation, confront

# Declarative rule sets
from tabvalidate.validation.declarative import (
    dump_rules,
    get_rules_schema,
    load_rule_config,
    load_rules,
    parse_rules,
    save_rules,
)

# Evaluation
from tabvalidate.validation.evaluator import FUNCTIONS, PolarsEvaluator

# Exceptions
from tabvalidate.validation.exceptions import (
    ConfigurationError,
    ConfigurationSchemaError,
    EvaluationError,
    EvaluationErrorKind,
    RuleEvaluationWarning,
)

# Options
from tabvalidate.validation.options import (
    ConfrontOptions,
    RaiseMode,
    get_options,
    reset_options,
    set_options,
)
from tabvalidate.validation.result import RuleOutcome

# Substitution
from tabvalidate.validation.substitution import Expansion, SubstitutionEngine, SubstitutionResult

# Rule containers
from tabvalidate.validation.validator import Validator, as_validator

__all__ = [
    # Rule containers
    "Validator",
    "as_validator",
    # Substitution and dependency analysis
    "SubstitutionEngine",
    "SubstitutionResult",
    "Expansion",
    "compute_blocks",
    # Evaluation
    "PolarsEvaluator",
    "FUNCTIONS",
    # Confrontation
    "confront",
    "Confrontation",
    "RuleOutcome",
    # Options
    "ConfrontOptions",
    "RaiseMode",
    "get_options",
    "set_options",
    "reset_options",
    # Aggregation
    "AggregateBy",
    "ScalarPolicy",
    "summary",
    "aggregate",
    "record_outcomes",
    "sort",
    "subset",
    # Declarative rule sets
    "load_rules",
    "load_rule_config",
    "parse_rules",
    "dump_rules",
    "save_rules",
    "get_rules_schema",
    # Exceptions
    "EvaluationError",
    "EvaluationErrorKind",
    "ConfigurationError",
    "ConfigurationSchemaError",
    "RuleEvaluationWarning",
]
