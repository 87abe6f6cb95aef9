"""Validation-specific exceptions and warnings.

This module defines the exception hierarchy raised while confronting data
with rules and while configuring the engine. All exceptions extend from
TabValidateError for consistent error handling.
"""

from enum import Enum
from typing import Any

from tabvalidate.core.exceptions import TabValidateError


class EvaluationErrorKind(Enum):
    """Classification of evaluator failures.

    Attributes:
        UNDEFINED_REFERENCE: A referenced column, dataset or function does not exist
        TYPE_MISMATCH: Operands have types the operation does not accept
        RUNTIME_FAULT: Any other failure during evaluation
    """

    UNDEFINED_REFERENCE = "UndefinedReference"
    TYPE_MISMATCH = "TypeMismatch"
    RUNTIME_FAULT = "RuntimeFault"


class EvaluationError(TabValidateError):
    """Exception raised when a rule cannot be evaluated against data.

    During a confrontation these errors are, by default, captured per rule
    instead of propagated (see RaiseMode).

    Context typically includes:
        - kind: EvaluationErrorKind value
        - rule: Name of the rule being evaluated
        - expression: Expression text (after substitution)
        - variable: Offending name, for undefined references
        - reason: Underlying error message

    Example:
        >>> raise EvaluationError(
        ...     "Column 'hite' not found",
        ...     kind=EvaluationErrorKind.UNDEFINED_REFERENCE,
        ...     variable="hite",
        ... )
    """

    def __init__(
        self,
        message: str,
        kind: EvaluationErrorKind = EvaluationErrorKind.RUNTIME_FAULT,
        rule: str | None = None,
        expression: str | None = None,
        variable: str | None = None,
        reason: str | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {"kind": kind.value}
        if rule is not None:
            context["rule"] = rule
        if expression is not None:
            context["expression"] = expression
        if variable is not None:
            context["variable"] = variable
        if reason is not None:
            context["reason"] = reason
        context.update(extra_context)

        super().__init__(message, context)
        self.kind = kind

    def for_rule(self, rule: str, expression: str) -> "EvaluationError":
        """Return a copy of this error annotated with the rule it belongs to."""
        extra = {
            k: v
            for k, v in self.context.items()
            if k not in ("kind", "rule", "expression")
        }
        error = EvaluationError(
            self.message,
            kind=self.kind,
            rule=rule,
            expression=expression,
            **extra,
        )
        error.__cause__ = self.__cause__
        return error


class ConfigurationError(TabValidateError):
    """Exception raised when engine options are invalid.

    Context typically includes:
        - parameter: Name of the invalid option
        - value: Invalid value provided
        - reason: Why the value is invalid

    Example:
        >>> raise ConfigurationError(
        ...     "numeric_tolerance must be non-negative",
        ...     parameter="numeric_tolerance",
        ...     value=-1.0,
        ...     reason="Negative tolerance",
        ... )
    """

    def __init__(
        self,
        message: str,
        parameter: str | None = None,
        value: Any = None,
        reason: str | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if parameter is not None:
            context["parameter"] = parameter
        if value is not None:
            context["value"] = value
        if reason is not None:
            context["reason"] = reason
        context.update(extra_context)

        super().__init__(message, context)


class ConfigurationSchemaError(TabValidateError):
    """Exception raised when a declarative rule set is malformed.

    Raised when loading rules from a Python dict, a YAML file or a table
    that violates the rule-set schema (missing expression, wrong field
    types, unknown options).

    Context typically includes:
        - rule_index: Index of the rule in the configuration
        - field: Configuration field that is invalid
        - value: Invalid value provided
        - reason: Why the configuration is invalid

    Example:
        >>> raise ConfigurationSchemaError(
        ...     "Rule at index 0 missing required 'expr' field",
        ...     rule_index=0,
        ...     field="expr",
        ...     reason="Required field missing",
        ... )
    """

    def __init__(
        self,
        message: str,
        rule_index: int | None = None,
        field: str | None = None,
        value: Any = None,
        reason: str | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if rule_index is not None:
            context["rule_index"] = rule_index
        if field is not None:
            context["field"] = field
        if value is not None:
            context["value"] = value
        if reason is not None:
            context["reason"] = reason
        context.update(extra_context)

        super().__init__(message, context)


class RuleEvaluationWarning(UserWarning):
    """Warning signalled by an evaluator for non-fatal problems (e.g. NaN results)."""
