"""Custom exception classes for tabvalidate error handling.

This module defines the structural exception hierarchy of the rule engine:
- RuleParseError: Rule text that cannot be parsed into an expression tree
- DuplicateNameError: Rule name collisions inside a Validator
- NotFoundError: Rule lookups by unknown name or position
- CyclicDefinitionError: Derivation rules that (transitively) reference themselves
- DataSourceError: Datasets that cannot be used as a confrontation context

Structural errors indicate a malformed rule set or data source, not a data
problem, and are always raised synchronously to the caller.

All exceptions inherit from TabValidateError for consistent error handling.
"""

from typing import Any


class TabValidateError(Exception):
    """Base exception for all tabvalidate errors.

    Provides a common base class for all custom exceptions in the rule
    engine, enabling catch-all error handling when needed.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """Initialize the exception with a message and optional context.

        Args:
            message: Human-readable error description
            context: Optional dictionary of contextual information (rule names,
                    expressions, variable names, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        if not self.context:
            return self.message

        context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{self.message} [{context_str}]"


class RuleParseError(TabValidateError):
    """Exception raised when rule text cannot be parsed.

    Context typically includes:
        - text: The rule text that failed to parse
        - reason: Why the text was rejected (syntax error, unsupported construct)
        - line/offset: Position of a syntax error, when known
    """

    def __init__(
        self,
        message: str,
        text: str | None = None,
        reason: str | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if text is not None:
            context["text"] = text
        if reason is not None:
            context["reason"] = reason
        context.update(extra_context)

        super().__init__(message, context)


class DuplicateNameError(TabValidateError):
    """Exception raised when a rule name collides with an existing rule.

    Raised by Validator.add (without overwrite), Validator.rename, the names
    setter, and when concatenating validators with overlapping names.

    Context typically includes:
        - name: The colliding rule name
    """

    def __init__(self, message: str, name: str | None = None, **extra_context: Any) -> None:
        context: dict[str, Any] = {}
        if name is not None:
            context["name"] = name
        context.update(extra_context)

        super().__init__(message, context)


class NotFoundError(TabValidateError, KeyError):
    """Exception raised when a rule lookup fails.

    Also a KeyError, so mapping-style access on a Validator or Confrontation
    behaves like a dictionary lookup.

    Context typically includes:
        - key: The name or position that was looked up
        - available: Number of rules available
    """

    def __init__(
        self,
        message: str,
        key: str | int | None = None,
        available: int | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if key is not None:
            context["key"] = key
        if available is not None:
            context["available"] = available
        context.update(extra_context)

        super().__init__(message, context)


class CyclicDefinitionError(TabValidateError):
    """Exception raised when derivation substitution revisits a variable.

    Context typically includes:
        - rule: Name of the offending rule
        - chain: Variable names on the expansion chain, ending with the
                 repeated name (e.g. ["a", "b", "a"])
        - rules: Names of every offending rule, when raised for a whole Validator
    """

    def __init__(
        self,
        message: str,
        rule: str | None = None,
        chain: list[str] | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if rule is not None:
            context["rule"] = rule
        if chain is not None:
            context["chain"] = chain
        context.update(extra_context)

        super().__init__(message, context)
        self.rule = rule
        self.chain = list(chain or [])


class DataSourceError(TabValidateError):
    """Exception raised when a dataset cannot be used for confrontation.

    Context typically includes:
        - source: Name of the dataset
        - reason: Specific reason (inconsistent column lengths, wrong type)
    """

    def __init__(
        self,
        message: str,
        source: str | None = None,
        reason: str | None = None,
        **extra_context: Any,
    ) -> None:
        context: dict[str, Any] = {}
        if source is not None:
            context["source"] = source
        if reason is not None:
            context["reason"] = reason
        context.update(extra_context)

        super().__init__(message, context)
