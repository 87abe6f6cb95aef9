"""Rule data structure.

A Rule is one named expression plus free-form metadata. Check rules produce a
logical (or numeric) test result when confronted with data; derive rules bind
a new variable name to a computed expression for reuse by other rules and
never produce outcomes of their own.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tabvalidate.core.exceptions import RuleParseError
from tabvalidate.core.expression import Expression, parse_rule_text

DEFAULT_ORIGIN = "command-line"


class RuleKind(Enum):
    """Kind of a rule.

    Attributes:
        CHECK: Produces a logical/numeric test result
        DERIVE: Binds a variable name to an expression
    """

    CHECK = "check"
    DERIVE = "derive"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(eq=False)
class Rule:
    """A single named validation or derivation rule.

    Rules compare by identity: two handles to the same Rule observe each
    other's metadata changes, which is what lets a Validator hand out a rule
    and see edits made through it.

    Attributes:
        expression: Parsed expression tree (for derive rules, the right-hand side)
        name: Identifier, unique within a Validator. Empty until the rule is
              added to a Validator without an explicit name.
        kind: RuleKind.CHECK or RuleKind.DERIVE
        target: Variable bound by a derive rule, None for check rules
        label: Short human-readable label
        description: Longer free-form description
        origin: Where the rule came from (file path, "command-line", ...)
        created_at: Creation timestamp (UTC)
        meta: Any other user metadata

    Example:
        >>> rule = Rule.from_text("BMI := weight / height^2", label="body mass index")
        >>> rule.kind
        <RuleKind.DERIVE: 'derive'>
        >>> rule.text
        'BMI := weight / height ** 2'
    """

    expression: Expression
    name: str = ""
    kind: RuleKind = RuleKind.CHECK
    target: str | None = None
    label: str = ""
    description: str = ""
    origin: str = DEFAULT_ORIGIN
    created_at: datetime = field(default_factory=_now)
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.kind is RuleKind.DERIVE and not self.target:
            msg = "A derive rule needs a target variable name"
            raise RuleParseError(msg, text=self.expression.text, reason="missing target")
        if self.kind is RuleKind.CHECK and self.target is not None:
            msg = f"A check rule cannot bind a variable (target '{self.target}')"
            raise RuleParseError(msg, text=self.expression.text, reason="unexpected target")

    @classmethod
    def from_text(cls, text: str, **metadata: Any) -> "Rule":
        """Parse rule text; ``NAME := expr`` becomes a derive rule.

        Args:
            text: Rule text
            **metadata: Any Rule field other than expression/kind/target

        Raises:
            RuleParseError: If the text cannot be parsed
        """
        target, expression = parse_rule_text(text)
        kind = RuleKind.DERIVE if target is not None else RuleKind.CHECK
        return cls(expression=expression, kind=kind, target=target, **metadata)

    @property
    def is_check(self) -> bool:
        return self.kind is RuleKind.CHECK

    @property
    def is_derive(self) -> bool:
        return self.kind is RuleKind.DERIVE

    @property
    def text(self) -> str:
        if self.is_derive:
            return f"{self.target} := {self.expression.text}"
        return self.expression.text

    def variables(self) -> list[str]:
        """Variables referenced directly by this rule (no substitution)."""
        return self.expression.variables()

    def copy(self) -> "Rule":
        """Return an independent copy; the immutable expression is shared."""
        return Rule(
            expression=self.expression,
            name=self.name,
            kind=self.kind,
            target=self.target,
            label=self.label,
            description=self.description,
            origin=self.origin,
            created_at=self.created_at,
            meta=dict(self.meta),
        )

    def __repr__(self) -> str:
        return f"Rule(name={self.name!r}, text={self.text!r})"
