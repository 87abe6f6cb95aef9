"""Validator: an ordered, named, mutable collection of rules.

A Validator is a reference object. Two handles to the same Validator observe
each other's mutations (add, remove, rename, item assignment); ``copy()``
returns an independent deep copy. Confrontation never mutates a Validator.

Selection has two distinct accessors:
    - ``get(key)`` / ``v[key]``: one rule by name or position, returned as the
      Rule object itself (metadata edits through it are visible in ``v``)
    - ``subset(selector)``: several rules as a new Validator; structural edits
      on the subset (add/remove/rename) do not propagate back, though the
      Rule objects are shared
"""

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from datetime import datetime
from typing import Any

import polars as pl

from tabvalidate.core.exceptions import DuplicateNameError, NotFoundError, RuleParseError
from tabvalidate.core.expression import Expression
from tabvalidate.core.rule import Rule, RuleKind
from tabvalidate.validation.blocks import compute_blocks
from tabvalidate.validation.options import DEFAULT_OPTIONS, ConfrontOptions
from tabvalidate.validation.substitution import SubstitutionEngine, SubstitutionResult

logger = logging.getLogger(__name__)

RuleLike = str | Expression | Rule
Key = str | int
Selector = Key | Sequence[Key] | Sequence[bool] | slice

# Columns of the tabular rule description
FRAME_COLUMNS = ["name", "rule", "label", "description", "origin", "created"]


def _as_rule(rule: RuleLike) -> Rule:
    if isinstance(rule, Rule):
        return rule
    if isinstance(rule, Expression):
        return Rule(expression=rule)
    if isinstance(rule, str):
        return Rule.from_text(rule)
    msg = f"Cannot build a rule from {type(rule).__name__}"
    raise RuleParseError(msg, reason="invalid type")


def select_names(names: Sequence[str], selector: Selector, resolve: Callable[[Key], str]) -> list[str]:
    """Resolve a subset selector against an ordered list of names.

    Args:
        names: Names in order
        selector: A name or position, a sequence of names/positions, a slice,
                  or a boolean mask of the same length as ``names``
        resolve: Maps a single name or position to a name

    Raises:
        NotFoundError: For unknown keys or a mask of the wrong length
    """
    if isinstance(selector, slice):
        return list(names[selector])
    if isinstance(selector, (str, int)):
        return [resolve(selector)]
    keys = list(selector)
    if keys and all(isinstance(k, bool) for k in keys):
        if len(keys) != len(names):
            msg = f"Boolean mask has length {len(keys)}, expected {len(names)}"
            raise NotFoundError(msg, available=len(names))
        return [n for n, keep in zip(names, keys) if keep]
    return [resolve(k) for k in keys]


class Validator:
    """Ordered collection of named rules.

    Attributes:
        options: Option overrides applied when this validator is confronted
                 (a mapping of option name to value)

    Example:
        >>> v = Validator("height > 0", "weight > 0", ratio="height / weight > 0.5")
        >>> v.names
        ['V1', 'V2', 'ratio']
        >>> v["ratio"].label = "height-weight ratio"
        >>> v.labels["ratio"]
        'height-weight ratio'
        >>> v.blocks()
        [['V1', 'V2', 'ratio']]
    """

    def __init__(
        self,
        *rules: RuleLike,
        options: ConfrontOptions | Mapping[str, Any] | None = None,
        **named_rules: RuleLike,
    ) -> None:
        self._rules: dict[str, Rule] = {}
        # Rules shared with another validator; their Rule.name is not ours to change
        self._shared: set[str] = set()
        self._counter = 0
        self.options = options
        for rule in rules:
            self.add(rule)
        for name, rule in named_rules.items():
            self.add(rule, name=name)

    # -- options --------------------------------------------------------

    @property
    def options(self) -> dict[str, Any]:
        return dict(self._options)

    @options.setter
    def options(self, value: ConfrontOptions | Mapping[str, Any] | None) -> None:
        if value is None:
            self._options: dict[str, Any] = {}
        elif isinstance(value, ConfrontOptions):
            self._options = value.to_dict()
        else:
            # Validate eagerly, keep only what the caller set
            DEFAULT_OPTIONS.merge(value)
            self._options = {k: v for k, v in value.items() if v is not None}

    # -- construction ---------------------------------------------------

    def _next_name(self) -> str:
        while True:
            self._counter += 1
            name = f"V{self._counter}"
            if name not in self._rules:
                return name

    def add(self, rule: RuleLike, name: str | None = None, overwrite: bool = False) -> Rule:
        """Add a rule.

        Args:
            rule: Rule text, Expression or Rule. A Rule that already carries
                  a different name is copied, not stored.
            name: Rule name; defaults to the rule's own name or an
                  auto-generated ``V<n>``
            overwrite: Replace an existing rule of the same name in place

        Returns:
            The stored Rule

        Raises:
            DuplicateNameError: If the name is taken and overwrite is False
            RuleParseError: If rule text cannot be parsed
        """
        stored = _as_rule(rule)
        name = name or stored.name or self._next_name()
        if not isinstance(name, str):
            msg = f"Rule names must be strings, got: {type(name).__name__}"
            raise RuleParseError(msg, reason="invalid name")

        if name in self._rules and not overwrite:
            msg = f"A rule named '{name}' already exists"
            raise DuplicateNameError(msg, name=name)

        if stored.name and stored.name != name:
            stored = stored.copy()
        stored.name = name
        self._rules[name] = stored
        self._shared.discard(name)
        logger.debug("Added rule %s: %s", name, stored.text)
        return stored

    def extend(self, rules: Iterable[RuleLike]) -> None:
        for rule in rules:
            self.add(rule)

    @classmethod
    def from_frame(cls, frame: pl.DataFrame | Mapping[str, Sequence[Any]]) -> "Validator":
        """Build a Validator from a tabular rule description.

        Args:
            frame: Table with a required ``rule`` text column and optional
                   ``name``, ``label``, ``description``, ``origin``, ``created``
                   columns

        Raises:
            RuleParseError: If the ``rule`` column is missing or a rule is invalid
            DuplicateNameError: If names repeat
        """
        if not isinstance(frame, pl.DataFrame):
            frame = pl.DataFrame(dict(frame))
        if "rule" not in frame.columns:
            msg = "Rule table must have a 'rule' column"
            raise RuleParseError(msg, reason="missing column", columns=frame.columns)

        validator = cls()
        for row in frame.iter_rows(named=True):
            metadata: dict[str, Any] = {}
            for column in ("label", "description", "origin"):
                if row.get(column) is not None:
                    metadata[column] = row[column]
            created = row.get("created")
            if isinstance(created, datetime):
                metadata["created_at"] = created
            elif isinstance(created, str) and created:
                metadata["created_at"] = datetime.fromisoformat(created)
            validator.add(Rule.from_text(row["rule"], **metadata), name=row.get("name") or None)
        return validator

    def to_frame(self) -> pl.DataFrame:
        """Export the rules as a table (inverse of ``from_frame``)."""
        return pl.DataFrame(
            {
                "name": self.names,
                "rule": [r.text for r in self],
                "label": [r.label for r in self],
                "description": [r.description for r in self],
                "origin": [r.origin for r in self],
                "created": [r.created_at.isoformat() for r in self],
            },
            schema={column: pl.Utf8 for column in FRAME_COLUMNS},
        )

    # -- lookup -----------------------------------------------------------

    def _resolve(self, key: Key) -> str:
        if isinstance(key, bool):
            msg = "Booleans are not valid rule keys"
            raise NotFoundError(msg, key=key, available=len(self))
        if isinstance(key, int):
            names = self.names
            try:
                return names[key]
            except IndexError:
                msg = f"No rule at position {key}"
                raise NotFoundError(msg, key=key, available=len(names)) from None
        if key not in self._rules:
            msg = f"No rule named '{key}'"
            raise NotFoundError(msg, key=key, available=len(self))
        return key

    def get(self, key: Key) -> Rule:
        """Return one rule (the Rule object itself) by name or position.

        Raises:
            NotFoundError: If no such rule exists
        """
        return self._rules[self._resolve(key)]

    def __getitem__(self, key: Key) -> Rule:
        if not isinstance(key, (str, int)):
            msg = "Use subset() to select several rules"
            raise TypeError(msg)
        return self.get(key)

    def __setitem__(self, key: Key, rule: RuleLike) -> None:
        """Replace the rule at a name or position, or add a new named rule."""
        if isinstance(key, int):
            key = self._resolve(key)
        self.add(_as_rule(rule), name=key, overwrite=True)

    def __delitem__(self, key: Key) -> None:
        self.remove(key, strict=True)

    def subset(self, selector: Selector) -> "Validator":
        """Select several rules as a new Validator.

        Args:
            selector: A name or position, a sequence of names/positions, a
                      slice, or a boolean mask of the validator's length

        Returns:
            A new Validator sharing the selected Rule objects and the options

        Raises:
            NotFoundError: If a name or position does not exist
        """
        selected = select_names(self.names, selector, self._resolve)
        sub = Validator(options=self._options)
        sub._counter = self._counter
        for name in selected:
            sub._rules[name] = self._rules[name]
        sub._shared = set(selected)
        return sub

    def copy(self) -> "Validator":
        """Return an independent deep copy (rules are copied too)."""
        clone = Validator(options=self._options)
        clone._counter = self._counter
        for name, rule in self._rules.items():
            copied = rule.copy()
            copied.name = name
            clone._rules[name] = copied
        return clone

    # -- mutation ---------------------------------------------------------

    def remove(self, key: Key, strict: bool = False) -> Rule | None:
        """Remove a rule by name or position.

        Returns:
            The removed Rule, or None when absent and not strict

        Raises:
            NotFoundError: If absent and strict is True
        """
        try:
            name = self._resolve(key)
        except NotFoundError:
            if strict:
                raise
            return None
        logger.debug("Removed rule %s", name)
        self._shared.discard(name)
        return self._rules.pop(name)

    def rename(self, key: Key, new_name: str) -> None:
        """Rename a rule, keeping its position.

        Raises:
            NotFoundError: If the rule does not exist
            DuplicateNameError: If new_name is used by another rule
        """
        old_name = self._resolve(key)
        if new_name == old_name:
            return
        if new_name in self._rules:
            msg = f"Cannot rename '{old_name}': a rule named '{new_name}' already exists"
            raise DuplicateNameError(msg, name=new_name)

        self._rules = {
            (new_name if name == old_name else name): rule for name, rule in self._rules.items()
        }
        if old_name in self._shared:
            self._shared = {new_name if n == old_name else n for n in self._shared}
        else:
            self._rules[new_name].name = new_name

    @property
    def names(self) -> list[str]:
        return list(self._rules)

    @names.setter
    def names(self, new_names: Sequence[str]) -> None:
        new_names = list(new_names)
        if len(new_names) != len(self._rules):
            msg = f"Expected {len(self._rules)} names, got {len(new_names)}"
            raise ValueError(msg)
        duplicates = sorted({n for n in new_names if new_names.count(n) > 1})
        if duplicates:
            msg = f"Duplicate rule names: {', '.join(duplicates)}"
            raise DuplicateNameError(msg, name=duplicates[0])

        shared = {new for old, new in zip(self._rules, new_names) if old in self._shared}
        self._rules = dict(zip(new_names, self._rules.values()))
        self._shared = shared
        for name, rule in self._rules.items():
            if name not in shared:
                rule.name = name

    # -- metadata ---------------------------------------------------------

    def _meta(self, attribute: str) -> dict[str, Any]:
        return {name: getattr(rule, attribute) for name, rule in self._rules.items()}

    def _set_meta(self, attribute: str, values: Any) -> None:
        if isinstance(values, Mapping):
            for key, value in values.items():
                setattr(self.get(key), attribute, value)
        elif isinstance(values, (list, tuple)):
            if len(values) != len(self._rules):
                msg = f"Expected {len(self._rules)} values for '{attribute}', got {len(values)}"
                raise ValueError(msg)
            for rule, value in zip(self._rules.values(), values):
                setattr(rule, attribute, value)
        else:
            for rule in self._rules.values():
                setattr(rule, attribute, values)

    @property
    def labels(self) -> dict[str, str]:
        return self._meta("label")

    def set_label(self, values: str | Sequence[str] | Mapping[Key, str]) -> None:
        """Set labels from a scalar (all rules), a sequence (by position) or a mapping (by key)."""
        self._set_meta("label", values)

    @property
    def descriptions(self) -> dict[str, str]:
        return self._meta("description")

    def set_description(self, values: str | Sequence[str] | Mapping[Key, str]) -> None:
        self._set_meta("description", values)

    @property
    def origins(self) -> dict[str, str]:
        return self._meta("origin")

    def set_origin(self, values: str | Sequence[str] | Mapping[Key, str]) -> None:
        self._set_meta("origin", values)

    @property
    def created(self) -> dict[str, datetime]:
        return self._meta("created_at")

    def set_created(self, values: datetime | Sequence[datetime] | Mapping[Key, datetime]) -> None:
        self._set_meta("created_at", values)

    # -- queries ----------------------------------------------------------

    def check_rules(self) -> list[Rule]:
        return [r for r in self._rules.values() if r.kind is RuleKind.CHECK]

    def derive_rules(self) -> list[Rule]:
        return [r for r in self._rules.values() if r.kind is RuleKind.DERIVE]

    def substitution(self) -> SubstitutionResult:
        """Expand every rule, collecting cyclic definition errors per rule."""
        return SubstitutionEngine(self._rules).expand_all()

    def expand(self, key: Key) -> Expression:
        """Return one rule's expression with all derivations substituted.

        Raises:
            NotFoundError: If the rule does not exist
            CyclicDefinitionError: If the rule's derivations form a cycle
        """
        name = self._resolve(key)
        return SubstitutionEngine(self._rules).expand(self._rules[name], name).expression

    def expressions(self) -> dict[str, Expression]:
        """Expanded expressions of every check rule, in order.

        Raises:
            CyclicDefinitionError: If any rule's derivations form a cycle
        """
        result = self.substitution()
        result.raise_for_errors()
        return {
            name: expansion.expression
            for name, expansion in result.expansions.items()
            if self._rules[name].is_check
        }

    def variables(self, scope: str = "all") -> list[str] | dict[str, list[str]]:
        """Variables referenced by the rules, transitively through derivations.

        Args:
            scope: "all" for the ordered union over all rules, "rule" for a
                   rule name -> variables mapping

        Returns:
            Derived-variable names and the data column names they expand to

        Raises:
            ValueError: For an unknown scope
            CyclicDefinitionError: If any rule's derivations form a cycle
        """
        if scope not in ("all", "rule"):
            msg = f"Invalid scope: {scope!r}. Must be 'all' or 'rule'"
            raise ValueError(msg)

        result = self.substitution()
        result.raise_for_errors()
        per_rule = {name: list(e.variables) for name, e in result.expansions.items()}
        if scope == "rule":
            return per_rule

        union: list[str] = []
        for names in per_rule.values():
            union.extend(n for n in names if n not in union)
        return union

    def blocks(self) -> list[list[str]]:
        """Group rules into blocks of rules connected through shared variables.

        Raises:
            CyclicDefinitionError: If any rule's derivations form a cycle
        """
        return compute_blocks(self.variables(scope="rule"))

    # -- container protocol -----------------------------------------------

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self) -> Iterator[Rule]:
        return iter(list(self._rules.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def items(self) -> list[tuple[str, Rule]]:
        """(name, rule) pairs in order."""
        return list(self._rules.items())

    def __add__(self, other: "Validator") -> "Validator":
        """Concatenate two validators into a new one (rules are shared).

        Raises:
            DuplicateNameError: If the validators share a rule name
        """
        if not isinstance(other, Validator):
            return NotImplemented
        combined = Validator(options={**self._options, **other._options})
        combined._counter = max(self._counter, other._counter)
        for name, rule in [*self.items(), *other.items()]:
            if name in combined._rules:
                msg = f"A rule named '{name}' already exists"
                raise DuplicateNameError(msg, name=name)
            combined._rules[name] = rule
        combined._shared = set(combined._rules)
        return combined

    def __repr__(self) -> str:
        return f"Validator({len(self)} rules)"

    def format(self) -> str:
        """Human-readable listing of the rules."""
        lines = [f"Validator with {len(self)} rules"]
        for name, rule in self._rules.items():
            label = f"  # {rule.label}" if rule.label else ""
            lines.append(f"  {name}: {rule.text}{label}")
        return "\n".join(lines)


def as_validator(rules: "Validator | RuleLike | Iterable[RuleLike]") -> Validator:
    """Coerce a Validator, single rule, or iterable of rules into a Validator."""
    if isinstance(rules, Validator):
        return rules
    if isinstance(rules, (str, Expression, Rule)):
        return Validator(rules)
    return Validator(*rules)


