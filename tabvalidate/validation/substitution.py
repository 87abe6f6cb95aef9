"""Substitution of derived variables into dependent rules.

A derive rule ``BMI := weight / height^2`` binds the name ``BMI``. Before a
rule is evaluated, every reference to a bound name is replaced by the
(already expanded) expression tree of its derivation, so that
``BMI < 23`` becomes ``weight / height ** 2 < 23``. Substitution is purely
structural: the reference node is swapped for a copy of the subtree, so
operator precedence never has to be re-derived.

Resolution rules:
    - When a name is bound more than once, the most recently defined
      derivation (last in validator order) is used.
    - Lookup is by name, so a rule may use a derivation defined after it.
    - Revisiting a name already on the current expansion chain raises
      CyclicDefinitionError for the offending rule.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from tabvalidate.core.exceptions import CyclicDefinitionError
from tabvalidate.core.expression import Expression
from tabvalidate.core.rule import Rule


def _append_unique(bucket: list[str], name: str) -> None:
    if name not in bucket:
        bucket.append(name)


@dataclass(frozen=True)
class Expansion:
    """A rule with all derivations substituted.

    Attributes:
        rule: Name of the rule
        expression: Expanded expression tree
        variables: Every variable the rule depends on, transitively: derived
                   names it references and the names their derivations use.
                   For a derive rule this starts with its own target.
    """

    rule: str
    expression: Expression
    variables: list[str] = field(default_factory=list)


@dataclass
class SubstitutionResult:
    """Outcome of expanding a whole rule set.

    Attributes:
        expansions: Rule name -> Expansion, in rule order, for rules that expanded
        errors: Rule name -> CyclicDefinitionError for rules that did not
    """

    expansions: dict[str, Expansion] = field(default_factory=dict)
    errors: dict[str, CyclicDefinitionError] = field(default_factory=dict)

    def raise_for_errors(self) -> None:
        """Raise the first cyclic definition error, naming every offending rule."""
        if not self.errors:
            return
        first = next(iter(self.errors.values()))
        raise CyclicDefinitionError(
            first.message,
            rule=first.rule,
            chain=first.chain,
            rules=list(self.errors),
        )


class SubstitutionEngine:
    """Expands rule expressions by substituting derivation rules.

    The engine takes a snapshot of the rules it is given; later changes to
    the Validator are not observed.

    Example:
        >>> rules = [Rule.from_text("BMI := weight / height^2", name="d1"),
        ...          Rule.from_text("BMI < 23", name="c1")]
        >>> engine = SubstitutionEngine(rules)
        >>> engine.expand(rules[1]).expression.text
        'weight / height ** 2 < 23'
    """

    def __init__(self, rules: Mapping[str, Rule] | Iterable[Rule]) -> None:
        # A mapping supplies the names; otherwise each rule's own name is used
        if isinstance(rules, Mapping):
            self._rules = list(rules.items())
        else:
            self._rules = [(rule.name, rule) for rule in rules]
        self._derivations: dict[str, Rule] = {}
        for _, rule in self._rules:
            if rule.is_derive:
                # Most recent definition wins
                self._derivations.pop(rule.target, None)
                self._derivations[rule.target] = rule
        self._cache: dict[str, tuple[Expression, list[str]]] = {}

    @property
    def derived_names(self) -> list[str]:
        """Names bound by derive rules."""
        return list(self._derivations)

    def derivation(self, name: str) -> Rule | None:
        """Return the derive rule currently bound to a name, if any."""
        return self._derivations.get(name)

    def _expand_name(
        self, name: str, chain: tuple[str, ...], rule_name: str
    ) -> tuple[Expression, list[str]]:
        if name in chain:
            cycle = [*chain, name]
            msg = f"Cyclic definition in rule '{rule_name}': {' -> '.join(cycle)}"
            raise CyclicDefinitionError(msg, rule=rule_name, chain=cycle)

        # A successful expansion has an acyclic closure, so it is valid on any chain
        if name in self._cache:
            return self._cache[name]

        derivation = self._derivations[name]
        result = self._expand(derivation.expression, (*chain, name), rule_name)
        self._cache[name] = result
        return result

    def _expand(
        self, expression: Expression, chain: tuple[str, ...], rule_name: str
    ) -> tuple[Expression, list[str]]:
        variables: list[str] = []
        mapping: dict[str, Expression] = {}
        for name in expression.variables():
            _append_unique(variables, name)
            if name in self._derivations:
                expanded, inner = self._expand_name(name, chain, rule_name)
                mapping[name] = expanded
                for inner_name in inner:
                    _append_unique(variables, inner_name)
        return expression.substitute(mapping), variables

    def expand_expression(self, expression: Expression, rule_name: str = "<expression>") -> Expansion:
        """Expand a free-standing expression against this engine's derivations."""
        expanded, variables = self._expand(expression, (), rule_name)
        return Expansion(rule=rule_name, expression=expanded, variables=variables)

    def expand(self, rule: Rule, name: str | None = None) -> Expansion:
        """Expand one rule.

        For a derive rule the expansion is of its right-hand side and the
        rule's own target is on the chain, so ``x := x + 1`` is a cycle.

        Raises:
            CyclicDefinitionError: If expansion revisits a name on its chain
        """
        chain: tuple[str, ...] = (rule.target,) if rule.is_derive else ()
        name = name or rule.name
        expanded, variables = self._expand(rule.expression, chain, name)
        if rule.is_derive:
            variables = [rule.target, *(v for v in variables if v != rule.target)]
        return Expansion(rule=name, expression=expanded, variables=variables)

    def expand_all(self) -> SubstitutionResult:
        """Expand every rule, collecting cyclic definition errors per rule."""
        result = SubstitutionResult()
        for name, rule in self._rules:
            try:
                result.expansions[name] = self.expand(rule, name)
            except CyclicDefinitionError as e:
                result.errors[name] = e
        return result
