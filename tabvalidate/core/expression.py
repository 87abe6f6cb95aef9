"""Rule expression trees.

Rule bodies are parsed once into an abstract syntax tree using Python's own
``ast`` parser, restricted to a small closed set of node types. Everything
downstream (substitution of derived variables, dependency analysis,
evaluation) works on the tree, never on the original text.

Accepted syntax:
    - names (``height``) and qualified names (``ref.height``)
    - int, float, str, bool and None constants
    - arithmetic ``+ - * / // % **`` (``^`` is accepted as power)
    - comparisons, including chains, ``in``/``not in`` and ``is None``
    - logical ``and``/``or``/``not`` and their element-wise forms ``& | ~``
    - conditional expressions ``a if cond else b``
    - calls of named functions with positional arguments

A derivation is written ``NAME := expression``.
"""

import ast
import copy
import io
import tokenize
from collections.abc import Mapping

from tabvalidate.core.exceptions import RuleParseError

_ALLOWED_NODES = (
    ast.BoolOp,
    ast.BinOp,
    ast.UnaryOp,
    ast.Compare,
    ast.Call,
    ast.IfExp,
    ast.Name,
    ast.Attribute,
    ast.Constant,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Load,
    ast.boolop,
    ast.operator,
    ast.unaryop,
    ast.cmpop,
)

_DISALLOWED_OPERATORS = (ast.MatMult, ast.LShift, ast.RShift, ast.BitXor)


def _rewrite_power(text: str) -> str:
    """Replace the ``^`` operator token with ``**``.

    Only operator tokens are touched; a caret inside a string literal is kept.
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
    except (tokenize.TokenError, SyntaxError):
        # Let ast.parse report the problem with a proper message
        return text

    line_offsets = [0]
    for line in text.splitlines(keepends=True):
        line_offsets.append(line_offsets[-1] + len(line))

    positions = [
        line_offsets[tok.start[0] - 1] + tok.start[1]
        for tok in tokens
        if tok.type == tokenize.OP and tok.string == "^"
    ]
    for pos in reversed(positions):
        text = text[:pos] + "**" + text[pos + 1 :]
    return text


def _qualified_name(node: ast.Attribute) -> str:
    return f"{node.value.id}.{node.attr}"  # type: ignore[attr-defined]


def _check_node(node: ast.AST, text: str) -> None:
    """Reject node types outside the rule language."""
    for child in ast.walk(node):
        if not isinstance(child, _ALLOWED_NODES) or isinstance(child, _DISALLOWED_OPERATORS):
            msg = f"Unsupported construct in rule: {type(child).__name__}"
            raise RuleParseError(msg, text=text, reason="unsupported syntax")

        if isinstance(child, ast.Constant) and not (
            child.value is None or isinstance(child.value, (bool, int, float, str))
        ):
            msg = f"Unsupported constant in rule: {child.value!r}"
            raise RuleParseError(msg, text=text, reason="unsupported constant")

        if isinstance(child, ast.Attribute) and not isinstance(child.value, ast.Name):
            msg = "Qualified names must have the form 'source.column'"
            raise RuleParseError(msg, text=text, reason="unsupported syntax")

        if isinstance(child, ast.Call):
            if not isinstance(child.func, ast.Name):
                msg = "Only named functions can be called in a rule"
                raise RuleParseError(msg, text=text, reason="unsupported syntax")
            if child.keywords:
                msg = f"Keyword arguments are not supported (function '{child.func.id}')"
                raise RuleParseError(msg, text=text, reason="unsupported syntax")


def parse_rule_text(text: str) -> tuple[str | None, "Expression"]:
    """Parse rule text into an optional derivation target and an expression.

    Args:
        text: Rule text, e.g. ``"height > 0"`` or ``"BMI := weight / height^2"``

    Returns:
        Tuple of (bound variable name or None, parsed expression)

    Raises:
        RuleParseError: If the text is empty, not valid syntax, or uses
                        constructs outside the rule language

    Example:
        >>> target, expr = parse_rule_text("BMI := weight / height^2")
        >>> target
        'BMI'
        >>> expr.text
        'weight / height ** 2'
    """
    if not isinstance(text, str):
        msg = f"Rule text must be a string, got: {type(text).__name__}"
        raise RuleParseError(msg, reason="invalid type")

    source = _rewrite_power(text.strip())
    if not source:
        raise RuleParseError("Rule text is empty", text=text, reason="empty rule")

    try:
        # Parenthesised so a top-level ':=' parses; newline keeps trailing comments harmless
        tree = ast.parse(f"({source}\n)", mode="eval")
    except SyntaxError as e:
        msg = f"Invalid rule syntax: {e.msg}"
        raise RuleParseError(msg, text=text, reason="syntax error") from e

    body = tree.body
    target: str | None = None
    if isinstance(body, ast.NamedExpr):
        target = body.target.id
        body = body.value

    return target, Expression(body, text=text)


class _VariableCollector(ast.NodeVisitor):
    def __init__(self) -> None:
        self.variables: list[str] = []
        self.functions: list[str] = []

    def _add(self, bucket: list[str], name: str) -> None:
        if name not in bucket:
            bucket.append(name)

    def visit_Name(self, node: ast.Name) -> None:
        self._add(self.variables, node.id)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        self._add(self.variables, _qualified_name(node))

    def visit_Call(self, node: ast.Call) -> None:
        self._add(self.functions, node.func.id)  # type: ignore[attr-defined]
        for arg in node.args:
            self.visit(arg)


class _Substituter(ast.NodeTransformer):
    def __init__(self, mapping: Mapping[str, "Expression"]) -> None:
        self.mapping = mapping

    def visit_Name(self, node: ast.Name) -> ast.AST:
        replacement = self.mapping.get(node.id)
        if replacement is None:
            return node
        return copy.deepcopy(replacement.node)

    def visit_Attribute(self, node: ast.Attribute) -> ast.AST:
        # source.column is a single reference; its source name is not a variable
        return node

    def visit_Call(self, node: ast.Call) -> ast.AST:
        node.args = [self.visit(arg) for arg in node.args]
        return node


class Expression:
    """Immutable, structured rule expression.

    Wraps a validated ``ast`` expression node. Equality and hashing are
    structural, so two expressions parsed from differently formatted text
    (``"a+b"`` and ``"a + b"``) are equal.

    Attributes:
        node: The underlying ``ast`` node. Treat as read-only; use
              ``substitute`` to derive new expressions.

    Example:
        >>> expr = Expression.parse("weight / height^2 < 23")
        >>> expr.variables()
        ['weight', 'height']
        >>> bmi = Expression.parse("weight / height^2")
        >>> Expression.parse("BMI < 23").substitute({"BMI": bmi}) == expr
        True
    """

    __slots__ = ("_node", "_source")

    def __init__(self, node: ast.expr, text: str | None = None) -> None:
        _check_node(node, text if text is not None else ast.unparse(node))
        self._node = node
        self._source = text

    @classmethod
    def parse(cls, text: str) -> "Expression":
        """Parse a plain (non-derivation) expression.

        Raises:
            RuleParseError: If the text cannot be parsed or is a derivation
        """
        target, expression = parse_rule_text(text)
        if target is not None:
            msg = f"Expected an expression, got a derivation of '{target}'"
            raise RuleParseError(msg, text=text, reason="unexpected derivation")
        return expression

    @property
    def node(self) -> ast.expr:
        return self._node

    @property
    def text(self) -> str:
        """Canonical rendering of the expression."""
        return ast.unparse(self._node)

    @property
    def source(self) -> str:
        """The text the expression was parsed from (or its canonical rendering)."""
        return self._source if self._source is not None else self.text

    def variables(self) -> list[str]:
        """Return free variable names in order of first appearance.

        Qualified references are returned as ``"source.column"``. Function
        names are not variables.
        """
        collector = _VariableCollector()
        collector.visit(self._node)
        return collector.variables

    def functions(self) -> list[str]:
        """Return the names of called functions in order of first appearance."""
        collector = _VariableCollector()
        collector.visit(self._node)
        return collector.functions

    def substitute(self, mapping: Mapping[str, "Expression"]) -> "Expression":
        """Replace variable references with (copies of) other expression trees.

        This is a single structural pass: names appearing inside a
        replacement are not expanded again.

        Args:
            mapping: Variable name to replacement expression

        Returns:
            A new Expression; self is left unchanged
        """
        if not mapping or not set(mapping).intersection(self.variables()):
            return self
        node = _Substituter(mapping).visit(copy.deepcopy(self._node))
        return Expression(node)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Expression):
            return NotImplemented
        return ast.dump(self._node) == ast.dump(other._node)

    def __hash__(self) -> int:
        return hash(ast.dump(self._node))

    def __repr__(self) -> str:
        return f"Expression({self.text!r})"

    def __str__(self) -> str:
        return self.text
