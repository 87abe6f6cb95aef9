"""Shared test fixtures and Hypothesis strategies for tabvalidate tests."""

import logging
from pathlib import Path

import polars as pl
import pytest
import yaml
from hypothesis import HealthCheck, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from tabvalidate.validation.options import reset_options

# Tests reset global options through an autouse fixture, outside examples
settings.register_profile(
    "tabvalidate",
    max_examples=100,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)
settings.load_profile("tabvalidate")

COLUMNS = ["a", "b", "c", "d", "e"]


@composite
def numeric_dataframe(draw: st.DrawFn, min_rows: int = 0, max_rows: int = 20) -> pl.DataFrame:
    """Generate DataFrames with numeric columns a..e, possibly containing nulls.

    Example:
        >>> @given(numeric_dataframe())
        ... def test_something(df):
        ...     assert df.columns == ["a", "b", "c", "d", "e"]
    """
    size = draw(st.integers(min_value=min_rows, max_value=max_rows))
    values = st.one_of(
        st.none(),
        st.integers(min_value=-100, max_value=100),
    )
    return pl.DataFrame(
        {column: draw(st.lists(values, min_size=size, max_size=size)) for column in COLUMNS},
        schema={column: pl.Int64 for column in COLUMNS},
    )


@composite
def comparison_rule(draw: st.DrawFn) -> str:
    """Generate check rules comparing two columns or a column and a constant."""
    left = draw(st.sampled_from(COLUMNS))
    op = draw(st.sampled_from(["<", "<=", ">", ">=", "==", "!="]))
    right = draw(
        st.one_of(
            st.sampled_from(COLUMNS),
            st.integers(min_value=-50, max_value=50).map(str),
        )
    )
    return f"{left} {op} {right}"


@composite
def rule_set(draw: st.DrawFn, min_size: int = 0, max_size: int = 8) -> list[str]:
    """Generate acyclic rule sets over columns a..e.

    Derivations bind names x0, x1, ... and may only use columns and earlier
    derived names, so the set never contains a cycle. Checks may use any
    column or derived name.
    """
    size = draw(st.integers(min_value=min_size, max_value=max_size))
    derived: list[str] = []
    rules: list[str] = []
    for _ in range(size):
        operands = COLUMNS + derived
        if draw(st.booleans()):
            name = f"x{len(derived)}"
            left = draw(st.sampled_from(operands))
            right = draw(st.sampled_from(operands))
            op = draw(st.sampled_from(["+", "-", "*"]))
            rules.append(f"{name} := {left} {op} {right}")
            derived.append(name)
        else:
            left = draw(st.sampled_from(operands))
            op = draw(st.sampled_from(["<", "<=", ">", ">=", "=="]))
            right = draw(st.one_of(st.sampled_from(operands), st.integers(-50, 50).map(str)))
            rules.append(f"{left} {op} {right}")
    return rules


@pytest.fixture(autouse=True)
def clean_global_options():
    """Restore the global default options around every test."""
    reset_options()
    yield
    reset_options()


@pytest.fixture
def people() -> pl.DataFrame:
    """Small dataset used across confrontation tests."""
    return pl.DataFrame(
        {
            "height": [58, 59, 60],
            "weight": [115, 117, 120],
        }
    )


@pytest.fixture
def people_csv(tmp_path, people) -> Path:
    """The people dataset written to a CSV file."""
    path = tmp_path / "people.csv"
    people.write_csv(path)
    return path


@pytest.fixture
def write_rules(tmp_path):
    """Factory writing a list of rule texts to a YAML rule file."""

    def _write(rules: list[str], name: str = "rules.yaml", **extra: object) -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump({"rules": rules, **extra}, sort_keys=False))
        return path

    return _write


@pytest.fixture
def restore_logging():
    """Restore root logger handlers and level changed by configure_logging."""
    root_logger = logging.getLogger()
    handlers = root_logger.handlers[:]
    level = root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)
