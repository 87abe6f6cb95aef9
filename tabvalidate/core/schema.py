"""Data source normalisation.

Confrontation accepts data in a few shapes: a polars DataFrame, a mapping of
column name to values, or a mapping of dataset name to DataFrame. This module
turns all of them into a DataSources object with one primary dataset (whose
rows are the records being validated) and zero or more named references.

The normalisation does not modify its inputs: DataFrames are used as-is
(same reference), column mappings are converted into new DataFrames.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import polars as pl

from tabvalidate.core.exceptions import DataSourceError

DEFAULT_DATA_NAME = "data"


@dataclass(frozen=True)
class DataSources:
    """Normalised confrontation inputs.

    Attributes:
        primary: Dataset whose rows are the records being validated
        primary_name: Name of the primary dataset
        references: Other named datasets
    """

    primary: pl.DataFrame
    primary_name: str = DEFAULT_DATA_NAME
    references: dict[str, pl.DataFrame] = field(default_factory=dict)

    @property
    def names(self) -> list[str]:
        return [self.primary_name, *self.references]

    @property
    def records(self) -> int:
        return self.primary.height


def as_dataframe(data: Any, name: str = DEFAULT_DATA_NAME) -> pl.DataFrame:
    """Convert a DataFrame or column mapping into a DataFrame.

    Args:
        data: pl.DataFrame (returned unchanged) or mapping of column -> values
        name: Dataset name, used in error messages

    Returns:
        Polars DataFrame

    Raises:
        DataSourceError: If the data is of an unsupported type or its columns
                         have inconsistent lengths

    Example:
        >>> as_dataframe({"height": [58, 59, 60]}).height
        3
    """
    if isinstance(data, pl.DataFrame):
        return data

    if isinstance(data, Mapping):
        lengths = {}
        for column, values in data.items():
            if isinstance(values, (str, bytes)):
                continue
            try:
                lengths[column] = len(values)
            except TypeError:
                # Scalars are broadcast by polars
                continue
        if len(set(lengths.values())) > 1:
            msg = f"Columns of dataset '{name}' have inconsistent lengths"
            raise DataSourceError(
                msg,
                source=name,
                reason="inconsistent row count",
                lengths=lengths,
            )
        try:
            return pl.DataFrame(dict(data))
        except (TypeError, ValueError, pl.exceptions.PolarsError) as e:
            msg = f"Cannot build a DataFrame for dataset '{name}': {e}"
            raise DataSourceError(msg, source=name, reason=str(e)) from e

    msg = f"Dataset '{name}' must be a DataFrame or a mapping of columns, got: {type(data).__name__}"
    raise DataSourceError(msg, source=name, reason="unsupported type")


def _is_named_sources(data: Mapping[Any, Any]) -> bool:
    return len(data) > 0 and all(isinstance(v, pl.DataFrame) for v in data.values())


def as_data_sources(
    data: Any,
    reference: Mapping[str, Any] | None = None,
) -> DataSources:
    """Normalise confrontation inputs into DataSources.

    ``data`` may be a DataFrame, a column mapping, or a mapping of dataset
    name to DataFrame. In the last case the first entry is the primary
    dataset and the remaining ones are references.

    Args:
        data: Primary data (or named datasets)
        reference: Additional named datasets (DataFrames or column mappings)

    Returns:
        DataSources with the primary dataset and references

    Raises:
        DataSourceError: If any dataset is invalid or names collide
    """
    references: dict[str, pl.DataFrame] = {}

    if isinstance(data, Mapping) and _is_named_sources(data):
        items = list(data.items())
        primary_name, primary = str(items[0][0]), items[0][1]
        for ref_name, ref_data in items[1:]:
            references[str(ref_name)] = ref_data
    else:
        primary_name = DEFAULT_DATA_NAME
        primary = as_dataframe(data, primary_name)

    for ref_name, ref_data in (reference or {}).items():
        if ref_name == primary_name or ref_name in references:
            msg = f"Duplicate dataset name: '{ref_name}'"
            raise DataSourceError(msg, source=ref_name, reason="duplicate name")
        references[ref_name] = as_dataframe(ref_data, ref_name)

    return DataSources(primary=primary, primary_name=primary_name, references=references)
