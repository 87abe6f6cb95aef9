"""Confrontation options.

Options are resolved in three layers, later layers taking precedence:

1. Global defaults (``get_options``/``set_options``/``reset_options``)
2. Options attached to a Validator (``Validator(options=...)``)
3. Options passed to ``confront``

Example:
    >>> set_options(linear_equality_epsilon=1e-6)
    >>> v = Validator("x == y", options={"raise": "errors"})
    >>> cf = confront(df, v, numeric_tolerance=0.0)
    >>> cf.options.raise_mode
    <RaiseMode.ERRORS: 'errors'>
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any

from tabvalidate.validation.exceptions import ConfigurationError


class RaiseMode(Enum):
    """What a confrontation propagates instead of capturing.

    Attributes:
        NONE: Capture errors and warnings per rule, never raise
        ERRORS: Raise the first evaluation error, capture warnings
        ALL: Raise the first evaluation error or warning
    """

    NONE = "none"
    ERRORS = "errors"
    ALL = "all"


# "raise" is a keyword in Python; accept it as an alias in mappings
_ALIASES = {"raise": "raise_mode"}


@dataclass(frozen=True)
class ConfrontOptions:
    """Options controlling one confrontation.

    Attributes:
        raise_mode: Error/warning propagation policy
        numeric_tolerance: Slack for non-strict inequalities: ``a <= b``
                           passes when ``a - b <= numeric_tolerance``
        linear_equality_epsilon: Slack for equalities: ``a == b`` passes when
                                 ``|a - b| <= linear_equality_epsilon``
        na_value: Replacement for NA outcomes (None keeps them NA)
    """

    raise_mode: RaiseMode = RaiseMode.NONE
    numeric_tolerance: float = 1e-8
    linear_equality_epsilon: float = 1e-8
    na_value: bool | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.raise_mode, RaiseMode):
            try:
                object.__setattr__(self, "raise_mode", RaiseMode(self.raise_mode))
            except ValueError as e:
                msg = (
                    f"Invalid raise mode: {self.raise_mode!r}. "
                    f"Must be one of: {', '.join(m.value for m in RaiseMode)}"
                )
                raise ConfigurationError(
                    msg,
                    parameter="raise_mode",
                    value=self.raise_mode,
                    reason="Invalid raise mode",
                ) from e

        for parameter in ("numeric_tolerance", "linear_equality_epsilon"):
            value = getattr(self, parameter)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                msg = f"{parameter} must be a number, got: {type(value).__name__}"
                raise ConfigurationError(
                    msg, parameter=parameter, value=value, reason="Invalid type"
                )
            if value < 0:
                msg = f"{parameter} must be non-negative, got: {value}"
                raise ConfigurationError(
                    msg, parameter=parameter, value=value, reason="Negative tolerance"
                )
            object.__setattr__(self, parameter, float(value))

        if self.na_value is not None and not isinstance(self.na_value, bool):
            msg = f"na_value must be True, False or None, got: {self.na_value!r}"
            raise ConfigurationError(
                msg, parameter="na_value", value=self.na_value, reason="Invalid type"
            )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ConfrontOptions":
        """Build options from a mapping, e.g. a parsed config file section."""
        return DEFAULT_OPTIONS.merge(mapping)

    def merge(self, overrides: Mapping[str, Any] | None = None, **kwargs: Any) -> "ConfrontOptions":
        """Return a copy with the given options replaced.

        None values are ignored so unset CLI arguments do not clobber
        configured options; use ``replace`` semantics directly to reset
        ``na_value``.

        Raises:
            ConfigurationError: For unknown option names or invalid values
        """
        changes = {**(overrides or {}), **kwargs}
        known = {f.name for f in fields(self)}
        normalised: dict[str, Any] = {}
        for key, value in changes.items():
            key = _ALIASES.get(key, key)
            if key not in known:
                msg = f"Unknown option: '{key}'. Available options: {', '.join(sorted(known))}"
                raise ConfigurationError(msg, parameter=key, reason="Unknown option")
            if value is not None:
                normalised[key] = value
        if not normalised:
            return self
        return replace(self, **normalised)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["raise_mode"] = self.raise_mode.value
        return data


DEFAULT_OPTIONS = ConfrontOptions()

_global_options = DEFAULT_OPTIONS


def get_options() -> ConfrontOptions:
    """Return the global default options."""
    return _global_options


def set_options(**kwargs: Any) -> ConfrontOptions:
    """Update the global default options and return the new value."""
    global _global_options
    _global_options = _global_options.merge(kwargs)
    return _global_options


def reset_options() -> ConfrontOptions:
    """Restore the built-in defaults."""
    global _global_options
    _global_options = DEFAULT_OPTIONS
    return _global_options


def resolve_options(*layers: "ConfrontOptions | Mapping[str, Any] | None") -> ConfrontOptions:
    """Merge option layers on top of the global defaults.

    A ConfrontOptions layer replaces everything before it; a mapping layer
    overrides only the keys it names.
    """
    resolved = get_options()
    for layer in layers:
        if layer is None:
            continue
        if isinstance(layer, ConfrontOptions):
            resolved = layer
        else:
            resolved = resolved.merge(layer)
    return resolved
