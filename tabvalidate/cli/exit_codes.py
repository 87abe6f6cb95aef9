"""Exit code constants for CLI commands.

Exit codes follow Unix conventions where 0 indicates success and non-zero
values indicate different types of failures.

Exit codes:
    0: SUCCESS - All rules satisfied (or rule set valid)
    1: UNEXPECTED_ERROR - Unexpected/unhandled exception
    2: VIOLATIONS - Some rules failed or could not be evaluated
    3: DATA_ERROR - Input data could not be read
    6: CONFIG_ERROR - Configuration file or argument error
    7: RULE_ERROR - Rule set could not be loaded, parsed or expanded
"""


class ExitCode:
    """Standard exit codes for CLI commands.

    Example:
        >>> import sys
        >>> cf = confront(data, rules)
        >>> sys.exit(ExitCode.VIOLATIONS if cf.any_failed() else ExitCode.SUCCESS)
    """

    SUCCESS = 0
    """Operation completed successfully."""

    UNEXPECTED_ERROR = 1
    """Unexpected or unhandled exception occurred."""

    VIOLATIONS = 2
    """At least one rule failed or produced an evaluation error."""

    DATA_ERROR = 3
    """Input data file reading or parsing failed."""

    CONFIG_ERROR = 6
    """Configuration file or argument error."""

    RULE_ERROR = 7
    """Rule set is malformed, unparsable or cyclic."""
