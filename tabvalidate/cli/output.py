"""Output formatting, progress indicators and logging setup for CLI operations.

This module provides:
- ProgressIndicator: TTY-aware progress indicators for long operations
- handle_error: Formatted error messages with context and optional stack traces
- configure_logging: Root logger setup from --log-level/--log-file
- print_frame: Plain-text rendering of result tables
"""

import logging
import sys
import traceback
from pathlib import Path
from typing import TextIO

import polars as pl

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class ProgressIndicator:
    """Simple progress indicator for CLI operations.

    Automatically detects TTY to disable progress indicators when output
    is redirected to a file or pipe. Progress messages are written to
    stderr to keep stdout clean for actual output.

    Example:
        progress = ProgressIndicator(enabled=not quiet)
        progress.start("Confronting data.csv")
        # ... do work ...
        progress.success("3 rules, no violations")
    """

    def __init__(self, enabled: bool = True, stream: TextIO = sys.stderr):
        # Disable if explicitly disabled or if output is redirected (not a TTY)
        self.enabled = enabled and stream.isatty()
        self.stream = stream

    def start(self, message: str) -> None:
        if self.enabled:
            self.stream.write(f"{message}... ")
            self.stream.flush()

    def success(self, message: str) -> None:
        if self.enabled:
            self.stream.write("✓\n")
        print(message)

    def error(self, message: str) -> None:
        if self.enabled:
            self.stream.write("✗\n")
        print(f"Error: {message}", file=sys.stderr)


def handle_error(error: Exception, verbose: bool = False) -> None:
    """Format and display error message with context.

    Displays error messages to stderr with the context fields of
    TabValidateError exceptions. When verbose mode is enabled, also displays
    the full stack trace.

    Args:
        error: Exception to display
        verbose: Whether to show stack trace (default False)
    """
    message = getattr(error, "message", None) or str(error)
    print(f"Error: {message}", file=sys.stderr)

    if hasattr(error, "context") and error.context:
        print("Context:", file=sys.stderr)
        for key, value in error.context.items():
            print(f"  {key}: {value}", file=sys.stderr)

    if verbose:
        print("\nStack trace:", file=sys.stderr)
        traceback.print_exception(type(error), error, error.__traceback__, file=sys.stderr)


def configure_logging(level: str = "warning", log_file: Path | None = None) -> None:
    """Configure the root logger for a CLI run.

    Library modules only create loggers; handlers are installed here. Log
    records go to stderr, and additionally to ``log_file`` when given.

    Args:
        level: Log level name (debug, info, warning, error, critical)
        log_file: Optional file to append log records to

    Raises:
        ValueError: For an unknown level name
    """
    if level.lower() not in LOG_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of: {', '.join(LOG_LEVELS)}"
        raise ValueError(msg)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def print_frame(frame: pl.DataFrame) -> None:
    """Print a result table to stdout with all rows and columns visible."""
    with pl.Config(tbl_rows=-1, tbl_cols=-1, fmt_str_lengths=80, tbl_hide_dataframe_shape=True):
        print(frame)
