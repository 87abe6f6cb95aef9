"""CLI entry point for tabvalidate.

Enables invocation via `python -m tabvalidate`.
"""

import sys

from tabvalidate.cli.app import app

if __name__ == "__main__":
    exit_code = app()
    sys.exit(exit_code if exit_code is not None else 0)
