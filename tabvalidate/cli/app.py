"""Cyclopts application and command routing for the tabvalidate CLI.

The CLI provides the following commands:
- confront: Confront a data file with a rule set
- check-rules: Parse and expand a rule set
- variables: List the variables a rule set depends on
- blocks: Show the dependency blocks of a rule set
"""

from cyclopts import App

from tabvalidate.cli import commands

app = App(
    name="tabvalidate",
    help="Rule-based validation of tabular data",
    version="0.1.0",
)

app.command(commands.confront)
app.command(commands.check_rules, name="check-rules")
app.command(commands.variables)
app.command(commands.blocks)
