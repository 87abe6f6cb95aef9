"""CLI interface for the tabvalidate rule engine.

This package provides command-line access to confrontation of data files
with YAML rule sets, and to inspection of rule sets (expanded rules,
variables and dependency blocks).
"""
