"""
Interface layer package.

Contains the typer command line and its rich output formatters.
"""
