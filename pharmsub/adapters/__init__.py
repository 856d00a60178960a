"""External adapters for the Pharmsub subscription tracker.

This package contains all external dependencies (SQLite, PostgreSQL,
the interactive CLI) and provides implementations of the core port
interfaces.

Adapter Organization:

- store/: Adapters for subscription persistence (SQLite, PostgreSQL)
- cli/: Command-line management commands
"""
