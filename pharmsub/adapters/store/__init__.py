"""Subscription repository adapters for persistence and change feeds.

Implementations support multiple backends:
- SQLite (zero-config, single-file, in-process change feed)
- PostgreSQL (shared database, LISTEN/NOTIFY change feed)
"""
