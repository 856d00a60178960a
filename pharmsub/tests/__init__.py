"""Test suite for the Pharmsub subscription tracker.

Organized into three categories:

1. core/: Unit tests for core domain logic
   - Minimal dependencies, fast execution
   - Uses in-memory fakes for ports

2. adapters/: Integration tests for adapter implementations
   - SQLite against a temporary database file
   - PostgreSQL against mocked asyncpg connections

3. fakes/: Port implementations for testing
   - In-memory implementation of SubscriptionRepositoryPort
   - Used by core unit tests
"""
