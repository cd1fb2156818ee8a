"""
Questline Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Fast unit tests against the in-memory store
- tests/unit/domain/   : Pure domain rules (formulas, scheduler, transitions)
- tests/integration/   : SQLAlchemy store against SQLite, and PostgreSQL via testcontainers

Testing Philosophy
------------------
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
