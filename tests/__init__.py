"""
kzsync Test Suite
=================

Test Organization
-----------------
- tests/unit/          : Fast unit tests with mocks (no storage)
- tests/integration/   : Tests against a real database (in-memory SQLite by
                         default, PostgreSQL testcontainer on request)

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test parsing, retry and predicate logic
- Integration tests: Exercise the real write paths end to end
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
