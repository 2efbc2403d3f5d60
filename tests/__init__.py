"""
sqlkite workspace test suite.

This package contains:
- unit/: Unit tests (single components over temporary files)
- integration/: Integration tests (full workspace over a temporary project)
"""
