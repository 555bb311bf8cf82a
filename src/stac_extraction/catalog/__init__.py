"""
Catalog document navigation.

This module contains:
- Predicate filters over link and item fields
- Link resolution into typed documents
- Link projection, item materialization and recursive walks
"""
