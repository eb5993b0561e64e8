"""
WeddingLK Cache Test Suite
==========================

Test Organization
-----------------
- tests/unit/          : Fast unit tests against the in-memory Redis double
- tests/unit/cache/    : Tiered cache façade, tiers, backends, tags, invalidation
- tests/integration/   : Real Redis via testcontainers (marker: integration)

Running
-------
- ``pytest -m "not integration"`` for the fast suite
- ``pytest -m integration`` needs a container runtime; skipped otherwise
"""
