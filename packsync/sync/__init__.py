"""Reconciliation and versioning engine.

This package provides:
- Version resolution: immutable semver patches or a single mutable version
- Sweep: soft-deletion of items a mutable version no longer declares
- Graph reconciliation: ordered upsert of a pack template per environment
- Orchestration: validation, two-phase publish and rollback
"""
