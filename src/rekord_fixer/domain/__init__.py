"""
Domain layer: validation, matching and the batch operations.

Submodules are imported directly (rekord_fixer.domain.batch, ...) so that
the core layer can lazily import domain.models without a cycle.
"""
