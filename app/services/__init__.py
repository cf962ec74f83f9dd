"""Service layer: audit storage, preferences, progress rules and RLS diagnostics."""

from . import audit, preferences, progress, rls_checks

__all__ = [
    "audit",
    "preferences",
    "progress",
    "rls_checks",
]
