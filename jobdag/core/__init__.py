"""jobdag core - domain model, ports, validation and orchestration.

Nothing in ``jobdag.core`` imports ``jobdag.builtin`` at module level; the
engine only reaches for the built-in adapters when the caller supplies none.
"""
