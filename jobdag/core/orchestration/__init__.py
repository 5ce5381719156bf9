"""Orchestration: the per-run scheduler, the engine facade and lifecycle events."""
