"""Command line interface for jobdag."""
