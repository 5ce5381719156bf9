"""Resolve dotted paths to Python callables.

Used by the CLI to turn ``--executor mypkg.executors.run_agent`` into the
executor function.

Examples
--------
>>> from jobdag.core.resolver import resolve_function
>>> resolve_function("json.dumps").__name__
'dumps'
"""

from __future__ import annotations

import importlib
from typing import Any

from jobdag.core.exceptions import ResolveError


def resolve_function(path: str) -> Any:
    """Resolve a path to a function or callable.

    Both ``package.module.func`` and ``package.module:func`` are accepted.

    Raises
    ------
    ResolveError
        If the module or function cannot be found
    """
    if ":" in path:
        module_path, _, func_name = path.partition(":")
    elif "." in path:
        module_path, func_name = path.rsplit(".", 1)
    else:
        raise ResolveError(path, "Must be a full module path (e.g., 'mypkg.executors.run')")

    if not module_path or not func_name:
        raise ResolveError(path, "Must be a full module path (e.g., 'mypkg.executors.run')")

    try:
        module = importlib.import_module(module_path)
    except ModuleNotFoundError as e:
        raise ResolveError(path, f"Module '{module_path}' not found: {e}") from e
    except ImportError as e:
        raise ResolveError(path, f"Failed to import '{module_path}': {e}") from e

    try:
        func = getattr(module, func_name)
    except AttributeError as e:
        available = [name for name in dir(module) if not name.startswith("_")]
        raise ResolveError(
            path,
            f"'{func_name}' not found in '{module_path}'. Available: {', '.join(available[:10])}",
        ) from e

    if not callable(func):
        raise ResolveError(path, f"'{func_name}' is not callable (got {type(func).__name__})")

    return func
