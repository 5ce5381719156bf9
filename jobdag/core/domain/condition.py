"""Safe parser for job ``when`` conditions.

A condition gates a job on the final status of other jobs in the same run::

    lint.status == 'failed'
    unit-tests.status != 'completed' and not (lint.status == 'skipped')

Conditions are parsed with Python's AST module and a strict whitelist;
nothing is ever handed to eval(). Only the following is accepted:

- ``<job>.status == '<status>'`` and ``<job>.status != '<status>'``
- ``and``, ``or``, ``not`` and parentheses

Job ids may contain hyphens, so every ``<job>.status`` reference is swapped
for a placeholder name before the expression reaches the parser.
"""

from __future__ import annotations

import ast
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache

from jobdag.core.domain.pipeline_run import JobStatus
from jobdag.core.exceptions import ConditionError

__all__ = ["JobCondition", "parse_condition"]

_REFERENCE = re.compile(r"(?<![\w'\"-])([A-Za-z0-9_][\w-]*)\.status\b")
_PLACEHOLDER = "_job_{index}"
_STATUS_VALUES = frozenset(status.value for status in JobStatus)


@dataclass(frozen=True, slots=True)
class JobCondition:
    """A parsed ``when`` condition.

    Attributes
    ----------
    expression : str
        Condition as written in the pipeline definition
    references : tuple[str, ...]
        Job ids whose status the condition reads, in first-seen order
    """

    expression: str
    references: tuple[str, ...]
    _tree: ast.expr = field(repr=False, compare=False)
    _names: Mapping[str, str] = field(repr=False, compare=False)

    def __str__(self) -> str:
        return self.expression

    def evaluate(self, statuses: Mapping[str, JobStatus]) -> bool:
        """Evaluate against the current status of each referenced job.

        Raises
        ------
        ConditionError
            If a referenced job has no status in ``statuses``
        """
        return self._eval(self._tree, statuses)

    def _eval(self, node: ast.expr, statuses: Mapping[str, JobStatus]) -> bool:
        if isinstance(node, ast.BoolOp):
            values = (self._eval(value, statuses) for value in node.values)
            return all(values) if isinstance(node.op, ast.And) else any(values)

        if isinstance(node, ast.UnaryOp):
            return not self._eval(node.operand, statuses)

        # Only comparisons remain after validation
        assert isinstance(node, ast.Compare)
        attribute = node.left
        assert isinstance(attribute, ast.Attribute) and isinstance(attribute.value, ast.Name)
        job_id = self._names[attribute.value.id]
        try:
            status = statuses[job_id]
        except KeyError:
            raise ConditionError(self.expression, f"unknown job '{job_id}'") from None

        expected = node.comparators[0]
        assert isinstance(expected, ast.Constant)
        if isinstance(node.ops[0], ast.Eq):
            return status.value == expected.value
        return status.value != expected.value


@lru_cache(maxsize=256)
def parse_condition(expression: str) -> JobCondition:
    """Parse a ``when`` condition.

    Parameters
    ----------
    expression : str
        Condition text, e.g. ``"lint.status == 'failed'"``

    Returns
    -------
    JobCondition
        Parsed condition; results are cached per expression

    Raises
    ------
    ConditionError
        If the expression is empty, is not valid syntax, or uses anything
        outside the whitelist

    Examples
    --------
    >>> condition = parse_condition("lint.status == 'failed'")
    >>> condition.references
    ('lint',)
    >>> condition.evaluate({"lint": JobStatus.FAILED})
    True
    """
    if not expression.strip():
        raise ConditionError(expression, "condition is empty")

    names: dict[str, str] = {}
    placeholders: dict[str, str] = {}

    def substitute(match: re.Match[str]) -> str:
        job_id = match.group(1)
        if job_id not in placeholders:
            placeholders[job_id] = _PLACEHOLDER.format(index=len(placeholders))
            names[placeholders[job_id]] = job_id
        return f"{placeholders[job_id]}.status"

    source = _REFERENCE.sub(substitute, expression.strip())
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ConditionError(expression, f"invalid syntax: {e.msg}") from e

    _validate(tree.body, expression, names)
    return JobCondition(
        expression=expression,
        references=tuple(placeholders),
        _tree=tree.body,
        _names=names,
    )


def _validate(node: ast.expr, expression: str, names: Mapping[str, str]) -> None:
    """Reject every node outside the condition whitelist."""
    if isinstance(node, ast.BoolOp):
        for value in node.values:
            _validate(value, expression, names)
        return

    if isinstance(node, ast.UnaryOp):
        if not isinstance(node.op, ast.Not):
            raise ConditionError(expression, f"unsupported operator: {type(node.op).__name__}")
        _validate(node.operand, expression, names)
        return

    if not isinstance(node, ast.Compare):
        raise ConditionError(expression, f"unsupported syntax: {type(node).__name__}")

    if len(node.ops) != 1 or not isinstance(node.ops[0], ast.Eq | ast.NotEq):
        raise ConditionError(expression, "only a single '==' or '!=' comparison is allowed")

    left = node.left
    if not (
        isinstance(left, ast.Attribute)
        and left.attr == "status"
        and isinstance(left.value, ast.Name)
        and left.value.id in names
    ):
        raise ConditionError(expression, "comparisons must start with '<job>.status'")

    right = node.comparators[0]
    if not (isinstance(right, ast.Constant) and isinstance(right.value, str)):
        raise ConditionError(expression, "status must be compared with a quoted string")
    if right.value not in _STATUS_VALUES:
        raise ConditionError(
            expression,
            f"unknown status '{right.value}'. Valid: {', '.join(sorted(_STATUS_VALUES))}",
        )
