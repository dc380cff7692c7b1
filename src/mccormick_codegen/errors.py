"""
Relaxation Errors

Every failure of the rewrite is a static input-correctness problem:
- UnsupportedOperatorError: operator has no entry in the rule table
- DomainViolationError: a rule precondition fails on an operand interval
- NamingCollisionError: a user symbol already looks like a derived name

None of these are retried or defaulted; the whole rewrite is aborted.
"""

from typing import Any, Optional


class RelaxationError(Exception):
    """Base class for errors raised while building relaxations."""


class UnsupportedOperatorError(RelaxationError):
    """
    An expression contains an operator absent from the rule table.

    Attributes:
        op: The operator name (e.g. "sin")
        node: The offending sub-expression, if known
    """

    def __init__(self, op: str, node: Any = None):
        self.op = op
        self.node = node
        msg = f"No relaxation rule for operator '{op}'"
        if node is not None:
            msg += f" (in {node!r})"
        super().__init__(msg)


class DomainViolationError(RelaxationError):
    """
    A rule's structural precondition is violated by an operand interval.

    Attributes:
        op: The operator name
        interval: The offending static operand interval
        detail: Human-readable description of the precondition
    """

    def __init__(self, op: str, interval: Any, detail: str, node: Optional[Any] = None):
        self.op = op
        self.interval = interval
        self.detail = detail
        self.node = node
        msg = f"Domain violation in '{op}': {detail}; operand interval {interval!r}"
        if node is not None:
            msg += f" (in {node!r})"
        super().__init__(msg)


class NamingCollisionError(RelaxationError):
    """A symbol name already matches the derived-name pattern."""

    def __init__(self, name: str, suffix: str):
        self.name = name
        self.suffix = suffix
        super().__init__(
            f"Symbol '{name}' ends with reserved suffix '{suffix}' and would "
            f"collide with derived bound names"
        )
