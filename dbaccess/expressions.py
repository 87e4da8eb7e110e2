"""
SQL value variants for the statement builders.

A value in an insert/update map is either:
- a plain scalar, bound as a parameter
- a Literal, whose SQL fragment is inlined verbatim (e.g. NOW()) and whose
  args are appended to the bound parameters in order
- a Condition (or anything with get_expression()/get_args()), used inline
  like a Literal or as the WHERE clause of an update
"""

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class Literal:
    """Raw SQL fragment inlined into the statement text."""
    sql: str
    args: Sequence[Any] = ()

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))

    def get_expression(self) -> str:
        return self.sql

    def get_args(self) -> list:
        return list(self.args)


@dataclass(frozen=True)
class Condition:
    """Pre-built conditional expression with its own bound arguments."""
    expression: str
    args: Sequence[Any] = ()

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))

    def get_expression(self) -> str:
        return self.expression

    def get_args(self) -> list:
        return list(self.args)


NOW = Literal("NOW()")


def is_expression(value: Any) -> bool:
    """True for values that render inline SQL instead of a placeholder."""
    return callable(getattr(value, "get_expression", None)) and callable(
        getattr(value, "get_args", None)
    )
