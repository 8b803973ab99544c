"""
Tagged expression tree for matcher expressions.

Each node evaluates itself against an explicit binding environment:
``values`` maps qualified field names (``"r.sub"``) to request/policy values
and ``functions`` maps predicate names to callables. Evaluation is pure;
every failure is raised as EvalError.
"""

import numbers
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, Tuple

from shared.errors import EvalError


Values = Mapping[str, Any]
Functions = Mapping[str, Callable[..., Any]]


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, numbers.Number):
        return "number"
    if isinstance(value, str):
        return "str"
    return "object"


def _require_bool(value: Any, where: str) -> bool:
    if not isinstance(value, bool):
        raise EvalError(
            f"Type mismatch: {where} expects a boolean",
            {"got": type(value).__name__}
        )
    return value


class Node:
    """Base class for expression nodes."""

    def evaluate(self, values: Values, functions: Functions) -> Any:  # pragma: no cover
        raise NotImplementedError


@dataclass(frozen=True)
class Literal(Node):
    value: Any

    def evaluate(self, values: Values, functions: Functions) -> Any:
        return self.value


@dataclass(frozen=True)
class FieldRef(Node):
    """Reference to ``section.field`` with an optional attribute path."""

    section: str
    field: str
    path: Tuple[str, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.section}.{self.field}"

    def evaluate(self, values: Values, functions: Functions) -> Any:
        try:
            value = values[self.qualified_name]
        except KeyError:
            raise EvalError("Unbound field", {"field": self.qualified_name})

        for attr in self.path:
            if isinstance(value, Mapping):
                if attr not in value:
                    raise EvalError("Unknown attribute", {"field": self.qualified_name, "attribute": attr})
                value = value[attr]
            else:
                try:
                    value = getattr(value, attr)
                except AttributeError:
                    raise EvalError("Unknown attribute", {"field": self.qualified_name, "attribute": attr})
        return value


@dataclass(frozen=True)
class Call(Node):
    name: str
    args: Tuple[Node, ...]

    def evaluate(self, values: Values, functions: Functions) -> Any:
        func = functions.get(self.name)
        if func is None:
            raise EvalError("Unknown function invoked", {"function": self.name})

        args = [arg.evaluate(values, functions) for arg in self.args]
        try:
            return func(*args)
        except EvalError:
            raise
        except Exception as e:
            raise EvalError(
                f"Function '{self.name}' failed",
                {"function": self.name, "error": str(e)}
            ) from e


@dataclass(frozen=True)
class BoolOp(Node):
    op: str  # "and" | "or"
    operands: Tuple[Node, ...]

    def evaluate(self, values: Values, functions: Functions) -> bool:
        if self.op == "and":
            for operand in self.operands:
                if not _require_bool(operand.evaluate(values, functions), "'and'"):
                    return False
            return True

        for operand in self.operands:
            if _require_bool(operand.evaluate(values, functions), "'or'"):
                return True
        return False


@dataclass(frozen=True)
class Not(Node):
    operand: Node

    def evaluate(self, values: Values, functions: Functions) -> bool:
        return not _require_bool(self.operand.evaluate(values, functions), "'not'")


def _equals(left: Any, right: Any) -> bool:
    left_kind, right_kind = _kind(left), _kind(right)
    if left_kind != right_kind and "object" not in (left_kind, right_kind):
        raise EvalError(
            "Type mismatch in equality",
            {"left": type(left).__name__, "right": type(right).__name__}
        )
    return left == right


def _ordered(left: Any, right: Any) -> None:
    left_kind, right_kind = _kind(left), _kind(right)
    if left_kind != right_kind or left_kind not in ("number", "str"):
        raise EvalError(
            "Type mismatch in ordering comparison",
            {"left": type(left).__name__, "right": type(right).__name__}
        )


def _contains(left: Any, right: Any) -> bool:
    if not isinstance(right, (tuple, list, set, frozenset, Mapping, str)):
        raise EvalError("Membership test needs a collection", {"got": type(right).__name__})
    if isinstance(right, str) and not isinstance(left, str):
        raise EvalError("Type mismatch in membership test", {"left": type(left).__name__})
    return left in right


_COMPARATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": _equals,
    "!=": lambda left, right: not _equals(left, right),
    "in": _contains,
    "not in": lambda left, right: not _contains(left, right),
}


@dataclass(frozen=True)
class Compare(Node):
    op: str
    left: Node
    right: Node

    def evaluate(self, values: Values, functions: Functions) -> bool:
        left = self.left.evaluate(values, functions)
        right = self.right.evaluate(values, functions)

        comparator = _COMPARATORS.get(self.op)
        if comparator is not None:
            return comparator(left, right)

        _ordered(left, right)
        if self.op == "<":
            return left < right
        if self.op == "<=":
            return left <= right
        if self.op == ">":
            return left > right
        return left >= right


@dataclass(frozen=True)
class Sequence(Node):
    items: Tuple[Node, ...]

    def evaluate(self, values: Values, functions: Functions) -> Tuple[Any, ...]:
        return tuple(item.evaluate(values, functions) for item in self.items)
