"""
Matcher expression compiler.

Accepts casbin-style matcher text (``&&``, ``||``, ``!``) as well as the
Python spellings, parses it with :mod:`ast` and lowers the validated syntax
tree into the tagged node types of :mod:`enforcement.expression.tree`.
"""

import ast
import re
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Iterable, Mapping, Optional, Set, Tuple

from shared.errors import CompileError, EvalError
from .tree import BoolOp, Call, Compare, FieldRef, Literal, Node, Not, Sequence


_SECTION_TOKEN = re.compile(r"^[rp]\d*$")

_COMPARE_OPS = {
    ast.Eq: "==",
    ast.NotEq: "!=",
    ast.Lt: "<",
    ast.LtE: "<=",
    ast.Gt: ">",
    ast.GtE: ">=",
    ast.In: "in",
    ast.NotIn: "not in",
}


@dataclass(frozen=True)
class CompiledMatcher:
    """Parsed, validated matcher. Shared read-only across evaluations."""

    text: str
    root: Node
    fields: FrozenSet[str]
    functions: FrozenSet[str]


def normalize_expression(text: str) -> str:
    """Rewrite ``&&``, ``||`` and ``!`` outside string literals."""
    out = []
    quote = None
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif text.startswith("&&", i):
            out.append(" and ")
            i += 2
            continue
        elif text.startswith("||", i):
            out.append(" or ")
            i += 2
            continue
        elif ch == "!" and not text.startswith("!=", i):
            out.append(" not ")
        else:
            out.append(ch)
        i += 1

    if quote:
        raise CompileError("Unterminated string literal", {"expression": text})
    return "".join(out).strip()


class _Lowering:
    """Walks a Python expression AST and builds tagged nodes."""

    def __init__(self, text: str):
        self.text = text
        self.fields: Set[str] = set()
        self.functions: Set[str] = set()

    def fail(self, message: str, node: Optional[ast.AST] = None) -> CompileError:
        details = {"expression": self.text}
        if node is not None and hasattr(node, "col_offset"):
            details["offset"] = node.col_offset
        return CompileError(message, details)

    def lower(self, node: ast.AST) -> Node:
        if isinstance(node, ast.Constant):
            if not isinstance(node.value, (str, int, float, bool)):
                raise self.fail(f"Unsupported literal {node.value!r}", node)
            return Literal(node.value)

        if isinstance(node, ast.Attribute):
            return self._field_ref(node)

        if isinstance(node, ast.Name):
            if node.id in ("true", "false"):
                return Literal(node.id == "true")
            raise self.fail(f"Unknown identifier '{node.id}'", node)

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name):
                raise self.fail("Only direct function calls are allowed", node)
            if node.keywords:
                raise self.fail("Keyword arguments are not allowed", node)
            if any(isinstance(arg, ast.Starred) for arg in node.args):
                raise self.fail("Star arguments are not allowed", node)
            self.functions.add(node.func.id)
            return Call(node.func.id, tuple(self.lower(arg) for arg in node.args))

        if isinstance(node, ast.BoolOp):
            op = "and" if isinstance(node.op, ast.And) else "or"
            return BoolOp(op, tuple(self.lower(value) for value in node.values))

        if isinstance(node, ast.UnaryOp):
            if isinstance(node.op, ast.Not):
                return Not(self.lower(node.operand))
            if isinstance(node.op, ast.USub) and isinstance(node.operand, ast.Constant) \
                    and isinstance(node.operand.value, (int, float)) and not isinstance(node.operand.value, bool):
                return Literal(-node.operand.value)
            raise self.fail("Unsupported unary operator", node)

        if isinstance(node, ast.Compare):
            return self._compare(node)

        if isinstance(node, (ast.Tuple, ast.List)):
            return Sequence(tuple(self.lower(item) for item in node.elts))

        raise self.fail(f"Unsupported syntax: {type(node).__name__}", node)

    def _field_ref(self, node: ast.Attribute) -> FieldRef:
        chain = []
        current: ast.AST = node
        while isinstance(current, ast.Attribute):
            chain.append(current.attr)
            current = current.value
        if not isinstance(current, ast.Name) or not _SECTION_TOKEN.match(current.id):
            raise self.fail("Field references must start with a request or policy token", node)

        chain.reverse()
        ref = FieldRef(current.id, chain[0], tuple(chain[1:]))
        self.fields.add(ref.qualified_name)
        return ref

    def _compare(self, node: ast.Compare) -> Node:
        pairs = []
        left = self.lower(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            symbol = _COMPARE_OPS.get(type(op))
            if symbol is None:
                raise self.fail(f"Unsupported comparison: {type(op).__name__}", node)
            right = self.lower(comparator)
            pairs.append(Compare(symbol, left, right))
            left = right

        if len(pairs) == 1:
            return pairs[0]
        return BoolOp("and", tuple(pairs))


def parse_expression(text: str) -> Tuple[Node, FrozenSet[str], FrozenSet[str]]:
    """Parse matcher text into a tagged tree.

    Returns the root node with the referenced qualified field names and the
    invoked function names. Raises CompileError on malformed input.
    """
    if not text or not text.strip():
        raise CompileError("Empty expression", {"expression": text})

    normalized = normalize_expression(text)
    try:
        parsed = ast.parse(normalized, mode="eval")
    except SyntaxError as e:
        raise CompileError("Malformed expression", {"expression": text, "error": e.msg})

    lowering = _Lowering(text)
    root = lowering.lower(parsed.body)
    return root, frozenset(lowering.fields), frozenset(lowering.functions)


def compile_expression(
    text: str,
    known_fields: Optional[Iterable[str]] = None,
    functions: Optional[Iterable[str]] = None,
) -> CompiledMatcher:
    """Compile ``text`` and check its references.

    ``known_fields`` are qualified names such as ``"r.sub"``; ``functions`` are
    the callable names available at evaluation time. Either check is skipped
    when its argument is None.
    """
    root, fields, called = parse_expression(text)

    if known_fields is not None:
        unknown = sorted(fields - set(known_fields))
        if unknown:
            raise CompileError("Unknown field reference", {"expression": text, "fields": unknown})

    if functions is not None:
        missing = sorted(called - set(functions))
        if missing:
            raise CompileError("Unknown function", {"expression": text, "functions": missing})

    return CompiledMatcher(text=text, root=root, fields=fields, functions=called)


def evaluate(
    compiled: CompiledMatcher,
    values: Mapping[str, Any],
    functions: Mapping[str, Callable[..., Any]],
) -> bool:
    """Evaluate a compiled matcher; the result must be a boolean."""
    result = compiled.root.evaluate(values, functions)
    if not isinstance(result, bool):
        raise EvalError(
            "Matcher did not produce a boolean",
            {"expression": compiled.text, "got": type(result).__name__}
        )
    return result
