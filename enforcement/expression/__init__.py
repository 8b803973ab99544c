"""
Expression package.

Compiles matcher expressions into a reusable tagged tree and evaluates it
against explicit bindings.

Modules of interest:
- tree: Node types (literal, field reference, call, boolean, comparison).
- compiler: Parsing, reference checks and the evaluate entry point.
- builtins: The built-in predicate registry (keyMatch, regexMatch, ipMatch, ...).
"""

from .builtins import BUILTIN_FUNCTIONS, get_builtin_functions, glob_match
from .compiler import CompiledMatcher, compile_expression, evaluate, parse_expression

__all__ = [
    "BUILTIN_FUNCTIONS",
    "CompiledMatcher",
    "compile_expression",
    "evaluate",
    "get_builtin_functions",
    "glob_match",
    "parse_expression",
]
