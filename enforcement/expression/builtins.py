"""
Built-in matcher predicates.

Every predicate takes two strings and returns a bool. Malformed regex or IP
literals raise EvalError so the enforcer can fail that single rule.
"""

import fnmatch
import ipaddress
import re
from functools import lru_cache
from typing import Callable, Dict

from shared.errors import EvalError


_KEY_MATCH2_PARAM = re.compile(r":[^/]+")
_KEY_MATCH3_PARAM = re.compile(r"\{[^/]+?\}")


@lru_cache(maxsize=1024)
def _compile_regex(pattern: str) -> "re.Pattern[str]":
    try:
        return re.compile(pattern)
    except re.error as e:
        raise EvalError("Malformed regular expression", {"pattern": pattern, "error": str(e)})


def _require_strings(name: str, *args) -> None:
    for arg in args:
        if not isinstance(arg, str):
            raise EvalError(
                f"{name} expects string arguments",
                {"function": name, "argument_type": type(arg).__name__}
            )


def key_match(key1: str, key2: str) -> bool:
    """Match ``key1`` against ``key2`` where ``key2`` may end in ``*``.

    ``/foo/bar`` matches ``/foo/*``.
    """
    _require_strings("keyMatch", key1, key2)
    i = key2.find("*")
    if i == -1:
        return key1 == key2
    if len(key1) > i:
        return key1[:i] == key2[:i]
    return key1 == key2[:i]


def key_match2(key1: str, key2: str) -> bool:
    """``/resource1`` matches ``/:resource``."""
    _require_strings("keyMatch2", key1, key2)
    pattern = key2.replace("/*", "/.*")
    pattern = _KEY_MATCH2_PARAM.sub("[^/]+", pattern)
    return _compile_regex(f"^{pattern}$").match(key1) is not None


def key_match3(key1: str, key2: str) -> bool:
    """``/resource1`` matches ``/{resource}``."""
    _require_strings("keyMatch3", key1, key2)
    pattern = key2.replace("/*", "/.*")
    pattern = _KEY_MATCH3_PARAM.sub("[^/]+", pattern)
    return _compile_regex(f"^{pattern}$").match(key1) is not None


def regex_match(key1: str, key2: str) -> bool:
    """Search ``key1`` for the regular expression ``key2``."""
    _require_strings("regexMatch", key1, key2)
    return _compile_regex(key2).search(key1) is not None


def ip_match(ip1: str, ip2: str) -> bool:
    """``192.168.2.123`` matches ``192.168.2.0/24`` and ``192.168.2.123``."""
    _require_strings("ipMatch", ip1, ip2)
    try:
        address = ipaddress.ip_address(ip1)
    except ValueError:
        raise EvalError("Malformed IP address", {"value": ip1})
    try:
        network = ipaddress.ip_network(ip2, strict=False)
    except ValueError:
        raise EvalError("Malformed IP address or CIDR", {"value": ip2})
    return address in network


def glob_match(key1: str, key2: str) -> bool:
    """Shell-style glob: ``/api/users`` matches ``/api/*``."""
    _require_strings("globMatch", key1, key2)
    return fnmatch.fnmatchcase(key1, key2)


BUILTIN_FUNCTIONS: Dict[str, Callable[..., bool]] = {
    "keyMatch": key_match,
    "keyMatch2": key_match2,
    "keyMatch3": key_match3,
    "regexMatch": regex_match,
    "ipMatch": ip_match,
    "globMatch": glob_match,
}


def get_builtin_functions() -> Dict[str, Callable[..., bool]]:
    """Return a fresh copy of the built-in predicate registry."""
    return dict(BUILTIN_FUNCTIONS)
