"""
Effect combination for per-rule matcher outcomes.
"""

import re
from enum import Enum
from typing import Iterable, List

from shared.errors import ModelError


class EffectKind(str, Enum):
    """Outcome of a single policy row."""
    ALLOW = "allow"
    DENY = "deny"
    INDETERMINATE = "indeterminate"


class EffectRule(str, Enum):
    """Supported combination semantics."""
    ALLOW_OVERRIDE = "some(where (p.eft == allow))"
    DENY_OVERRIDE = "!some(where (p.eft == deny))"
    ALLOW_AND_DENY = "some(where (p.eft == allow)) && !some(where (p.eft == deny))"
    PRIORITY = "priority(p.eft) || deny"


_POLICY_TOKEN = re.compile(r"\bp\d+\.eft\b")
_WHITESPACE = re.compile(r"\s+")

_CANONICAL = {
    _WHITESPACE.sub("", rule.value): rule for rule in EffectRule
}


def resolve_effect(expression: str) -> EffectRule:
    """Map an effect expression to its combination rule.

    Whitespace and the policy token suffix (``p2.eft``) are ignored.
    """
    key = _WHITESPACE.sub("", _POLICY_TOKEN.sub("p.eft", expression or ""))
    rule = _CANONICAL.get(key)
    if rule is None:
        raise ModelError("Unsupported effect expression", {"effect": expression})
    return rule


class EffectorStream:
    """Incremental fold over rule outcomes, in store order."""

    def __init__(self, rule: EffectRule, capacity: int):
        self.rule = rule
        self.capacity = capacity
        self.done = capacity == 0
        self._result = rule == EffectRule.DENY_OVERRIDE
        self._index = 0
        self._explain: List[int] = []

    def push_effect(self, effect: EffectKind) -> bool:
        """Push the next outcome; returns True once the result is final."""
        if self.done:
            return True

        if self.rule == EffectRule.ALLOW_OVERRIDE:
            if effect == EffectKind.ALLOW:
                self._result = True
                self._explain = [self._index]
                self.done = True

        elif self.rule == EffectRule.DENY_OVERRIDE:
            if effect == EffectKind.DENY:
                self._result = False
                self._explain = [self._index]
                self.done = True

        elif self.rule == EffectRule.ALLOW_AND_DENY:
            if effect == EffectKind.ALLOW:
                if not self._result:
                    self._explain = [self._index]
                self._result = True
            elif effect == EffectKind.DENY:
                self._result = False
                self._explain = [self._index]
                self.done = True

        elif self.rule == EffectRule.PRIORITY:
            if effect != EffectKind.INDETERMINATE:
                self._result = effect == EffectKind.ALLOW
                self._explain = [self._index]
                self.done = True

        self._index += 1
        if self._index >= self.capacity:
            self.done = True
        return self.done

    def next(self) -> bool:
        """Final decision for the outcomes pushed so far."""
        return self._result

    def explain(self) -> List[int]:
        """Indices of the rows that decided the result."""
        return list(self._explain)


class Effector:
    """Creates effect streams for a model's effect expression."""

    def new_stream(self, expression: str, capacity: int) -> EffectorStream:
        return EffectorStream(resolve_effect(expression), capacity)

    def combine(self, expression: str, outcomes: Iterable[EffectKind]) -> bool:
        """Fold a complete sequence of outcomes into one decision."""
        outcomes = list(outcomes)
        stream = self.new_stream(expression, len(outcomes))
        for outcome in outcomes:
            if stream.push_effect(outcome):
                break
        return stream.next()
