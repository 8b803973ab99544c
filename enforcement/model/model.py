"""
In-memory model representation.

A model is loaded from a mapping of section keys to definitions::

    Model.load({
        "r": "sub, obj, act",
        "p": "sub, obj, act",
        "g": "_, _",
        "e": "some(where (p.eft == allow))",
        "m": "g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act",
    })

The textual model-file format is owned by the embedding application; this
module only validates and holds the structured form.
"""

import keyword
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from shared.errors import ModelError
from shared.logging import get_logger
from ..effect import EffectRule, resolve_effect
from ..expression import parse_expression


logger = get_logger("enforcement.model")

_SECTION_KEY = re.compile(r"^([rpgem])(\d*)$")

REQUIRED_SECTIONS = ("r", "p", "e", "m")
SECTION_NAMES = {
    "r": "request_definition",
    "p": "policy_definition",
    "g": "role_definition",
    "e": "policy_effect",
    "m": "matchers",
}

Definition = Mapping[str, Union[str, Sequence[str]]]


def _split_tokens(key: str, value: Union[str, Sequence[str]]) -> List[str]:
    if isinstance(value, str):
        tokens = [token.strip() for token in value.split(",")]
    elif isinstance(value, Sequence):
        tokens = [str(token).strip() for token in value]
    else:
        raise ModelError("Section definition must be a string or a sequence", {"section": key})

    if not tokens or any(not token for token in tokens):
        raise ModelError("Empty field in section definition", {"section": key, "definition": value})
    return tokens


def _parse_shape(key: str, value: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    tokens = _split_tokens(key, value)
    seen = set()
    for token in tokens:
        if not token.isidentifier() or keyword.iskeyword(token):
            raise ModelError("Invalid field name", {"section": key, "field": token})
        if token in seen:
            raise ModelError("Duplicate field name", {"section": key, "field": token})
        seen.add(token)
    return tuple(tokens)


def _parse_role(key: str, value: Union[str, Sequence[str]]) -> int:
    tokens = _split_tokens(key, value)
    if any(token != "_" for token in tokens):
        raise ModelError("Role definitions only accept '_' placeholders", {"section": key})
    if len(tokens) not in (2, 3):
        raise ModelError(
            "Role definitions take two placeholders, or three with a domain",
            {"section": key, "placeholders": len(tokens)}
        )
    return len(tokens)


def paired_fields(matcher_key: str, requests: Mapping[str, Sequence[str]],
                  policies: Mapping[str, Sequence[str]]) -> FrozenSet[str]:
    """Qualified fields a matcher may reference: ``m2`` sees only ``r2`` and ``p2``."""
    suffix = _SECTION_KEY.match(matcher_key).group(2)
    r_key, p_key = f"r{suffix}", f"p{suffix}"
    missing = [key for key, shapes in ((r_key, requests), (p_key, policies)) if key not in shapes]
    if missing:
        raise ModelError(
            "Matcher has no paired request or policy definition",
            {"section": matcher_key, "missing": missing}
        )
    return frozenset(
        [f"{r_key}.{name}" for name in requests[r_key]] + [f"{p_key}.{name}" for name in policies[p_key]]
    )


@dataclass(frozen=True)
class Model:
    """Validated, immutable model. Replace it wholesale, never in place."""

    requests: Mapping[str, Tuple[str, ...]]
    policies: Mapping[str, Tuple[str, ...]]
    roles: Mapping[str, int]
    effects: Mapping[str, str]
    matchers: Mapping[str, str]
    effect_rules: Mapping[str, EffectRule] = field(default_factory=dict)

    @classmethod
    def load(cls, definition: Definition) -> "Model":
        """Validate ``definition`` and build a Model, failing fast with ModelError."""
        if not isinstance(definition, Mapping):
            raise ModelError("Model definition must be a mapping")

        sections: Dict[str, Dict[str, Union[str, Sequence[str]]]] = {sec: {} for sec in SECTION_NAMES}
        for key, value in definition.items():
            match = _SECTION_KEY.match(str(key))
            if match is None:
                raise ModelError("Unknown model section", {"section": key})
            sections[match.group(1)][key] = value

        for sec in REQUIRED_SECTIONS:
            if sec not in sections[sec]:
                raise ModelError(
                    f"Missing required section '{sec}'",
                    {"section": sec, "name": SECTION_NAMES[sec]}
                )

        requests = {key: _parse_shape(key, value) for key, value in sections["r"].items()}
        policies = {key: _parse_shape(key, value) for key, value in sections["p"].items()}
        roles = {key: _parse_role(key, value) for key, value in sections["g"].items()}

        effects: Dict[str, str] = {}
        effect_rules: Dict[str, EffectRule] = {}
        for key, value in sections["e"].items():
            if not isinstance(value, str):
                raise ModelError("Effect must be an expression string", {"section": key})
            effects[key] = value.strip()
            effect_rules[key] = resolve_effect(value)

        matchers: Dict[str, str] = {}
        for key, value in sections["m"].items():
            if not isinstance(value, str) or not value.strip():
                raise ModelError("Empty matcher", {"section": key})
            known_fields = paired_fields(key, requests, policies)
            _, fields, _ = parse_expression(value)
            unknown = sorted(fields - known_fields)
            if unknown:
                raise ModelError("Matcher references unknown fields", {"section": key, "fields": unknown})
            matchers[key] = value.strip()

        model = cls(
            requests=MappingProxyType(requests),
            policies=MappingProxyType(policies),
            roles=MappingProxyType(roles),
            effects=MappingProxyType(effects),
            matchers=MappingProxyType(matchers),
            effect_rules=MappingProxyType(effect_rules),
        )
        logger.debug(
            "Model loaded",
            requests=list(requests),
            policies=list(policies),
            roles=list(roles),
            matchers=list(matchers)
        )
        return model

    def fields(self, key: str) -> Tuple[str, ...]:
        """Field names of a request or policy shape."""
        if key in self.requests:
            return self.requests[key]
        if key in self.policies:
            return self.policies[key]
        raise ModelError("Unknown shape", {"section": key})

    def field_index(self, ptype: str, name: str) -> Optional[int]:
        fields = self.fields(ptype)
        return fields.index(name) if name in fields else None

    def matcher_fields(self, matcher_key: str) -> FrozenSet[str]:
        return paired_fields(matcher_key, self.requests, self.policies)

    def role_arity(self, gtype: str) -> int:
        if gtype not in self.roles:
            raise ModelError("Unknown role definition", {"section": gtype})
        return self.roles[gtype]

    def has_domain(self, gtype: str) -> bool:
        return self.role_arity(gtype) == 3

    def to_dict(self) -> Dict[str, str]:
        """Canonical definition that loads back into an equal model."""
        out: Dict[str, str] = {}
        for key, fields in self.requests.items():
            out[key] = ", ".join(fields)
        for key, fields in self.policies.items():
            out[key] = ", ".join(fields)
        for key, arity in self.roles.items():
            out[key] = ", ".join(["_"] * arity)
        out.update(self.effects)
        out.update(self.matchers)
        return out
