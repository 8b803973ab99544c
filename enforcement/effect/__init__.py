"""
Effect package: folds per-row outcomes into one decision.
"""

from .effector import EffectKind, EffectRule, Effector, EffectorStream, resolve_effect

__all__ = ["EffectKind", "EffectRule", "Effector", "EffectorStream", "resolve_effect"]
