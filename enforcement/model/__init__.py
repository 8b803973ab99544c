"""
Model package: the structured access-control model.
"""

from .model import Model, REQUIRED_SECTIONS

__all__ = ["Model", "REQUIRED_SECTIONS"]
