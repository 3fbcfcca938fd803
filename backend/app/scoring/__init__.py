"""Scoring rules for volleyball matches."""

from . import volleyball

__all__ = ["volleyball"]
