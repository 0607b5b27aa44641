"""Lie group utilities."""

from .so3 import SO3

__all__ = [
    "SO3",
]
