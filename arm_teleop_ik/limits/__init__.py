"""Joint-limit safety."""

from .safety_margin import SafetyMargin, any_near_limit, limit_attenuation

__all__ = [
    "SafetyMargin",
    "any_near_limit",
    "limit_attenuation",
]
