"""Core utilities shared by every layer.

This package is framework-agnostic. It must NEVER import from ``bot/`` or ``sdk/``.
"""

from core.logger import CourierLogger

__all__ = [
    "CourierLogger",
]
