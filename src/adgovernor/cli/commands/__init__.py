"""CLI command modules."""

from . import api, limits

__all__ = [
    "api",
    "limits",
]
