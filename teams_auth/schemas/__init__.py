"""Public schema exports."""

from .auth import LoginRequest

__all__ = ["LoginRequest"]
