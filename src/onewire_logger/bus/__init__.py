"""Generic 1-Wire bus layer."""

from .adapter import NO_BRANCH, OneWireAdapter

__all__ = ["NO_BRANCH", "OneWireAdapter"]
