"""CLI 子命令"""

from . import copy, delta, release, validate

__all__ = ["copy", "delta", "release", "validate"]
