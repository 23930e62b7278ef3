"""ReelSense recommendation service package."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["app", "create_app"]


def __getattr__(name: str) -> Any:
    if name in __all__:
        module = import_module("reelsense.main")
        return getattr(module, name)
    raise AttributeError(f"module 'reelsense' has no attribute {name}")
