"""ZeniX media-browsing core: cached catalog access and recommendations."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["ZenixSession", "create_session"]


def __getattr__(name: str) -> Any:
    if name in __all__:
        module = import_module("zenix.main")
        return getattr(module, name)
    raise AttributeError(f"module 'zenix' has no attribute {name}")
