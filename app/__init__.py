"""Top Picks service package.

``app.app`` and ``app.create_app`` resolve lazily so that importing a
submodule such as ``app.models`` does not build the FastAPI application.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["app", "create_app"]


def __getattr__(name: str) -> Any:
    if name not in __all__:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module("app.main"), name)
