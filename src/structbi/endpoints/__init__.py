"""Static endpoint declarations, registered once at startup."""

from __future__ import annotations

from structbi.endpoints import columns, data, forms
from structbi.function import FunctionRegistry


def build_registry() -> FunctionRegistry:
    registry = FunctionRegistry()
    for module in (forms, columns, data):
        for function in module.declare():
            registry.add(function)
    return registry


__all__ = ["build_registry"]
