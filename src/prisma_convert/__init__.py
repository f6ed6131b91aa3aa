"""PRISMA hyperspectral cube assembly and georeferencing."""
from __future__ import annotations

from importlib import import_module

from .bands import select_bands
from .errors import (
    GeometryMismatch,
    PrismaConvertError,
    ProductNotAvailable,
    ShapeMismatch,
    UnsupportedOperation,
)
from .merge import Priority, merge_cubes

__version__ = "0.3.0"

__all__ = [
    "__version__",
    "GeometryMismatch",
    "Priority",
    "PrismaConvertError",
    "ProductNotAvailable",
    "ShapeMismatch",
    "UnsupportedOperation",
    "merge_cubes",
    "select_bands",
]

__all__ = sorted(set(__all__ + ["ConvertConfig", "convert_prisma", "load_config"]))


def __getattr__(name: str):  # pragma: no cover - thin lazy import helper
    if name in {"ConvertConfig", "load_config"}:
        module = import_module("prisma_convert.config")
        value = getattr(module, name)
        globals()[name] = value
        return value
    if name == "convert_prisma":
        from .convert import convert_prisma as _convert_prisma

        globals()[name] = _convert_prisma
        return _convert_prisma
    raise AttributeError(f"module 'prisma_convert' has no attribute '{name}'")
