"""Exception types raised by the PRISMA conversion engine."""
from __future__ import annotations

from typing import Sequence


class PrismaConvertError(RuntimeError):
    """Base class for conversion failures."""


class GeometryMismatch(PrismaConvertError):
    """L1 and L2 geolocation sources do not describe the same acquisition."""


class ShapeMismatch(PrismaConvertError, ValueError):
    """Arrays that must share a shape do not."""

    def __init__(self, stage: str, shapes: dict[str, Sequence[int]] | None = None, detail: str = "") -> None:
        self.stage = stage
        self.shapes = {key: tuple(value) for key, value in (shapes or {}).items()}
        described = ", ".join(f"{key}={value}" for key, value in self.shapes.items())
        message = f"[{stage}] shape mismatch"
        if described:
            message += f": {described}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UnsupportedOperation(PrismaConvertError):
    """Operation requested on a product configuration that cannot provide it."""


class ProductNotAvailable(PrismaConvertError):
    """Requested product has no backing dataset at this processing level."""


class PreflightError(PrismaConvertError):
    """Input file missing or output folder unusable."""


__all__ = [
    "PrismaConvertError",
    "GeometryMismatch",
    "ShapeMismatch",
    "UnsupportedOperation",
    "ProductNotAvailable",
    "PreflightError",
]
