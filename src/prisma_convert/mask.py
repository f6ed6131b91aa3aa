"""Null out pixels flagged by a PRISMA pixel error matrix."""

from __future__ import annotations

import numpy as np

from .errors import ShapeMismatch

NODATA = -9999.0


def error_per_pixel(error_matrix: np.ndarray) -> np.ndarray:
    """Collapse a per-band error matrix to one code per pixel (band maximum)."""

    err = np.asarray(error_matrix)
    if err.ndim == 2:
        return err
    if err.ndim == 3:
        return err.max(axis=2)
    raise ShapeMismatch(
        "mask", {"error_matrix": err.shape}, "expected (rows, columns[, bands])"
    )


def apply_mask(
    cube: np.ndarray,
    error_matrix: np.ndarray,
    threshold: float = 1,
    nodata: float = NODATA,
) -> np.ndarray:
    """Return a copy of ``cube`` with error-flagged pixels set to ``nodata``.

    A pixel is flagged when its error code is strictly greater than
    ``threshold``; every band of that pixel is replaced. Unflagged pixels are
    returned untouched. ``error_matrix`` must live on the same grid as
    ``cube``.
    """

    data = np.asarray(cube)
    if data.ndim not in (2, 3):
        raise ShapeMismatch("mask", {"cube": data.shape}, "expected (rows, columns[, bands])")

    err = np.asarray(error_matrix)
    if err.shape[:2] != data.shape[:2]:
        raise ShapeMismatch(
            "mask",
            {"cube": data.shape, "error_matrix": err.shape},
            "error matrix must be geocoded with the cube's table",
        )
    if err.ndim == 3 and data.ndim == 3 and err.shape[2] != data.shape[2]:
        raise ShapeMismatch(
            "mask", {"cube": data.shape, "error_matrix": err.shape}, "band count"
        )

    flagged = error_per_pixel(err) > threshold

    masked = data.copy()
    masked[flagged] = nodata
    return masked


__all__ = ["NODATA", "apply_mask", "error_per_pixel"]
