"""Spectral merge of the VNIR and SWIR cubes into the FULL product."""

from __future__ import annotations

import logging
from enum import Enum
from typing import NamedTuple, Optional, Tuple

import numpy as np

from .errors import ShapeMismatch

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    """Spectrometer whose bands win inside the spectral overlap."""

    VNIR = "VNIR"
    SWIR = "SWIR"

    @classmethod
    def parse(cls, value: "Priority | str") -> "Priority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ValueError(
                f"join priority must be 'VNIR' or 'SWIR', got {value!r}"
            ) from exc


class OverlapSelection(NamedTuple):
    """Which bands of each side survive the merge, and in what order."""

    vnir_index: np.ndarray
    swir_index: np.ndarray
    order: np.ndarray
    overlap: Optional[Tuple[float, float]]


def overlap_interval(
    vnir_wl: np.ndarray, swir_wl: np.ndarray
) -> Optional[Tuple[float, float]]:
    """Return the closed wavelength interval covered by both spectrometers."""

    if vnir_wl.size == 0 or swir_wl.size == 0:
        return None
    low = max(float(vnir_wl.min()), float(swir_wl.min()))
    high = min(float(vnir_wl.max()), float(swir_wl.max()))
    if low > high:
        return None
    return low, high


def _as_strictly_ascending(wl, label: str) -> np.ndarray:
    arr = np.asarray(wl, dtype=np.float64).reshape(-1)
    if arr.size > 1 and not np.all(np.diff(arr) > 0):
        raise ValueError(f"{label} wavelengths must be strictly ascending: {arr.tolist()}")
    return arr


def overlap_selection(vnir_wl, swir_wl, priority: Priority | str) -> OverlapSelection:
    """Resolve the VNIR/SWIR overlap.

    Within the overlap interval (closed on both ends) only the bands of the
    priority spectrometer are kept; outside it every band survives.
    ``order`` sorts the concatenation ``[vnir kept, swir kept]`` by wavelength.
    """

    priority = Priority.parse(priority)
    vnir = _as_strictly_ascending(vnir_wl, "VNIR")
    swir = _as_strictly_ascending(swir_wl, "SWIR")

    interval = overlap_interval(vnir, swir)
    keep_vnir = np.ones(vnir.size, dtype=bool)
    keep_swir = np.ones(swir.size, dtype=bool)
    if interval is not None:
        low, high = interval
        if priority is Priority.VNIR:
            keep_swir = ~((swir >= low) & (swir <= high))
        else:
            keep_vnir = ~((vnir >= low) & (vnir <= high))

    vnir_index = np.flatnonzero(keep_vnir).astype(np.int64)
    swir_index = np.flatnonzero(keep_swir).astype(np.int64)

    merged_wl = np.concatenate([vnir[vnir_index], swir[swir_index]])
    order = np.argsort(merged_wl, kind="stable")
    sorted_wl = merged_wl[order]
    if sorted_wl.size > 1 and not np.all(np.diff(sorted_wl) > 0):
        raise ValueError(
            "Merged wavelengths are not strictly ascending; VNIR and SWIR share a "
            "wavelength outside their overlap interval."
        )

    return OverlapSelection(vnir_index, swir_index, order, interval)


def merge_cubes(
    vnir_cube: np.ndarray,
    vnir_wl,
    swir_cube: np.ndarray,
    swir_wl,
    priority: Priority | str = Priority.VNIR,
    *,
    vnir_fwhm=None,
    swir_fwhm=None,
) -> Tuple[np.ndarray, np.ndarray, Optional[np.ndarray]]:
    """Build the FULL cube from VNIR and SWIR cubes.

    Both cubes are ``(rows, columns, bands)`` and may have been subset
    beforehand; a side with no bands simply passes the other one through.
    Returns ``(merged_cube, merged_wavelengths, merged_fwhm)``; the FWHM is
    ``None`` unless both sides provide one.
    """

    vnir_cube = np.asarray(vnir_cube)
    swir_cube = np.asarray(swir_cube)
    if vnir_cube.ndim != 3 or swir_cube.ndim != 3:
        raise ShapeMismatch(
            "merge",
            {"vnir_cube": vnir_cube.shape, "swir_cube": swir_cube.shape},
            "cubes must be (rows, columns, bands)",
        )
    if vnir_cube.shape[:2] != swir_cube.shape[:2]:
        raise ShapeMismatch(
            "merge",
            {"vnir_cube": vnir_cube.shape, "swir_cube": swir_cube.shape},
            "spatial dimensions differ",
        )

    vnir = np.asarray(vnir_wl, dtype=np.float64).reshape(-1)
    swir = np.asarray(swir_wl, dtype=np.float64).reshape(-1)
    if vnir.size != vnir_cube.shape[2]:
        raise ShapeMismatch(
            "merge", {"vnir_cube": vnir_cube.shape, "vnir_wl": vnir.shape}, "band count"
        )
    if swir.size != swir_cube.shape[2]:
        raise ShapeMismatch(
            "merge", {"swir_cube": swir_cube.shape, "swir_wl": swir.shape}, "band count"
        )

    selection = overlap_selection(vnir, swir, priority)
    if selection.overlap is None:
        logger.debug("No VNIR/SWIR spectral overlap; concatenating all bands")
    else:
        logger.debug(
            "VNIR/SWIR overlap [%.2f, %.2f] nm resolved with %s priority",
            selection.overlap[0],
            selection.overlap[1],
            Priority.parse(priority).value,
        )

    dtype = np.result_type(vnir_cube.dtype, swir_cube.dtype)
    merged = np.concatenate(
        [
            vnir_cube[:, :, selection.vnir_index].astype(dtype, copy=False),
            swir_cube[:, :, selection.swir_index].astype(dtype, copy=False),
        ],
        axis=2,
    )[:, :, selection.order]
    merged_wl = np.concatenate([vnir[selection.vnir_index], swir[selection.swir_index]])[
        selection.order
    ]

    merged_fwhm = None
    if vnir_fwhm is not None and swir_fwhm is not None:
        v_fwhm = np.asarray(vnir_fwhm, dtype=np.float64).reshape(-1)
        s_fwhm = np.asarray(swir_fwhm, dtype=np.float64).reshape(-1)
        if v_fwhm.shape != vnir.shape or s_fwhm.shape != swir.shape:
            raise ShapeMismatch(
                "merge",
                {
                    "vnir_wl": vnir.shape,
                    "vnir_fwhm": v_fwhm.shape,
                    "swir_wl": swir.shape,
                    "swir_fwhm": s_fwhm.shape,
                },
                "FWHM length",
            )
        merged_fwhm = np.concatenate(
            [v_fwhm[selection.vnir_index], s_fwhm[selection.swir_index]]
        )[selection.order]

    return np.ascontiguousarray(merged), merged_wl, merged_fwhm


def merge_vectors(vnir_values, swir_values, selection: OverlapSelection) -> np.ndarray:
    """Arrange per-band VNIR/SWIR vectors in the merged band layout."""

    v = np.asarray(vnir_values, dtype=np.float64).reshape(-1)
    s = np.asarray(swir_values, dtype=np.float64).reshape(-1)
    return np.concatenate([v[selection.vnir_index], s[selection.swir_index]])[selection.order]


__all__ = [
    "Priority",
    "OverlapSelection",
    "overlap_interval",
    "overlap_selection",
    "merge_cubes",
    "merge_vectors",
]
