"""Nearest-wavelength band subsetting."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def nearest_band(target_nm: float, wavelengths_nm: Sequence[float] | np.ndarray) -> int:
    """Return the 0-based index of the band closest to ``target_nm``.

    ``numpy.argmin`` returns the first minimum, so equidistant candidates
    resolve to the lowest index.
    """

    wl = np.asarray(wavelengths_nm, dtype=np.float64).reshape(-1)
    if wl.size == 0:
        raise ValueError("Cannot select a band from an empty wavelength array.")
    return int(np.argmin(np.abs(wl - float(target_nm))))


def select_bands(
    requested_wavelengths: Optional[Sequence[float] | np.ndarray],
    available_wavelengths: Sequence[float] | np.ndarray,
) -> np.ndarray:
    """Map requested wavelengths to source band indices.

    Parameters
    ----------
    requested_wavelengths
        Target wavelengths in nanometres. ``None`` or an empty sequence
        selects every available band.
    available_wavelengths
        Wavelengths of the source cube, in the cube's band order.

    Returns
    -------
    np.ndarray
        Sorted ``int64`` indices into ``available_wavelengths``. The result
        follows the source spectral order rather than the request order, and
        requests that resolve to the same band yield it once.
    """

    available = np.asarray(available_wavelengths, dtype=np.float64).reshape(-1)

    if requested_wavelengths is None:
        return np.arange(available.size, dtype=np.int64)
    requested = np.asarray(requested_wavelengths, dtype=np.float64).reshape(-1)
    if requested.size == 0:
        return np.arange(available.size, dtype=np.int64)

    if available.size == 0:
        raise ValueError(
            f"Cannot select {requested.size} wavelengths from an empty wavelength array."
        )

    distance = np.abs(available[np.newaxis, :] - requested[:, np.newaxis])
    picked = np.argmin(distance, axis=1)
    indices = np.unique(picked).astype(np.int64)

    if indices.size < requested.size:
        logger.debug(
            "%d requested wavelengths resolved to %d distinct bands",
            requested.size,
            indices.size,
        )
    return indices


__all__ = ["nearest_band", "select_bands"]
