"""Per-column wavelength/FWHM vectors for smile-aware calibration files.

PRISMA's pushbroom spectrometers shift each band's centre wavelength along
the detector columns ("smile"). The HRC product ships the full calibration as
``(columns, bands)`` matrices; atmospheric correction runs that model smile
need one wavelength/FWHM table per detector column of interest.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple

import numpy as np

from .errors import ShapeMismatch, UnsupportedOperation

SMILE_HEAD_TYPES = frozenset({"HRC"})


def derive_smile_vectors(
    cw_matrix: Optional[np.ndarray],
    fwhm_matrix: Optional[np.ndarray],
    columns: Optional[Iterable[int]] = None,
    head_type: str = "HRC",
) -> Tuple[Dict[int, np.ndarray], Dict[int, np.ndarray]]:
    """Extract the calibration vector of each requested detector column.

    Returns two dicts keyed by column index: centre wavelengths and FWHMs.
    Values are exact copies of the matrix rows; nothing is interpolated.
    With no columns requested both dicts are empty.
    """

    head = str(head_type).upper()
    if head not in SMILE_HEAD_TYPES:
        raise UnsupportedOperation(
            f"Per-column smile calibration needs an HRC product; head type is {head!r}."
        )
    if cw_matrix is None or fwhm_matrix is None:
        raise UnsupportedOperation(
            "Per-column smile calibration requested but the product carries no "
            "centre-wavelength/FWHM matrices."
        )

    cw = np.asarray(cw_matrix)
    fwhm = np.asarray(fwhm_matrix)
    if cw.ndim != 2 or cw.shape != fwhm.shape:
        raise ShapeMismatch(
            "smile",
            {"cw_matrix": cw.shape, "fwhm_matrix": fwhm.shape},
            "matrices must both be (columns, bands)",
        )

    wavelengths: Dict[int, np.ndarray] = {}
    widths: Dict[int, np.ndarray] = {}
    n_columns = cw.shape[0]
    for column in columns or ():
        col = int(column)
        if not 0 <= col < n_columns:
            raise ValueError(
                f"Smile column {col} outside detector range [0, {n_columns - 1}]."
            )
        wavelengths[col] = cw[col, :].copy()
        widths[col] = fwhm[col, :].copy()
    return wavelengths, widths


__all__ = ["SMILE_HEAD_TYPES", "derive_smile_vectors"]
