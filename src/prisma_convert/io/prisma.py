"""Readers for PRISMA L1 / L2 HDF-EOS5 products.

All readers take an :class:`~prisma_convert.io.source.ArraySource` and a
:class:`ProductLayout` describing the processing level and spectrometer head,
so they work the same on an open HDF5 file and on an in-memory mapping.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from ..errors import PrismaConvertError, ProductNotAvailable, ShapeMismatch
from .source import ArraySource

logger = logging.getLogger(__name__)

__all__ = [
    "LEVELS",
    "HEAD_TYPES",
    "MASK_DATASETS",
    "ANGLE_DATASETS",
    "ProductLayout",
    "SwathCube",
    "detect_level",
    "read_swath",
    "read_pan",
    "read_geolocation",
    "read_error_matrix",
    "read_mask",
    "read_angles",
    "read_line_times",
    "read_sun_angles",
    "read_smile_matrices",
    "read_projection",
]

LEVELS = ("L1", "L2B", "L2C", "L2D")
HEAD_TYPES = ("HCO", "HRC")
SPECTROMETERS = ("VNIR", "SWIR")

MASK_DATASETS = {
    "CLOUD": "Cloud_Mask",
    "LC": "LandCover_Mask",
    "GLINT": "SunGlint_Mask",
}
ANGLE_DATASETS = ("Observing_Angle", "Rel_Azimuth_Angle", "Solar_Zenith_Angle")

_FILENAME_LEVEL_RE = re.compile(r"PRS_(L1|L2[BCD])_", re.IGNORECASE)
_L2_DN_RANGE = 65535.0


@dataclass(frozen=True)
class ProductLayout:
    """Processing level and head type of one PRISMA file."""

    level: str
    head: str = "HCO"

    @property
    def is_l1(self) -> bool:
        return self.level == "L1"

    @property
    def is_projected(self) -> bool:
        return self.level == "L2D"

    def swath(self, head: Optional[str] = None) -> str:
        return f"HDFEOS/SWATHS/PRS_{self.level}_{head or self.head}"

    def data_field(self, name: str, head: Optional[str] = None) -> str:
        return f"{self.swath(head)}/Data Fields/{name}"

    def geolocation_field(self, name: str, head: Optional[str] = None) -> str:
        return f"{self.swath(head)}/Geolocation Fields/{name}"

    def geometric_field(self, name: str) -> str:
        return f"{self.swath()}/Geometric Fields/{name}"


@dataclass(frozen=True)
class SwathCube:
    """One spectrometer cube in sensor geometry, bands sorted by wavelength.

    ``data`` is ``(rows, columns, bands)`` float32 for VNIR/SWIR and
    ``(rows, columns)`` for PAN. ``kept_indices`` are the band positions in
    the file of every band kept.
    """

    name: str
    data: np.ndarray
    wavelengths: np.ndarray
    fwhm: np.ndarray
    kept_indices: np.ndarray

    def __post_init__(self) -> None:
        for field_name in ("data", "wavelengths", "fwhm", "kept_indices"):
            array = np.asarray(getattr(self, field_name)).view()
            array.flags.writeable = False
            object.__setattr__(self, field_name, array)

    @property
    def n_bands(self) -> int:
        return int(self.data.shape[2]) if self.data.ndim == 3 else 1

    @property
    def spatial_shape(self) -> Tuple[int, int]:
        return int(self.data.shape[0]), int(self.data.shape[1])

    def subset(self, indices: np.ndarray) -> "SwathCube":
        """Return a cube restricted to ``indices`` (positions in this cube)."""

        idx = np.asarray(indices, dtype=np.int64)
        return SwathCube(
            name=self.name,
            data=np.ascontiguousarray(self.data[:, :, idx]),
            wavelengths=self.wavelengths[idx],
            fwhm=self.fwhm[idx],
            kept_indices=self.kept_indices[idx],
        )


def detect_level(source: ArraySource, filename: Optional[str] = None) -> str:
    """Return ``L1``, ``L2B``, ``L2C`` or ``L2D`` for ``source``."""

    raw = source.attr("Processing_Level", None)
    if raw is not None:
        level = str(raw).strip().upper()
        if not level.startswith("L"):
            level = f"L{level}"
        if level in LEVELS:
            return level
        logger.warning("Unrecognised Processing_Level attribute %r", raw)

    match = _FILENAME_LEVEL_RE.search(filename or getattr(source, "name", ""))
    if match:
        return match.group(1).upper()

    raise PrismaConvertError(
        f"Cannot determine the processing level of {getattr(source, 'name', 'input')}: "
        "no Processing_Level attribute and no PRS_L<level>_ token in the file name."
    )


def _first_existing(source: ArraySource, candidates: Iterable[str]) -> Optional[str]:
    for candidate in candidates:
        if source.has(candidate):
            return candidate
    return None


def _attr_vector(source: ArraySource, name: str) -> np.ndarray:
    try:
        value = source.attr(name)
    except KeyError as exc:
        raise PrismaConvertError(f"Band metadata attribute '{name}' missing.") from exc
    return np.atleast_1d(np.asarray(value, dtype=np.float64))


def _attr_float(source: ArraySource, name: str) -> float:
    try:
        return float(source.attr(name))
    except KeyError as exc:
        raise PrismaConvertError(f"Scaling attribute '{name}' missing.") from exc


def _scale(source: ArraySource, layout: ProductLayout, raw: np.ndarray, tag: str) -> np.ndarray:
    """Convert stored DNs to physical units (radiance or reflectance)."""

    dn = raw.astype(np.float32)
    if layout.is_l1:
        factor = _attr_float(source, f"ScaleFactor_{tag}")
        offset = _attr_float(source, f"Offset_{tag}")
        return dn / np.float32(factor) - np.float32(offset)
    low = _attr_float(source, f"L2Scale{tag}Min")
    high = _attr_float(source, f"L2Scale{tag}Max")
    return np.float32(low) + dn * np.float32((high - low) / _L2_DN_RANGE)


def _band_last(raw: np.ndarray, stage: str, path: str) -> np.ndarray:
    if raw.ndim != 3:
        raise ShapeMismatch(stage, {path: raw.shape}, "expected (rows, bands, columns)")
    return np.moveaxis(raw, 1, 2)


def read_swath(source: ArraySource, layout: ProductLayout, spectrometer: str) -> SwathCube:
    """Read, band-filter, sort and scale the VNIR or SWIR cube."""

    spectrometer = spectrometer.upper()
    if spectrometer not in SPECTROMETERS:
        raise ValueError(f"Unknown spectrometer {spectrometer!r}")
    tag = spectrometer.capitalize()

    path = layout.data_field(f"{spectrometer}_Cube")
    if not source.has(path):
        raise ProductNotAvailable(
            f"{spectrometer} cube not found at '{path}' ({layout.level} {layout.head})."
        )
    raw = _band_last(source.array(path), spectrometer, path)

    cw = _attr_vector(source, f"List_Cw_{tag}")
    fwhm = _attr_vector(source, f"List_Fwhm_{tag}")
    flags_raw = source.attr(f"List_Cw_{tag}_Flags", None)
    flags = np.ones(cw.size, dtype=np.int64) if flags_raw is None else np.atleast_1d(
        np.asarray(flags_raw, dtype=np.int64)
    )
    if not (cw.size == fwhm.size == flags.size == raw.shape[2]):
        raise ShapeMismatch(
            spectrometer,
            {
                "cube": raw.shape,
                f"List_Cw_{tag}": cw.shape,
                f"List_Fwhm_{tag}": fwhm.shape,
                f"List_Cw_{tag}_Flags": flags.shape,
            },
            "band metadata does not match the cube",
        )

    kept = np.flatnonzero(flags == 1)
    order = kept[np.argsort(cw[kept], kind="stable")].astype(np.int64)
    data = _scale(source, layout, raw[:, :, order], tag)

    logger.info(
        "📥 %s: %d of %d bands kept (%.1f-%.1f nm), %dx%d pixels",
        spectrometer,
        order.size,
        cw.size,
        float(cw[order].min()) if order.size else float("nan"),
        float(cw[order].max()) if order.size else float("nan"),
        data.shape[0],
        data.shape[1],
    )
    return SwathCube(
        name=spectrometer,
        data=np.ascontiguousarray(data),
        wavelengths=cw[order],
        fwhm=fwhm[order],
        kept_indices=order,
    )


def read_pan(source: ArraySource, layout: ProductLayout) -> SwathCube:
    """Read and scale the panchromatic band from the PCO swath."""

    path = _first_existing(
        source,
        (layout.data_field("Cube", head="PCO"), layout.data_field("PAN_Cube", head="PCO")),
    )
    if path is None:
        raise ProductNotAvailable(f"No PAN cube in the PCO swath of {layout.level}.")
    raw = source.array(path)
    if raw.ndim != 2:
        raise ShapeMismatch("PAN", {path: raw.shape}, "expected (rows, columns)")
    data = _scale(source, layout, raw, "Pan")
    return SwathCube(
        name="PAN",
        data=np.ascontiguousarray(data),
        wavelengths=np.empty(0, dtype=np.float64),
        fwhm=np.empty(0, dtype=np.float64),
        kept_indices=np.empty(0, dtype=np.int64),
    )


def read_geolocation(
    source: ArraySource, layout: ProductLayout, spectrometer: str = "VNIR"
) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(lat, lon)`` for a spectrometer in sensor geometry."""

    spectrometer = spectrometer.upper()
    if spectrometer == "PAN":
        head = "PCO"
        names = ("Latitude", "Longitude")
    elif layout.is_l1:
        head = None
        names = (f"Latitude_{spectrometer}", f"Longitude_{spectrometer}")
    else:
        head = None
        names = ("Latitude", "Longitude")

    lat_path = layout.geolocation_field(names[0], head=head)
    lon_path = layout.geolocation_field(names[1], head=head)
    if not (source.has(lat_path) and source.has(lon_path)):
        raise ProductNotAvailable(
            f"Geolocation for {spectrometer} not found ('{lat_path}', '{lon_path}')."
        )
    lat = np.asarray(source.array(lat_path), dtype=np.float64)
    lon = np.asarray(source.array(lon_path), dtype=np.float64)
    if lat.shape != lon.shape or lat.ndim != 2:
        raise ShapeMismatch("geolocation", {lat_path: lat.shape, lon_path: lon.shape})
    return lat, lon


def read_error_matrix(
    source: ArraySource,
    layout: ProductLayout,
    spectrometer: str,
    kept_indices: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Return the pixel error matrix of ``spectrometer``.

    Spectral matrices come back as ``(rows, columns, bands)`` restricted and
    ordered like the cube when ``kept_indices`` is given; PAN as
    ``(rows, columns)``.
    """

    spectrometer = spectrometer.upper()
    suffix = "SAT" if layout.is_l1 else "L2"
    if spectrometer == "PAN":
        path = _first_existing(
            source, (layout.data_field(f"PIXEL_{suffix}_ERR_MATRIX", head="PCO"),)
        )
    else:
        path = _first_existing(
            source, (layout.data_field(f"{spectrometer}_PIXEL_{suffix}_ERR_MATRIX"),)
        )
    if path is None:
        raise ProductNotAvailable(
            f"No {spectrometer} error matrix in this {layout.level} product."
        )

    raw = source.array(path)
    if spectrometer == "PAN":
        return raw
    err = _band_last(raw, f"{spectrometer} error matrix", path)
    if kept_indices is not None:
        err = err[:, :, np.asarray(kept_indices, dtype=np.int64)]
    return np.ascontiguousarray(err)


def read_mask(source: ArraySource, layout: ProductLayout, kind: str) -> np.ndarray:
    """Return the ``CLOUD``, ``LC`` or ``GLINT`` classification mask."""

    kind = kind.upper()
    if kind not in MASK_DATASETS:
        raise ValueError(f"Unknown mask {kind!r}; expected one of {sorted(MASK_DATASETS)}")
    path = layout.data_field(MASK_DATASETS[kind])
    if not source.has(path):
        raise ProductNotAvailable(f"{kind} mask is not distributed with {layout.level} products.")
    mask = source.array(path)
    if mask.ndim != 2:
        raise ShapeMismatch(kind, {path: mask.shape}, "expected (rows, columns)")
    return mask


def read_angles(source: ArraySource, layout: ProductLayout) -> np.ndarray:
    """Stack observing, relative azimuth and solar zenith angles band-last."""

    if layout.is_l1:
        raise ProductNotAvailable("ANGLES are only distributed with L2 products.")
    paths = [layout.geometric_field(name) for name in ANGLE_DATASETS]
    missing = [path for path in paths if not source.has(path)]
    if missing:
        raise ProductNotAvailable(f"Angle datasets missing: {', '.join(missing)}")
    layers = [np.asarray(source.array(path), dtype=np.float32) for path in paths]
    shapes = {path: layer.shape for path, layer in zip(paths, layers)}
    if len(set(shapes.values())) != 1:
        raise ShapeMismatch("ANGLES", shapes)
    return np.stack(layers, axis=2)


def read_line_times(source: ArraySource, layout: ProductLayout) -> np.ndarray:
    """Acquisition time of every along-track line."""

    path = layout.geolocation_field("Time")
    if not source.has(path):
        raise ProductNotAvailable(f"No per-line acquisition times at '{path}'.")
    return np.asarray(source.array(path), dtype=np.float64).reshape(-1)


def read_sun_angles(source: ArraySource) -> Tuple[float, float]:
    """Scene ``(sun_zenith, sun_azimuth)`` in degrees."""

    zenith = source.attr("Sun_zenith_angle", None)
    azimuth = source.attr("Sun_azimuth_angle", None)
    if zenith is None or azimuth is None:
        raise ProductNotAvailable("Sun angle attributes are missing.")
    return float(zenith), float(azimuth)


def read_smile_matrices(
    source: ArraySource, layout: ProductLayout, swath: SwathCube
) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    """Return the ``(columns, bands)`` smile matrices matching ``swath``.

    Bands are restricted and ordered like ``swath``. Either matrix is
    ``None`` when the product does not carry it.
    """

    tag = swath.name.capitalize()
    n_columns = swath.spatial_shape[1]
    matrices = []
    for prefix in ("Cw", "Fwhm"):
        path = f"KDP_AUX/{prefix}_{tag}_Matrix"
        if not source.has(path):
            matrices.append(None)
            continue
        matrix = np.asarray(source.array(path), dtype=np.float64)
        if matrix.ndim != 2:
            raise ShapeMismatch("smile", {path: matrix.shape}, "expected a 2-D matrix")
        if matrix.shape[0] != n_columns and matrix.shape[1] == n_columns:
            matrix = matrix.T
        if matrix.shape[0] != n_columns:
            raise ShapeMismatch(
                "smile", {path: matrix.shape, "cube": swath.data.shape}, "column count"
            )
        matrices.append(np.ascontiguousarray(matrix[:, swath.kept_indices]))
    return matrices[0], matrices[1]


def read_projection(
    source: ArraySource,
) -> Tuple[Tuple[float, float], Tuple[float, float], Tuple[float, float], Optional[int]]:
    """Corner pixel centres ``(ul, ur, ll)`` and EPSG code of an L2D product."""

    def _corner(tag: str) -> Tuple[float, float]:
        try:
            return (
                float(source.attr(f"Product_{tag}corner_easting")),
                float(source.attr(f"Product_{tag}corner_northing")),
            )
        except KeyError as exc:
            raise PrismaConvertError(f"L2D product lacks {tag} corner attributes.") from exc

    epsg = source.attr("Epsg_Code", None)
    return _corner("UL"), _corner("UR"), _corner("LL"), None if epsg is None else int(epsg)
