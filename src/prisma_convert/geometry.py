"""GLT and bowtie correction: regular lat/lon grids from PRISMA swaths.

PRISMA L1 and L2B/C cubes are stored in sensor geometry: each array cell is
a detector sample of an along-track line, and the per-pixel latitude and
longitude datasets describe where it landed. Adjacent lines fold back over
ground already covered (the bowtie effect), so several source pixels can
fall into one output cell.

The geographic lookup table (GLT) built here records, for every cell of an
equirectangular WGS-84 grid, the single source pixel that supplies its
value. Collisions resolve to the pixel scanned last (row-major order, later
swaths after earlier ones). Applying the table is a pure index gather: no
interpolation, the original values are preserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from .errors import GeometryMismatch, ShapeMismatch
from .mask import NODATA

logger = logging.getLogger(__name__)

GEOGRAPHIC_CRS = "EPSG:4326"

ArrayOrSwaths = Union[np.ndarray, Sequence[np.ndarray]]


@dataclass(frozen=True)
class OutputGridSpec:
    """Shape and georeferencing of an output raster.

    ``x_origin``/``y_origin`` are the outer upper-left corner; pixel sizes are
    positive. An ungeoreferenced grid carries only its shape.
    """

    nrows: int
    ncols: int
    x_origin: Optional[float] = None
    y_origin: Optional[float] = None
    pixel_x: Optional[float] = None
    pixel_y: Optional[float] = None
    crs: Optional[str] = None

    @classmethod
    def ungeoreferenced(cls, nrows: int, ncols: int) -> "OutputGridSpec":
        return cls(nrows=int(nrows), ncols=int(ncols))

    @property
    def georeferenced(self) -> bool:
        return self.crs is not None

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nrows, self.ncols

    @property
    def transform(self) -> Optional[Tuple[float, float, float, float, float, float]]:
        """GDAL-ordered geotransform ``(ulx, xres, 0, uly, 0, -yres)``."""

        if not self.georeferenced:
            return None
        return (
            float(self.x_origin),
            float(self.pixel_x),
            0.0,
            float(self.y_origin),
            0.0,
            -float(self.pixel_y),
        )

    @property
    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """``(west, south, east, north)`` of the outer pixel edges."""

        if not self.georeferenced:
            return None
        west = float(self.x_origin)
        north = float(self.y_origin)
        east = west + self.ncols * float(self.pixel_x)
        south = north - self.nrows * float(self.pixel_y)
        return west, south, east, north


@dataclass(frozen=True)
class GeolocationTable:
    """Per output cell, the source ``(row, column, swath)`` feeding it.

    Invalid cells hold ``-1`` in every buffer.
    """

    source_row: np.ndarray
    source_col: np.ndarray
    source_swath: np.ndarray
    source_shapes: Tuple[Tuple[int, int], ...]

    @property
    def shape(self) -> Tuple[int, int]:
        return tuple(self.source_row.shape)  # type: ignore[return-value]

    @property
    def valid(self) -> np.ndarray:
        return self.source_row >= 0

    @property
    def n_swaths(self) -> int:
        return len(self.source_shapes)

    def apply(self, source_cube: ArrayOrSwaths, nodata: float = NODATA) -> np.ndarray:
        return apply_table(self, source_cube, nodata=nodata)


def _as_swaths(values: ArrayOrSwaths, label: str) -> list[np.ndarray]:
    if isinstance(values, np.ndarray):
        swaths = [values]
    else:
        swaths = [np.asarray(item) for item in values]
    if not swaths:
        raise ValueError(f"No {label} arrays supplied.")
    for item in swaths:
        if item.ndim != 2:
            raise ShapeMismatch("build_grid", {label: item.shape}, "expected 2-D arrays")
    return [np.asarray(item, dtype=np.float64) for item in swaths]


def estimate_pixel_size(lat: np.ndarray, lon: np.ndarray) -> Tuple[float, float]:
    """Estimate ``(x_size, y_size)`` in degrees matching the native spacing.

    The ground step is the mean of the median along-track and across-track
    neighbour distances, expressed in degrees of latitude. The longitude size
    is stretched by ``1 / cos(latitude)`` so cells stay roughly square on the
    ground.
    """

    lat = np.asarray(lat, dtype=np.float64)
    lon = np.asarray(lon, dtype=np.float64)
    if lat.shape != lon.shape or lat.ndim != 2:
        raise ShapeMismatch("pixel_size", {"lat": lat.shape, "lon": lon.shape})

    coslat = float(np.cos(np.radians(np.nanmean(lat))))
    steps = []
    for axis in (0, 1):
        if lat.shape[axis] < 2:
            continue
        dist = np.hypot(np.diff(lat, axis=axis), np.diff(lon, axis=axis) * coslat)
        dist = dist[np.isfinite(dist) & (dist > 0)]
        if dist.size:
            steps.append(float(np.median(dist)))

    if not steps or coslat <= 0:
        raise ValueError("Cannot derive a pixel size from the geolocation arrays.")

    step = float(np.mean(steps))
    return step / coslat, step


def build_grid(
    lat: ArrayOrSwaths,
    lon: ArrayOrSwaths,
    source_shape: Optional[Sequence[int]] = None,
    *,
    pixel_size: Optional[float | Tuple[float, float]] = None,
) -> Tuple[GeolocationTable, OutputGridSpec]:
    """Build the geographic lookup table for one or more swaths.

    Parameters
    ----------
    lat, lon
        Per-source-pixel latitude/longitude, either one 2-D array or a
        sequence of arrays (one per swath, in increasing priority).
    source_shape
        Shape of the cube the table will be applied to; its first two
        dimensions must match the geolocation arrays of a single swath.
    pixel_size
        Output pixel size in degrees, scalar or ``(x, y)``. Estimated from
        the geolocation spacing when omitted.
    """

    lats = _as_swaths(lat, "lat")
    lons = _as_swaths(lon, "lon")
    if len(lats) != len(lons):
        raise ShapeMismatch(
            "build_grid", {"lat swaths": (len(lats),), "lon swaths": (len(lons),)}
        )
    for la, lo in zip(lats, lons):
        if la.shape != lo.shape:
            raise ShapeMismatch("build_grid", {"lat": la.shape, "lon": lo.shape})
    if source_shape is not None and len(lats) == 1:
        if tuple(source_shape[:2]) != lats[0].shape:
            raise ShapeMismatch(
                "build_grid", {"lat": lats[0].shape, "source": tuple(source_shape)}
            )

    if pixel_size is None:
        x_size, y_size = estimate_pixel_size(lats[0], lons[0])
    elif np.isscalar(pixel_size):
        x_size = y_size = float(pixel_size)  # type: ignore[arg-type]
    else:
        x_size, y_size = (float(value) for value in pixel_size)  # type: ignore[union-attr]
    if not (x_size > 0 and y_size > 0):
        raise ValueError(f"Pixel size must be positive, got ({x_size}, {y_size}).")

    flat_lat = np.concatenate([la.ravel() for la in lats])
    flat_lon = np.concatenate([lo.ravel() for lo in lons])
    finite = np.isfinite(flat_lat) & np.isfinite(flat_lon)
    if not finite.any():
        raise ValueError("Geolocation arrays contain no finite coordinates.")

    x_origin = float(flat_lon[finite].min()) - x_size / 2.0
    y_origin = float(flat_lat[finite].max()) + y_size / 2.0

    scan_index = np.flatnonzero(finite)
    cols = np.floor((flat_lon[finite] - x_origin) / x_size).astype(np.int64)
    rows = np.floor((y_origin - flat_lat[finite]) / y_size).astype(np.int64)
    ncols = int(cols.max()) + 1
    nrows = int(rows.max()) + 1

    # Scan order is row-major per swath with later swaths after earlier ones,
    # so the largest global index landing in a cell is the last one written.
    winner = np.full(nrows * ncols, -1, dtype=np.int64)
    np.maximum.at(winner, rows * ncols + cols, scan_index)

    shapes = tuple(tuple(int(v) for v in la.shape) for la in lats)
    sizes = np.array([la.size for la in lats], dtype=np.int64)
    offsets = np.concatenate([[0], np.cumsum(sizes)])
    widths = np.array([shape[1] for shape in shapes], dtype=np.int64)

    valid = winner >= 0
    chosen = winner[valid]
    swath = np.searchsorted(offsets[1:], chosen, side="right")
    local = chosen - offsets[swath]

    source_row = np.full(nrows * ncols, -1, dtype=np.int32)
    source_col = np.full(nrows * ncols, -1, dtype=np.int32)
    source_swath = np.full(nrows * ncols, -1, dtype=np.int16)
    source_row[valid] = local // widths[swath]
    source_col[valid] = local % widths[swath]
    source_swath[valid] = swath

    table = GeolocationTable(
        source_row=source_row.reshape(nrows, ncols),
        source_col=source_col.reshape(nrows, ncols),
        source_swath=source_swath.reshape(nrows, ncols),
        source_shapes=shapes,
    )
    grid = OutputGridSpec(
        nrows=nrows,
        ncols=ncols,
        x_origin=x_origin,
        y_origin=y_origin,
        pixel_x=x_size,
        pixel_y=y_size,
        crs=GEOGRAPHIC_CRS,
    )

    logger.info(
        "🗺️  GLT built: %d swath(s) -> %dx%d grid at %.6f x %.6f deg (%.1f%% cells filled)",
        len(shapes),
        nrows,
        ncols,
        x_size,
        y_size,
        100.0 * float(valid.mean()),
    )
    return table, grid


def _fill_dtype(dtype: np.dtype, nodata: float) -> np.dtype:
    """Smallest dtype holding both ``dtype`` values and ``nodata`` exactly."""

    if dtype.kind == "f":
        return dtype
    if dtype.kind in "iu" and float(nodata).is_integer():
        info = np.iinfo(dtype)
        if info.min <= nodata <= info.max:
            return dtype
        return np.promote_types(dtype, np.min_scalar_type(int(nodata)))
    return np.promote_types(dtype, np.float32)


def apply_table(
    table: GeolocationTable,
    source_cube: ArrayOrSwaths,
    nodata: float = NODATA,
) -> np.ndarray:
    """Gather ``source_cube`` onto the table's output grid.

    ``source_cube`` is a ``(rows, columns[, bands])`` array, or one array per
    swath for multi-swath tables. Unmapped cells receive ``nodata``.
    """

    if isinstance(source_cube, np.ndarray):
        cubes = [source_cube]
    else:
        cubes = [np.asarray(item) for item in source_cube]
    if len(cubes) != table.n_swaths:
        raise ShapeMismatch(
            "apply_table",
            {"swaths in table": (table.n_swaths,), "cubes supplied": (len(cubes),)},
        )

    trailing = cubes[0].shape[2:]
    for idx, (cube, shape) in enumerate(zip(cubes, table.source_shapes)):
        if cube.shape[:2] != shape or cube.shape[2:] != trailing:
            raise ShapeMismatch(
                "apply_table",
                {f"cube[{idx}]": cube.shape, "table source": shape + trailing},
            )

    dtype = _fill_dtype(np.result_type(*[cube.dtype for cube in cubes]), nodata)
    out = np.full(table.shape + trailing, nodata, dtype=dtype)

    valid = table.valid
    for idx, cube in enumerate(cubes):
        sel = valid & (table.source_swath == idx) if table.n_swaths > 1 else valid
        out[sel] = cube[table.source_row[sel], table.source_col[sel]]
    return out


def flip_rows(array: np.ndarray) -> np.ndarray:
    """Orient a sensor-geometry array north-up without georeferencing it."""

    return np.ascontiguousarray(np.asarray(array)[::-1])


def check_geometry(
    l1_lat: np.ndarray,
    l1_lon: np.ndarray,
    l2_lat: np.ndarray,
    l2_lon: np.ndarray,
    tolerance: float = 0.01,
) -> None:
    """Ensure L1 and L2 geolocation describe the same swath.

    Raises :class:`GeometryMismatch` when the arrays differ in shape or their
    bounding boxes disagree by more than ``tolerance`` degrees.
    """

    shapes = {
        "l1_lat": np.shape(l1_lat),
        "l1_lon": np.shape(l1_lon),
        "l2_lat": np.shape(l2_lat),
        "l2_lon": np.shape(l2_lon),
    }
    if len(set(shapes.values())) != 1:
        raise GeometryMismatch(
            "L1 and L2 geolocation arrays differ in shape: "
            + ", ".join(f"{key}={value}" for key, value in shapes.items())
        )

    def _bbox(lat, lon):
        return np.array(
            [np.nanmin(lon), np.nanmin(lat), np.nanmax(lon), np.nanmax(lat)],
            dtype=np.float64,
        )

    l1_box = _bbox(l1_lat, l1_lon)
    l2_box = _bbox(l2_lat, l2_lon)
    offset = float(np.max(np.abs(l1_box - l2_box)))
    if not offset <= tolerance:
        raise GeometryMismatch(
            "L1 and L2 products cover different footprints: "
            f"L1 bbox {l1_box.round(5).tolist()} vs L2 bbox {l2_box.round(5).tolist()} "
            f"(max offset {offset:.5f} deg > tolerance {tolerance} deg)"
        )


def grid_from_corners(
    ul: Tuple[float, float],
    ur: Tuple[float, float],
    ll: Tuple[float, float],
    nrows: int,
    ncols: int,
    epsg: Optional[int],
) -> OutputGridSpec:
    """Grid of an already projected (L2D) product from its corner centres.

    ``ul``/``ur``/``ll`` are ``(easting, northing)`` pixel-centre coordinates.
    """

    if nrows < 2 or ncols < 2:
        raise ValueError(f"Projected grid needs at least 2x2 pixels, got {nrows}x{ncols}.")
    if epsg is None:
        raise ValueError("Projected product has no EPSG code.")

    x_size = (ur[0] - ul[0]) / float(ncols - 1)
    y_size = (ul[1] - ll[1]) / float(nrows - 1)
    if not (x_size > 0 and y_size > 0):
        raise ValueError(
            f"Corner coordinates do not describe a north-up grid: UL={ul}, UR={ur}, LL={ll}"
        )

    return OutputGridSpec(
        nrows=int(nrows),
        ncols=int(ncols),
        x_origin=float(ul[0]) - 0.5 * x_size,
        y_origin=float(ul[1]) + 0.5 * y_size,
        pixel_x=x_size,
        pixel_y=y_size,
        crs=f"EPSG:{int(epsg)}",
    )


__all__ = [
    "GEOGRAPHIC_CRS",
    "OutputGridSpec",
    "GeolocationTable",
    "estimate_pixel_size",
    "build_grid",
    "apply_table",
    "flip_rows",
    "check_geometry",
    "grid_from_corners",
]
