"""Raster and ancillary-table writers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ._optional import require_pyproj, require_rasterio
from .envi_writer import ENVI_DATA_TYPES, EnviWriter, envi_map_info
from .geometry import OutputGridSpec
from .mask import NODATA
from .naming import product_paths

logger = logging.getLogger(__name__)

__all__ = [
    "RasterProduct",
    "write_raster",
    "write_wavelength_table",
    "write_sun_geometry",
    "crs_wkt",
    "describe_outputs",
]


@dataclass
class RasterProduct:
    """A geocoded array ready to be written, with its grid and band metadata."""

    name: str
    data: np.ndarray
    grid: OutputGridSpec
    wavelengths: Optional[np.ndarray] = None
    fwhm: Optional[np.ndarray] = None
    band_names: Optional[Sequence[str]] = None
    description: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.data.ndim == 2:
            self.data = self.data[:, :, np.newaxis]
        if self.data.ndim != 3:
            raise ValueError(f"{self.name}: raster data must be 2-D or 3-D, got {self.data.shape}")
        if self.data.shape[:2] != self.grid.shape:
            raise ValueError(
                f"{self.name}: data {self.data.shape[:2]} does not match grid {self.grid.shape}"
            )

    @property
    def n_bands(self) -> int:
        return int(self.data.shape[2])

    @property
    def is_spectral(self) -> bool:
        return self.wavelengths is not None and len(self.wavelengths) == self.n_bands

    def resolved_band_names(self) -> list[str]:
        if self.band_names is not None:
            return [str(name) for name in self.band_names]
        if self.is_spectral:
            return [f"wl_{float(wl):.2f}" for wl in self.wavelengths]  # type: ignore[union-attr]
        return [f"{self.name}_{idx + 1}" for idx in range(self.n_bands)]


def crs_wkt(crs: Optional[str], flavor: str = "WKT1_ESRI") -> Optional[str]:
    """WKT of ``crs`` via pyproj (``None`` passes through)."""

    if crs is None:
        return None
    pyproj = require_pyproj()
    return pyproj.CRS.from_user_input(crs).to_wkt(flavor)


def _write_gtiff(product: RasterProduct, path: Path, nodata: float) -> None:
    rasterio = require_rasterio()
    from rasterio.transform import from_origin

    grid = product.grid
    profile = {
        "driver": "GTiff",
        "height": grid.nrows,
        "width": grid.ncols,
        "count": product.n_bands,
        "dtype": product.data.dtype.name,
        "nodata": nodata,
        "compress": "deflate",
    }
    if product.n_bands > 1:
        profile["interleave"] = "band"
    if grid.georeferenced:
        profile["crs"] = grid.crs
        profile["transform"] = from_origin(
            grid.x_origin, grid.y_origin, grid.pixel_x, grid.pixel_y
        )

    with rasterio.open(path, "w", **profile) as dst:
        dst.write(np.moveaxis(product.data, 2, 0))
        for idx, name in enumerate(product.resolved_band_names(), start=1):
            dst.set_band_description(idx, name)
        tags = dict(product.tags)
        if product.description:
            tags["description"] = product.description
        if product.is_spectral:
            tags["wavelength"] = ",".join(f"{float(v):.4f}" for v in product.wavelengths)  # type: ignore[union-attr]
            if product.fwhm is not None:
                tags["fwhm"] = ",".join(f"{float(v):.4f}" for v in product.fwhm)
            tags["wavelength_units"] = "Nanometers"
        if tags:
            dst.update_tags(**tags)


def _write_envi(product: RasterProduct, stem: Path, nodata: float) -> None:
    data = product.data
    if data.dtype not in ENVI_DATA_TYPES:
        data = data.astype(np.float32)

    header = {
        "description": product.description or f"PRISMA {product.name}",
        "samples": product.grid.ncols,
        "lines": product.grid.nrows,
        "bands": product.n_bands,
        "data type": ENVI_DATA_TYPES[data.dtype],
        "interleave": "bsq",
        "byte order": 0,
        "data ignore value": nodata,
        "band names": product.resolved_band_names(),
    }
    map_info = envi_map_info(product.grid)
    if map_info is not None:
        header["map info"] = map_info
        header["coordinate system string"] = crs_wkt(product.grid.crs)
    if product.is_spectral:
        header["wavelength"] = [float(v) for v in product.wavelengths]  # type: ignore[union-attr]
        if product.fwhm is not None:
            header["fwhm"] = [float(v) for v in product.fwhm]
        header["wavelength units"] = "Nanometers"

    writer = EnviWriter(stem, header)
    writer.write_chunk(np.ascontiguousarray(data), 0, 0)
    writer.close()


def _storable(data: np.ndarray, nodata: float) -> np.ndarray:
    """Promote integer data to float32 when it cannot hold ``nodata``."""

    if data.dtype.kind in "iu":
        info = np.iinfo(data.dtype)
        if not (float(nodata).is_integer() and info.min <= nodata <= info.max):
            return data.astype(np.float32)
    elif data.dtype.kind == "b":
        return data.astype(np.float32)
    return data


def write_raster(
    product: RasterProduct,
    out_folder: Path,
    basename: str,
    out_format: str = "GTiff",
    nodata: float = NODATA,
) -> Tuple[Path, ...]:
    """Write ``product`` as GeoTIFF or ENVI BSQ; return the files created."""

    paths = product_paths(out_folder, basename, product.name, out_format)
    product.data = _storable(product.data, nodata)
    if out_format == "GTiff":
        _write_gtiff(product, paths[0], nodata)
    else:
        _write_envi(product, paths[0].parent / paths[0].stem, nodata)
    logger.info(
        "💾 %s -> %s (%d band(s), %dx%d)",
        product.name,
        paths[0].name,
        product.n_bands,
        product.grid.nrows,
        product.grid.ncols,
    )
    return paths


def write_wavelength_table(path: Path, wavelengths, fwhm=None) -> Path:
    """Tab-separated ``band``/``wavelength``/``fwhm`` table (1-based bands)."""

    wl = np.asarray(wavelengths, dtype=np.float64).reshape(-1)
    widths = (
        np.full(wl.size, np.nan) if fwhm is None else np.asarray(fwhm, dtype=np.float64).reshape(-1)
    )
    if widths.size != wl.size:
        raise ValueError(f"{wl.size} wavelengths but {widths.size} FWHM values for {path.name}")
    frame = pd.DataFrame(
        {"band": np.arange(1, wl.size + 1), "wavelength": wl, "fwhm": widths}
    )
    frame.to_csv(path, sep="\t", index=False, float_format="%.4f")
    return path


def write_sun_geometry(
    path: Path, line_times, sun_zenith: float, sun_azimuth: float
) -> Path:
    """One row per along-track line: ``line``, ``time``, ``sun_zenith``, ``sun_azimuth``."""

    times = np.asarray(line_times, dtype=np.float64).reshape(-1)
    frame = pd.DataFrame(
        {
            "line": np.arange(1, times.size + 1),
            "time": times,
            "sun_zenith": np.full(times.size, float(sun_zenith)),
            "sun_azimuth": np.full(times.size, float(sun_azimuth)),
        }
    )
    frame.to_csv(path, sep="\t", index=False, float_format="%.6f")
    return path


def describe_outputs(files: Mapping[str, Sequence[Path]]) -> pd.DataFrame:
    """Summary frame of written products (``product``, ``file``, ``bytes``)."""

    rows = [
        {"product": name, "file": str(path), "bytes": Path(path).stat().st_size}
        for name, paths in files.items()
        for path in paths
        if Path(path).exists()
    ]
    return pd.DataFrame(rows, columns=["product", "file", "bytes"])
