"""End-to-end conversion of one PRISMA file into georeferenced products.

Stages run sequentially: read swaths -> build the georeferencing map ->
subset and merge bands -> geocode -> mask -> ancillary tables -> write.
Everything is computed in memory and written to a private staging folder
inside ``out_folder``; files are moved into place only after every product
has been written.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .bands import select_bands
from .config import PRODUCT_FLAGS, ConvertConfig
from .errors import PrismaConvertError, ProductNotAvailable, UnsupportedOperation
from .geometry import (
    OutputGridSpec,
    apply_table,
    build_grid,
    check_geometry,
    flip_rows,
    grid_from_corners,
)
from .indexes import compute_index, resolve_index
from .io.prisma import (
    ANGLE_DATASETS,
    MASK_DATASETS,
    ProductLayout,
    SwathCube,
    detect_level,
    read_angles,
    read_error_matrix,
    read_geolocation,
    read_line_times,
    read_mask,
    read_pan,
    read_projection,
    read_smile_matrices,
    read_sun_angles,
    read_swath,
)
from .io.source import ArraySource, H5ArraySource
from .mask import apply_mask, error_per_pixel
from .merge import Priority, merge_cubes, merge_vectors, overlap_selection
from .naming import OutputPaths
from .progress_utils import ProgressReporter, is_interactive
from .smile import derive_smile_vectors
from .validations.preflight import validate_inputs
from .writers import RasterProduct, write_raster, write_sun_geometry, write_wavelength_table

# ---------------------------------------------------------------------
# Logging setup (safe even if module imported multiple times)
# ---------------------------------------------------------------------
logger = logging.getLogger(__name__)
_package_logger = logging.getLogger("prisma_convert")
if not _package_logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )
    handler.setFormatter(formatter)
    _package_logger.addHandler(handler)
    _package_logger.setLevel(logging.INFO)
    _package_logger.propagate = False
# ---------------------------------------------------------------------

__all__ = ["ConversionResult", "convert_prisma", "convert_source"]

Geocoder = Callable[[np.ndarray], np.ndarray]

# Product names an index may not take.
RESERVED_NAMES = frozenset(flag.upper() for flag in PRODUCT_FLAGS)


@dataclass
class ConversionResult:
    """Files produced by one conversion and products that were skipped."""

    in_file: str
    out_folder: Path
    level: str
    head: str
    outputs: Dict[str, Tuple[Path, ...]] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def files(self) -> List[Path]:
        return [path for paths in self.outputs.values() for path in paths]


@dataclass
class _TableJob:
    name: str
    path: Path
    write: Callable[[Path], Path]


class _Georeferencer:
    """Builds and caches the geocoding function and grid per spectrometer."""

    def __init__(
        self,
        source: ArraySource,
        layout: ProductLayout,
        config: ConvertConfig,
        l2_source: Optional[ArraySource] = None,
    ) -> None:
        self.source = source
        self.layout = layout
        self.config = config
        self.l2_source = l2_source if layout.is_l1 else None
        if l2_source is not None and self.l2_source is None:
            logger.warning(
                "L2 companion file ignored: input is already %s", layout.level
            )
        self._geolocation: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}
        self._resolved: Dict[Tuple[str, Tuple[int, int]], Tuple[Geocoder, OutputGridSpec]] = {}
        self._companion: Optional[Tuple[np.ndarray, np.ndarray]] = None

    def _companion_geolocation(self) -> Tuple[np.ndarray, np.ndarray]:
        if self._companion is None:
            l2_level = detect_level(self.l2_source)  # type: ignore[arg-type]
            l2_layout = ProductLayout(l2_level, "HCO")
            if l2_layout.is_l1:
                raise PrismaConvertError(
                    f"L2 companion {self.l2_source.name} is an L1 product."  # type: ignore[union-attr]
                )
            l2_lat, l2_lon = read_geolocation(self.l2_source, l2_layout, "VNIR")  # type: ignore[arg-type]
            l1_lat, l1_lon = read_geolocation(self.source, self.layout, "VNIR")
            check_geometry(l1_lat, l1_lon, l2_lat, l2_lon, self.config.geometry_tolerance)
            logger.info("🧭 Using %s geolocation from %s", l2_level, self.l2_source.name)  # type: ignore[union-attr]
            self._companion = (l2_lat, l2_lon)
        return self._companion

    def _table_key(self, key: str) -> str:
        if key == "PAN":
            return "PAN"
        return "L2" if self.l2_source is not None else key

    def geolocation(self, key: str) -> Tuple[np.ndarray, np.ndarray]:
        table_key = self._table_key(key)
        if table_key not in self._geolocation:
            if table_key == "L2":
                self._geolocation[table_key] = self._companion_geolocation()
            else:
                self._geolocation[table_key] = read_geolocation(self.source, self.layout, key)
        return self._geolocation[table_key]

    def _projected_grid(self, key: str, shape: Tuple[int, int]) -> OutputGridSpec:
        ul, ur, ll, epsg = read_projection(self.source)
        if key != "PAN":
            return grid_from_corners(ul, ur, ll, shape[0], shape[1], epsg)
        hco_shape = self.geolocation("VNIR")[0].shape
        hco = grid_from_corners(ul, ur, ll, hco_shape[0], hco_shape[1], epsg)
        return OutputGridSpec(
            nrows=shape[0],
            ncols=shape[1],
            x_origin=hco.x_origin,
            y_origin=hco.y_origin,
            pixel_x=hco.pixel_x * hco.ncols / shape[1],
            pixel_y=hco.pixel_y * hco.nrows / shape[0],
            crs=hco.crs,
        )

    def resolve(self, key: str, shape) -> Tuple[Geocoder, OutputGridSpec]:
        spatial = (int(shape[0]), int(shape[1]))
        cache_key = (self._table_key(key), spatial)
        if cache_key in self._resolved:
            return self._resolved[cache_key]

        if self.layout.is_projected:
            resolved = (flip_rows, self._projected_grid(key, spatial))
        elif not self.config.base_georef:
            resolved = (flip_rows, OutputGridSpec.ungeoreferenced(*spatial))
        else:
            lat, lon = self.geolocation(key)
            pixel_size = None if key == "PAN" else self.config.pixel_size
            table, grid = build_grid(lat, lon, spatial, pixel_size=pixel_size)
            resolved = (partial(apply_table, table, nodata=self.config.nodata), grid)

        self._resolved[cache_key] = resolved
        return resolved


class _Conversion:
    """State of a single conversion; computes every product before writing."""

    def __init__(
        self,
        source: ArraySource,
        paths: OutputPaths,
        config: ConvertConfig,
        l2_source: Optional[ArraySource],
    ) -> None:
        self.source = source
        self.paths = paths
        self.config = config
        level = detect_level(source)
        self.layout = ProductLayout(level, config.source if level == "L1" else "HCO")
        self.georef = _Georeferencer(source, self.layout, config, l2_source)
        self.priority = Priority.parse(config.join_priority)
        self.result = ConversionResult(
            in_file=source.name,
            out_folder=paths.out_folder,
            level=self.layout.level,
            head=self.layout.head,
        )
        self.rasters: List[RasterProduct] = []
        self.tables: List[_TableJob] = []
        self._swaths: Dict[str, Optional[SwathCube]] = {}
        self._errors: Dict[str, Optional[np.ndarray]] = {}

    # -- helpers ---------------------------------------------------------

    def _skip(self, name: str, reason: str, level: int = logging.WARNING) -> None:
        self.result.skipped[name] = reason
        logger.log(level, "⏭️  Skipping %s: %s", name, reason)

    def _exists(self, path: Path) -> bool:
        return not self.config.overwrite and path.exists()

    def swath(self, name: str) -> Optional[SwathCube]:
        if name not in self._swaths:
            try:
                self._swaths[name] = read_swath(self.source, self.layout, name)
            except ProductNotAvailable as exc:
                logger.warning("%s", exc)
                self._swaths[name] = None
        return self._swaths[name]

    def selected(self, name: str) -> Optional[SwathCube]:
        swath = self.swath(name)
        if swath is None:
            return None
        requested = self.config.selbands_vnir if name == "VNIR" else self.config.selbands_swir
        if not requested:
            return swath
        return swath.subset(select_bands(requested, swath.wavelengths))

    def error_for(self, swath: SwathCube) -> Optional[np.ndarray]:
        """Per-pixel error code of ``swath`` in sensor geometry."""

        key = f"{swath.name}:{','.join(map(str, swath.kept_indices.tolist()))}"
        if key not in self._errors:
            try:
                if swath.name == "PAN":
                    err = read_error_matrix(self.source, self.layout, "PAN")
                else:
                    err = read_error_matrix(
                        self.source, self.layout, swath.name, swath.kept_indices
                    )
                self._errors[key] = error_per_pixel(err)
            except ProductNotAvailable as exc:
                logger.warning("Error matrix unavailable, %s left unmasked: %s", swath.name, exc)
                self._errors[key] = None
        return self._errors[key]

    def _geocode_masked(
        self, key: str, data: np.ndarray, error: Optional[np.ndarray]
    ) -> Tuple[np.ndarray, OutputGridSpec]:
        geocode, grid = self.georef.resolve(key, data.shape)
        out = geocode(data)
        if self.config.apply_errmatrix and error is not None:
            out = apply_mask(
                out,
                geocode(error),
                threshold=self.config.err_threshold,
                nodata=self.config.nodata,
            )
        return out, grid

    def _add_spectral(self, name: str, key: str, data, wavelengths, fwhm, error) -> None:
        cube, grid = self._geocode_masked(key, data, error)
        self.rasters.append(
            RasterProduct(
                name=name,
                data=cube,
                grid=grid,
                wavelengths=np.asarray(wavelengths),
                fwhm=np.asarray(fwhm),
                description=f"PRISMA {self.layout.level} {name} {self.layout.head}",
            )
        )
        self.tables.append(
            _TableJob(
                name=f"{name}_wvl",
                path=self.paths.wavelengths(name),
                write=partial(write_wavelength_table, wavelengths=wavelengths, fwhm=fwhm),
            )
        )

    # -- products --------------------------------------------------------

    def product_single(self, name: str) -> None:
        swath = self.selected(name)
        if swath is None:
            self._skip(name, f"no {name} cube in this {self.layout.level} product")
            return
        error = self.error_for(swath) if self.config.apply_errmatrix else None
        self._add_spectral(name, name, swath.data, swath.wavelengths, swath.fwhm, error)

    def product_full(self) -> None:
        vnir, swir = self.selected("VNIR"), self.selected("SWIR")
        if vnir is None or swir is None:
            self._skip("FULL", "FULL needs both the VNIR and the SWIR cube")
            return
        cube, wl, fwhm = merge_cubes(
            vnir.data,
            vnir.wavelengths,
            swir.data,
            swir.wavelengths,
            self.priority,
            vnir_fwhm=vnir.fwhm,
            swir_fwhm=swir.fwhm,
        )
        error = self._merged_error(vnir, swir) if self.config.apply_errmatrix else None
        logger.info(
            "🧬 FULL cube: %d VNIR + %d SWIR bands -> %d (priority %s)",
            vnir.n_bands,
            swir.n_bands,
            wl.size,
            self.priority.value,
        )
        self._add_spectral("FULL", self.priority.value, cube, wl, fwhm, error)

    def _merged_error(self, vnir: SwathCube, swir: SwathCube) -> Optional[np.ndarray]:
        v_err, s_err = self.error_for(vnir), self.error_for(swir)
        if v_err is None or s_err is None:
            return v_err if s_err is None else s_err
        return np.maximum(v_err, s_err)

    def product_pan(self) -> None:
        pan = read_pan(self.source, self.layout)
        error = self.error_for(pan) if self.config.apply_errmatrix else None
        data, grid = self._geocode_masked("PAN", pan.data, error)
        self.rasters.append(
            RasterProduct(name="PAN", data=data, grid=grid, band_names=["PAN"])
        )

    def product_angles(self) -> None:
        angles = read_angles(self.source, self.layout)
        geocode, grid = self.georef.resolve("VNIR", angles.shape)
        self.rasters.append(
            RasterProduct(
                name="ANGLES", data=geocode(angles), grid=grid, band_names=list(ANGLE_DATASETS)
            )
        )

    def product_mask(self, kind: str) -> None:
        mask = read_mask(self.source, self.layout, kind)
        geocode, grid = self.georef.resolve("VNIR", mask.shape)
        self.rasters.append(
            RasterProduct(
                name=kind, data=geocode(mask), grid=grid, band_names=[MASK_DATASETS[kind]]
            )
        )

    def product_err_matrix(self) -> None:
        layers, names = [], []
        for name in ("VNIR", "SWIR"):
            swath = self.swath(name)
            if swath is None:
                continue
            err = self.error_for(swath)
            if err is not None:
                layers.append(err)
                names.append(f"{name}_ERR")
        if not layers:
            self._skip("ERR_MATRIX", "no error matrix in this product")
            return
        stack = np.stack(layers, axis=2)
        geocode, grid = self.georef.resolve("VNIR", stack.shape)
        self.rasters.append(
            RasterProduct(name="ERR_MATRIX", data=geocode(stack), grid=grid, band_names=names)
        )

    def product_latlon(self) -> None:
        lat, lon = self.georef.geolocation("VNIR")
        stack = np.stack([lat, lon], axis=2)
        geocode, grid = self.georef.resolve("VNIR", stack.shape)
        self.rasters.append(
            RasterProduct(
                name="LATLON", data=geocode(stack), grid=grid, band_names=["Latitude", "Longitude"]
            )
        )

    def product_indexes(self, specs: List[Tuple[str, str]]) -> None:
        vnir, swir = self.swath("VNIR"), self.swath("SWIR")
        if vnir is None and swir is None:
            for name, _ in specs:
                self._skip(name, "no spectral cube to compute the index from")
            return

        if vnir is not None and swir is not None:
            data, wl, _ = merge_cubes(
                vnir.data, vnir.wavelengths, swir.data, swir.wavelengths, self.priority
            )
            key = self.priority.value
            error = self._merged_error(vnir, swir) if self.config.apply_errmatrix else None
        else:
            only = vnir if vnir is not None else swir
            data, wl, key = only.data, only.wavelengths, only.name  # type: ignore[union-attr]
            error = self.error_for(only) if self.config.apply_errmatrix else None  # type: ignore[arg-type]

        cube, grid = self._geocode_masked(key, data, error)
        for name, formula in specs:
            logger.info("🧮 Index %s = %s", name, formula)
            self.rasters.append(
                RasterProduct(
                    name=name,
                    data=compute_index(cube, wl, formula, nodata=self.config.nodata),
                    grid=grid,
                    band_names=[name],
                    tags={"formula": formula},
                )
            )

    # -- ancillary tables ------------------------------------------------

    def sun_geometry(self) -> None:
        path = self.paths.sun_geometry
        if self._exists(path):
            self._skip("sun_geometry", f"{path.name} exists", logging.INFO)
            return
        try:
            times = read_line_times(self.source, self.layout)
            zenith, azimuth = read_sun_angles(self.source)
        except ProductNotAvailable as exc:
            self._skip("sun_geometry", str(exc), logging.INFO)
            return
        self.tables.append(
            _TableJob(
                name="sun_geometry",
                path=path,
                write=partial(
                    write_sun_geometry,
                    line_times=times,
                    sun_zenith=zenith,
                    sun_azimuth=azimuth,
                ),
            )
        )

    def atcor(self) -> None:
        vnir, swir = self.selected("VNIR"), self.selected("SWIR")
        if vnir is None or swir is None:
            self._skip("ATCOR", "ATCOR tables need both the VNIR and the SWIR cube")
            return
        selection = overlap_selection(vnir.wavelengths, swir.wavelengths, self.priority)
        if not self._exists(self.paths.atcor_nominal):
            self.tables.append(
                _TableJob(
                    name="ATCOR_nominal",
                    path=self.paths.atcor_nominal,
                    write=partial(
                        write_wavelength_table,
                        wavelengths=merge_vectors(vnir.wavelengths, swir.wavelengths, selection),
                        fwhm=merge_vectors(vnir.fwhm, swir.fwhm, selection),
                    ),
                )
            )

        columns = self.config.atcor_columns
        if not columns:
            return
        try:
            v_cw, v_fwhm = derive_smile_vectors(
                *read_smile_matrices(self.source, self.layout, vnir), columns, self.layout.head
            )
            s_cw, s_fwhm = derive_smile_vectors(
                *read_smile_matrices(self.source, self.layout, swir), columns, self.layout.head
            )
        except UnsupportedOperation as exc:
            self._skip("ATCOR_columns", str(exc))
            return

        for column in columns:
            path = self.paths.atcor_column(column)
            if self._exists(path):
                self._skip(f"ATCOR_col{column}", f"{path.name} exists", logging.INFO)
                continue
            self.tables.append(
                _TableJob(
                    name=f"ATCOR_col{column}",
                    path=path,
                    write=partial(
                        write_wavelength_table,
                        wavelengths=merge_vectors(v_cw[column], s_cw[column], selection),
                        fwhm=merge_vectors(v_fwhm[column], s_fwhm[column], selection),
                    ),
                )
            )

    # -- driver ----------------------------------------------------------

    def plan(self) -> Tuple[List[str], List[Tuple[str, str]]]:
        products = []
        for name in self.config.requested_products:
            primary = self.paths.raster(name)[0]
            if self._exists(primary):
                self._skip(name, f"{primary.name} exists (use overwrite)", logging.INFO)
            else:
                products.append(name)

        indexes = []
        seen = set()
        for spec in self.config.indexes:
            name, formula = resolve_index(spec)
            if name in RESERVED_NAMES:
                raise ValueError(f"Index name {name!r} clashes with the {name} product.")
            if name in seen:
                raise ValueError(f"Index {name!r} requested more than once.")
            seen.add(name)
            primary = self.paths.raster(name)[0]
            if self._exists(primary):
                self._skip(name, f"{primary.name} exists (use overwrite)", logging.INFO)
            else:
                indexes.append((name, formula))
        return products, indexes

    def compute(self) -> None:
        products, indexes = self.plan()
        handlers: Dict[str, Callable[[], None]] = {
            "VNIR": partial(self.product_single, "VNIR"),
            "SWIR": partial(self.product_single, "SWIR"),
            "FULL": self.product_full,
            "PAN": self.product_pan,
            "ANGLES": self.product_angles,
            "CLOUD": partial(self.product_mask, "CLOUD"),
            "LC": partial(self.product_mask, "LC"),
            "GLINT": partial(self.product_mask, "GLINT"),
            "ERR_MATRIX": self.product_err_matrix,
            "LATLON": self.product_latlon,
        }
        for name in products:
            try:
                handlers[name]()
            except ProductNotAvailable as exc:
                self._skip(name, str(exc))
        if indexes:
            self.product_indexes(indexes)
        if products or indexes or self.config.atcor:
            self.sun_geometry()
        if self.config.atcor:
            self.atcor()

    def _check_targets(self) -> None:
        """Fail before staging when two outputs would land on the same file."""

        owners: Dict[str, str] = {}
        for product in self.rasters:
            for path in self.paths.raster(product.name):
                owners.setdefault(path.name, product.name)
                if owners[path.name] != product.name:
                    raise PrismaConvertError(
                        f"{product.name} and {owners[path.name]} would both write {path.name}"
                    )
        for job in self.tables:
            other = owners.setdefault(job.path.name, job.name)
            if other != job.name:
                raise PrismaConvertError(f"{job.name} and {other} would both write {job.path.name}")

    def write(self) -> None:
        self.tables = [job for job in self.tables if not self._exists(job.path)]
        total = len(self.rasters) + len(self.tables)
        if total == 0:
            logger.info("Nothing to write for %s", self.source.name)
            return

        self._check_targets()
        out_folder = self.paths.out_folder
        staging = Path(tempfile.mkdtemp(prefix=".prisma_convert_", dir=out_folder))
        staged: Dict[str, Tuple[Path, ...]] = {}
        try:
            reporter = ProgressReporter(
                "Writing products", total, is_interactive(), unit="file"
            )
            with reporter:
                for product in self.rasters:
                    staged[product.name] = write_raster(
                        product,
                        staging,
                        self.paths.basename,
                        self.config.out_format,
                        self.config.nodata,
                    )
                    reporter.update(label=product.name)
                for job in self.tables:
                    staged[job.name] = (job.write(staging / job.path.name),)
                    reporter.update(label=job.name)

            moved: List[Path] = []
            try:
                for name, files in staged.items():
                    final = []
                    for path in files:
                        target = out_folder / path.name
                        os.replace(path, target)
                        moved.append(target)
                        final.append(target)
                    self.result.outputs[name] = tuple(final)
            except OSError:
                for target in moved:
                    target.unlink(missing_ok=True)
                self.result.outputs.clear()
                raise
        finally:
            shutil.rmtree(staging, ignore_errors=True)


def convert_source(
    source: ArraySource,
    out_folder: str | Path,
    config: Optional[ConvertConfig] = None,
    *,
    basename: Optional[str] = None,
    l2_source: Optional[ArraySource] = None,
) -> ConversionResult:
    """Convert an already opened :class:`ArraySource` (see :func:`convert_prisma`)."""

    config = config or ConvertConfig()
    out_folder = Path(out_folder)
    out_folder.mkdir(parents=True, exist_ok=True)
    stem = basename or config.basename or Path(source.name).stem
    paths = OutputPaths(out_folder, stem, config.out_format)

    logger.debug("Configuration: %s", config.to_dict())
    conversion = _Conversion(source, paths, config, l2_source)
    logger.info(
        "🛰️  %s: level %s, head %s, georeferencing %s",
        source.name,
        conversion.layout.level,
        conversion.layout.head,
        "projected"
        if conversion.layout.is_projected
        else ("GLT" if config.base_georef else "off"),
    )
    conversion.compute()
    conversion.write()
    logger.info(
        "✅ %s: %d product(s) written, %d skipped",
        source.name,
        len(conversion.result.outputs),
        len(conversion.result.skipped),
    )
    return conversion.result


def convert_prisma(
    in_file: str | Path,
    out_folder: str | Path,
    config: Optional[ConvertConfig] = None,
) -> ConversionResult:
    """Convert a PRISMA HDF5 file into georeferenced rasters and tables.

    Parameters
    ----------
    in_file
        PRISMA L1 or L2 ``.he5`` file.
    out_folder
        Destination folder, created when missing.
    config
        Conversion settings; defaults to VNIR + SWIR GeoTIFFs.

    Returns
    -------
    ConversionResult
        Written files per product and the reasons for any skipped product.
    """

    config = config or ConvertConfig()
    in_path, out_dir = validate_inputs(
        Path(in_file), Path(out_folder), Path(config.l2_file) if config.l2_file else None
    )
    logger.info("🚀 Converting %s -> %s", in_path.name, out_dir)

    with ExitStack() as stack:
        source = stack.enter_context(H5ArraySource(in_path))
        l2_source = (
            stack.enter_context(H5ArraySource(config.l2_file)) if config.l2_file else None
        )
        return convert_source(
            source,
            out_dir,
            config,
            basename=config.basename or in_path.stem,
            l2_source=l2_source,
        )
