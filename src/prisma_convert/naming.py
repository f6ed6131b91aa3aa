"""Canonical output file names for a converted PRISMA scene."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

__all__ = ["OutputPaths", "product_paths"]

_EXTENSIONS = {"GTiff": (".tif",), "ENVI": (".img", ".hdr")}


def product_paths(
    out_folder: str | Path, basename: str, product: str, out_format: str = "GTiff"
) -> Tuple[Path, ...]:
    """Return every file written for ``product`` (raster first, sidecars after)."""

    try:
        extensions = _EXTENSIONS[out_format]
    except KeyError as exc:
        raise ValueError(f"Unsupported output format {out_format!r}") from exc
    stem = f"{basename}_{product.upper()}"
    return tuple(Path(out_folder) / f"{stem}{ext}" for ext in extensions)


@dataclass(frozen=True)
class OutputPaths:
    """Path helper for all outputs of one input scene."""

    out_folder: Path
    basename: str
    out_format: str = "GTiff"

    def __post_init__(self) -> None:
        object.__setattr__(self, "out_folder", Path(self.out_folder))

    def raster(self, product: str) -> Tuple[Path, ...]:
        return product_paths(self.out_folder, self.basename, product, self.out_format)

    def wavelengths(self, product: str) -> Path:
        return self.out_folder / f"{self.basename}_{product.upper()}.wvl"

    @property
    def sun_geometry(self) -> Path:
        return self.out_folder / f"{self.basename}_sun_geometry.txt"

    @property
    def atcor_nominal(self) -> Path:
        return self.out_folder / f"{self.basename}_ATCOR_wl_nominal.wvl"

    def atcor_column(self, column: int) -> Path:
        return self.out_folder / f"{self.basename}_ATCOR_wl_col{int(column)}.wvl"
