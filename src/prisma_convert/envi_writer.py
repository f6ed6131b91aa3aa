"""
ENVI BSQ writer for geocoded PRISMA products.

Portions of this module are adapted from HyTools: Hyperspectral image
processing library (GPLv3).
HyTools Authors: Adam Chlus, Zhiwei Ye, Philip Townsend.
This adapted version handles georeferenced and ungeoreferenced grids and
multiple ENVI data types.
"""

from __future__ import annotations

import numpy as np
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .geometry import OutputGridSpec

ENVI_DATA_TYPES = {
    np.dtype("uint8"): 1,
    np.dtype("int16"): 2,
    np.dtype("int32"): 3,
    np.dtype("float32"): 4,
    np.dtype("float64"): 5,
    np.dtype("uint16"): 12,
    np.dtype("uint32"): 13,
    np.dtype("int64"): 14,
    np.dtype("uint64"): 15,
}
_ENVI_CODES = {code: dtype for dtype, code in ENVI_DATA_TYPES.items()}


def _to_python_scalar(value: Any) -> Union[int, float, str]:
    """Convert numpy scalar types into native Python numbers or strings."""
    if isinstance(value, (np.generic,)):
        return value.item()
    return value


def _format_envi_list(values: Sequence[Any]) -> str:
    """Format a sequence of values into an ENVI-style list string."""
    formatted: List[str] = []
    for value in values:
        scalar = _to_python_scalar(value)
        if isinstance(scalar, float):
            formatted.append(repr(float(scalar)))
        else:
            formatted.append(str(scalar))
    return "{" + ", ".join(formatted) + "}"


def envi_map_info(grid: OutputGridSpec) -> Optional[List[Any]]:
    """Return the ENVI ``map info`` list for ``grid`` (``None`` if ungeoreferenced).

    Geographic WGS-84 and UTM/WGS-84 grids get their named ENVI projections;
    anything else is written as ``Arbitrary`` and relies on the
    ``coordinate system string``.
    """

    if not grid.georeferenced:
        return None
    ulx, xres, _, uly, _, yres = grid.transform  # type: ignore[misc]
    core = [1.0, 1.0, ulx, uly, xres, -yres]

    epsg = None
    crs = str(grid.crs)
    if crs.upper().startswith("EPSG:"):
        epsg = int(crs.split(":", 1)[1])

    if epsg == 4326:
        return ["Geographic Lat/Lon", *core, "WGS-84", "units=Degrees"]
    if epsg is not None and (32601 <= epsg <= 32660 or 32701 <= epsg <= 32760):
        zone = epsg % 100
        hemisphere = "North" if epsg < 32700 else "South"
        return ["UTM", *core, zone, hemisphere, "WGS-84", "units=Meters"]
    return ["Arbitrary", *core]


def build_envi_header_text(header_dict: Dict) -> str:
    """
    Build the ENVI .hdr file text from a header_dict.

    Attribution:
        Adapted from hytools.io.envi.write_envi_header() (GPLv3).
        HyTools Authors: Adam Chlus, Zhiwei Ye, Philip Townsend.

    Required keys: ``samples``, ``lines``, ``bands``, ``data type``,
    ``interleave`` (``bsq``) and ``byte order``. Optional keys: ``description``,
    ``map info``, ``coordinate system string``, ``band names``, ``wavelength``,
    ``fwhm``, ``wavelength units``, ``data ignore value``.
    """

    lines: List[str] = ["ENVI"]

    description = header_dict.get("description")
    if description is not None:
        lines.append(f"description = {{ {description} }}")

    def _req_int(key: str) -> int:
        value = _to_python_scalar(header_dict[key])
        return int(value)

    samples = _req_int("samples")
    n_lines = _req_int("lines")
    bands = _req_int("bands")
    data_type = _req_int("data type")
    interleave = str(header_dict["interleave"]).lower()
    byte_order = _req_int("byte order")

    lines.extend(
        [
            f"samples = {samples}",
            f"lines   = {n_lines}",
            f"bands   = {bands}",
            "header offset = 0",
            f"data type = {data_type}",
            f"interleave = {interleave}",
            f"byte order = {byte_order}",
        ]
    )

    map_info = header_dict.get("map info")
    if map_info is not None:
        if isinstance(map_info, str):
            map_info_line = map_info.strip()
            if not map_info_line.startswith("{"):
                map_info_line = "{" + map_info_line + "}"
        else:
            map_info_line = _format_envi_list(map_info)  # type: ignore[arg-type]
        lines.append(f"map info = {map_info_line}")

    cs_string = header_dict.get("coordinate system string")
    if cs_string:
        lines.append(f"coordinate system string = {{{cs_string}}}")

    if "data ignore value" in header_dict:
        ignore = _to_python_scalar(header_dict["data ignore value"])
        lines.append(f"data ignore value = {ignore}")

    band_names = header_dict.get("band names")
    if band_names:
        lines.append(f"band names = {_format_envi_list(band_names)}")

    wavelength = header_dict.get("wavelength")
    if wavelength is not None and len(wavelength):
        lines.append(f"wavelength = {_format_envi_list(wavelength)}")
        fwhm = header_dict.get("fwhm")
        if fwhm is not None and len(fwhm):
            lines.append(f"fwhm = {_format_envi_list(fwhm)}")
        units = header_dict.get("wavelength units", "Nanometers")
        lines.append(f"wavelength units = {units}")

    return "\n".join(lines) + "\n"


class EnviWriter:
    """
    EnviWriter assembles a geocoded cube into a BSQ ENVI file.

    Portions adapted from hytools.io.envi (GPLv3).
    HyTools Authors: Adam Chlus, Zhiwei Ye, Philip Townsend.

    Usage pattern:

        writer = EnviWriter(out_stem=Path("/path/to/scene_FULL"), header_dict=header)
        writer.write_chunk(cube, 0, 0)
        writer.close()

    After close(), ``<out_stem>.img`` and ``<out_stem>.hdr`` exist.
    """

    def __init__(self, out_stem: Path, header_dict: Dict) -> None:
        self.out_stem = Path(out_stem)
        self.header_dict = dict(header_dict)

        interleave = str(self.header_dict.get("interleave", "")).lower()
        if interleave != "bsq":
            raise RuntimeError("EnviWriter only supports BSQ interleave")

        try:
            self.samples = int(_to_python_scalar(self.header_dict["samples"]))
            self.lines = int(_to_python_scalar(self.header_dict["lines"]))
            self.bands = int(_to_python_scalar(self.header_dict["bands"]))
            code = int(_to_python_scalar(self.header_dict["data type"]))
        except KeyError as exc:
            raise KeyError(
                "header_dict must contain 'samples', 'lines', 'bands' and 'data type'"
            ) from exc
        if code not in _ENVI_CODES:
            raise RuntimeError(f"Unsupported ENVI data type code {code}")
        self.dtype = _ENVI_CODES[code].newbyteorder("<")

        img_path = Path(f"{self.out_stem}.img")
        shape = (self.bands, self.lines, self.samples)
        self._mm = np.memmap(img_path, dtype=self.dtype, mode="w+", shape=shape, order="C")

    def write_chunk(self, chunk: np.ndarray, ys: int, xs: int) -> None:
        """
        Write a ``(y_size, x_size, bands)`` chunk into the BSQ memmap at
        row offset ``ys`` and column offset ``xs``, band by band.
        """

        if chunk.ndim == 2:
            chunk = chunk[:, :, np.newaxis]
        if chunk.ndim != 3:
            raise RuntimeError("chunk must be a 2D or 3D array")
        if chunk.dtype != self.dtype:
            raise RuntimeError(f"chunk must have dtype {self.dtype}, got {chunk.dtype}")

        y_size, x_size, bands_local = chunk.shape
        if bands_local != self.bands:
            raise RuntimeError(
                f"Chunk band dimension {bands_local} does not match expected {self.bands}"
            )

        y_slice = slice(ys, ys + y_size)
        x_slice = slice(xs, xs + x_size)

        for band_idx in range(self.bands):
            self._mm[band_idx, y_slice, x_slice] = chunk[:, :, band_idx]

    def close(self) -> None:
        """Flush the memmap and write the ``.hdr`` next to the ``.img``."""

        self._mm.flush()
        del self._mm
        header_text = build_envi_header_text(self.header_dict)
        hdr_path = Path(f"{self.out_stem}.hdr")
        hdr_path.write_text(header_text, encoding="utf-8")
