"""Conversion settings threaded through every stage of a run."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple

from .mask import NODATA
from .merge import Priority

__all__ = ["ConvertConfig", "load_config", "PRODUCT_FLAGS", "OUTPUT_FORMATS"]

PRODUCT_FLAGS = (
    "vnir",
    "swir",
    "full",
    "pan",
    "angles",
    "cloud",
    "glint",
    "lc",
    "err_matrix",
    "latlon",
)
OUTPUT_FORMATS = {"GTIFF": "GTiff", "ENVI": "ENVI"}
_HEADS = ("HCO", "HRC")


def _float_tuple(value: Any, key: str) -> Optional[Tuple[float, ...]]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = [value]
    try:
        return tuple(float(item) for item in value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{key}' must be a list of wavelengths in nm, got {value!r}") from exc


@dataclass(frozen=True)
class ConvertConfig:
    """Immutable settings for one PRISMA conversion."""

    vnir: bool = True
    swir: bool = True
    full: bool = False
    pan: bool = False
    angles: bool = False
    cloud: bool = False
    glint: bool = False
    lc: bool = False
    err_matrix: bool = False
    latlon: bool = False

    source: str = "HCO"
    base_georef: bool = True
    join_priority: str = Priority.VNIR.value
    selbands_vnir: Optional[Tuple[float, ...]] = None
    selbands_swir: Optional[Tuple[float, ...]] = None
    apply_errmatrix: bool = False
    err_threshold: float = 1.0
    nodata: float = NODATA
    pixel_size: Optional[float] = None
    geometry_tolerance: float = 0.01
    out_format: str = "GTiff"
    atcor: bool = False
    atcor_columns: Tuple[int, ...] = ()
    indexes: Tuple[str, ...] = ()
    l2_file: Optional[str] = None
    basename: Optional[str] = None
    overwrite: bool = False

    def __post_init__(self) -> None:
        source = str(self.source).strip().upper()
        if source not in _HEADS:
            raise ValueError(f"source must be one of {_HEADS}, got {self.source!r}")
        object.__setattr__(self, "source", source)

        object.__setattr__(self, "join_priority", Priority.parse(self.join_priority).value)

        fmt = OUTPUT_FORMATS.get(str(self.out_format).strip().upper())
        if fmt is None:
            raise ValueError(
                f"out_format must be one of {sorted(OUTPUT_FORMATS.values())}, got {self.out_format!r}"
            )
        object.__setattr__(self, "out_format", fmt)

        object.__setattr__(self, "selbands_vnir", _float_tuple(self.selbands_vnir, "selbands_vnir"))
        object.__setattr__(self, "selbands_swir", _float_tuple(self.selbands_swir, "selbands_swir"))

        columns = tuple(int(col) for col in (self.atcor_columns or ()))
        if any(col < 0 for col in columns):
            raise ValueError(f"atcor_columns must be non-negative, got {columns}")
        object.__setattr__(self, "atcor_columns", columns)

        indexes = self.indexes
        if isinstance(indexes, str):
            indexes = (indexes,)
        object.__setattr__(self, "indexes", tuple(str(item) for item in indexes or ()))

        if self.pixel_size is not None and not float(self.pixel_size) > 0:
            raise ValueError(f"pixel_size must be positive, got {self.pixel_size!r}")
        if not float(self.geometry_tolerance) >= 0:
            raise ValueError(
                f"geometry_tolerance must be >= 0, got {self.geometry_tolerance!r}"
            )
        object.__setattr__(self, "err_threshold", float(self.err_threshold))
        object.__setattr__(self, "nodata", float(self.nodata))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ConvertConfig":
        """Build a config from plain data (e.g. parsed JSON); unknown keys fail."""

        known = {field.name for field in fields(cls)}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown configuration key(s): {', '.join(unknown)}")
        return cls(**dict(mapping))

    def with_overrides(self, **overrides: Any) -> "ConvertConfig":
        """Return a copy with non-``None`` overrides applied."""

        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self

    @property
    def requested_products(self) -> Tuple[str, ...]:
        return tuple(flag.upper() for flag in PRODUCT_FLAGS if getattr(self, flag))

    def to_dict(self) -> dict:
        return asdict(self)


def load_config(path: str | Path) -> ConvertConfig:
    """Read a JSON configuration file."""

    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as f:
        payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError(f"{config_path} must contain a JSON object, got {type(payload).__name__}")
    return ConvertConfig.from_mapping(payload)
