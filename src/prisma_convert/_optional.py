"""Helpers for heavy I/O dependencies imported on first use."""
from __future__ import annotations


def _missing(package: str) -> RuntimeError:
    return RuntimeError(
        "Dependency '{package}' is required for this feature. "
        "Reinstall prisma-convert, e.g. `pip install prisma-convert`, or install "
        "`{package}` directly.".format(package=package)
    )


def require_rasterio():
    try:
        import rasterio  # type: ignore
    except Exception as exc:  # pragma: no cover - exercised in lite environments
        raise _missing("rasterio") from exc
    return rasterio


def require_h5py():
    try:
        import h5py  # type: ignore
    except Exception as exc:  # pragma: no cover - exercised in lite environments
        raise _missing("h5py") from exc
    return h5py


def require_pyproj():
    try:
        import pyproj  # type: ignore
    except Exception as exc:  # pragma: no cover - exercised in lite environments
        raise _missing("pyproj") from exc
    return pyproj
