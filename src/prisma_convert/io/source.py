"""Typed array sources feeding the conversion engine.

The engine only needs three things from an input product: whether a dataset
exists, its values as a numpy array, and the value of a global attribute.
Keeping that surface narrow lets tests drive the whole pipeline from plain
dictionaries.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import numpy as np

from .._optional import require_h5py

logger = logging.getLogger(__name__)

__all__ = ["ArraySource", "H5ArraySource", "MappingArraySource", "normalise_attr"]

_MISSING = object()


@runtime_checkable
class ArraySource(Protocol):
    name: str

    def has(self, name: str) -> bool:
        ...

    def array(self, name: str) -> np.ndarray:
        ...

    def attr(self, name: str, default: Any = ...) -> Any:
        ...


def normalise_attr(value: Any) -> Any:
    """Decode byte strings and unwrap single-element arrays."""

    if isinstance(value, (bytes, np.bytes_)):
        return value.decode("utf-8").strip()
    if isinstance(value, np.ndarray):
        if value.size == 1:
            return normalise_attr(value.reshape(-1)[0])
        if value.dtype.kind == "S":
            return np.char.decode(value, "utf-8")
        return value
    if isinstance(value, np.generic):
        return value.item()
    return value


class H5ArraySource:
    """Read-only HDF5 array source backed by :mod:`h5py`."""

    def __init__(self, path: str | Path) -> None:
        h5py = require_h5py()
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(self.path)
        self.name = self.path.name
        self._file = h5py.File(self.path, "r")
        logger.debug("Opened %s", self.path)

    def has(self, name: str) -> bool:
        h5py = require_h5py()
        obj = self._file.get(name)
        return isinstance(obj, h5py.Dataset)

    def array(self, name: str) -> np.ndarray:
        if not self.has(name):
            raise KeyError(f"Dataset '{name}' not found in {self.name}")
        return np.asarray(self._file[name][()])

    def attr(self, name: str, default: Any = _MISSING) -> Any:
        if name in self._file.attrs:
            return normalise_attr(self._file.attrs[name])
        if default is _MISSING:
            raise KeyError(f"Attribute '{name}' not found in {self.name}")
        return default

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "H5ArraySource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MappingArraySource:
    """In-memory array source for tests and programmatic use."""

    def __init__(
        self,
        arrays: Mapping[str, Any],
        attrs: Optional[Mapping[str, Any]] = None,
        name: str = "memory",
    ) -> None:
        self._arrays = {key.strip("/"): np.asarray(value) for key, value in arrays.items()}
        self._attrs = dict(attrs or {})
        self.name = name

    def has(self, name: str) -> bool:
        return name.strip("/") in self._arrays

    def array(self, name: str) -> np.ndarray:
        try:
            return self._arrays[name.strip("/")]
        except KeyError as exc:
            raise KeyError(f"Dataset '{name}' not found in {self.name}") from exc

    def attr(self, name: str, default: Any = _MISSING) -> Any:
        if name in self._attrs:
            return normalise_attr(self._attrs[name])
        if default is _MISSING:
            raise KeyError(f"Attribute '{name}' not found in {self.name}")
        return default

    def close(self) -> None:
        pass

    def __enter__(self) -> "MappingArraySource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
