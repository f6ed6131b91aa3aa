"""Band-math spectral indexes evaluated on geocoded cubes.

Formulas reference bands by wavelength with ``b<nm>`` tokens, e.g.
``(b860 - b670) / (b860 + b670)``. Each token resolves to the nearest band
of the cube. Only arithmetic is allowed: ``+ - * / **``, unary signs,
parentheses and numeric literals.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from typing import Dict, Iterable, Tuple

import importlib.resources as resources
import numpy as np

from .bands import nearest_band
from .mask import NODATA

logger = logging.getLogger(__name__)

__all__ = [
    "load_index_catalogue",
    "resolve_index",
    "formula_wavelengths",
    "compute_index",
]

_BAND_TOKEN = re.compile(r"^b(\d+)$")
_BINARY_OPS = {
    ast.Add: np.add,
    ast.Sub: np.subtract,
    ast.Mult: np.multiply,
    ast.Div: np.divide,
    ast.Pow: np.power,
}
_UNARY_OPS = {ast.USub: np.negative, ast.UAdd: np.positive}


def load_index_catalogue() -> Dict[str, str]:
    """Return the packaged ``{NAME: formula}`` catalogue."""

    with resources.files("prisma_convert.data").joinpath("indexes.json").open(
        "r", encoding="utf-8"
    ) as f:
        catalogue = json.load(f)
    return {str(name).upper(): str(formula) for name, formula in catalogue.items()}


def resolve_index(spec: str) -> Tuple[str, str]:
    """Turn ``NAME`` or ``NAME=formula`` into ``(NAME, formula)``."""

    spec = spec.strip()
    if "=" in spec:
        name, formula = (part.strip() for part in spec.split("=", 1))
        if not name or not formula:
            raise ValueError(f"Custom index must look like NAME=formula, got {spec!r}")
        _parse(formula)
        return name.upper(), formula

    catalogue = load_index_catalogue()
    try:
        return spec.upper(), catalogue[spec.upper()]
    except KeyError as exc:
        raise ValueError(
            f"Unknown index {spec!r}; known: {', '.join(sorted(catalogue))}. "
            "Pass NAME=formula for a custom one."
        ) from exc


def _parse(formula: str) -> ast.Expression:
    try:
        tree = ast.parse(formula, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Invalid index formula {formula!r}: {exc.msg}") from exc
    for node in ast.walk(tree):
        if isinstance(node, (ast.Expression, ast.Load)):
            continue
        if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
            continue
        if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
            continue
        if isinstance(node, tuple(_BINARY_OPS) + tuple(_UNARY_OPS)):
            continue
        if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
            continue
        if isinstance(node, ast.Name) and _BAND_TOKEN.match(node.id):
            continue
        raise ValueError(
            f"Index formula {formula!r} contains unsupported element "
            f"{type(node).__name__}"
        )
    return tree


def formula_wavelengths(formula: str) -> Tuple[float, ...]:
    """Wavelengths (nm) referenced by ``formula``, in order of first use."""

    tree = _parse(formula)
    seen: Dict[float, None] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            seen[float(_BAND_TOKEN.match(node.id).group(1))] = None
    return tuple(seen)


def compute_index(
    cube: np.ndarray,
    wavelengths: Iterable[float],
    formula: str,
    nodata: float = NODATA,
) -> np.ndarray:
    """Evaluate ``formula`` over a ``(rows, columns, bands)`` cube.

    Pixels that are no-data in any referenced band, or whose result is not
    finite, are set to ``nodata``. Returns a float32 ``(rows, columns)`` array.
    """

    data = np.asarray(cube)
    if data.ndim != 3:
        raise ValueError(f"Index cube must be (rows, columns, bands), got {data.shape}")
    wl = np.asarray(list(wavelengths), dtype=np.float64)
    if wl.size != data.shape[2]:
        raise ValueError(
            f"{wl.size} wavelengths supplied for a cube with {data.shape[2]} bands"
        )

    tree = _parse(formula)
    invalid = np.zeros(data.shape[:2], dtype=bool)
    layers: Dict[str, np.ndarray] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id not in layers:
            target = float(_BAND_TOKEN.match(node.id).group(1))
            idx = nearest_band(target, wl)
            layer = data[:, :, idx].astype(np.float64)
            invalid |= layer == nodata
            layers[node.id] = layer
            logger.debug("%s -> band %d (%.2f nm)", node.id, idx, wl[idx])

    def _eval(node: ast.AST):
        if isinstance(node, ast.Expression):
            return _eval(node.body)
        if isinstance(node, ast.BinOp):
            return _BINARY_OPS[type(node.op)](_eval(node.left), _eval(node.right))
        if isinstance(node, ast.UnaryOp):
            return _UNARY_OPS[type(node.op)](_eval(node.operand))
        if isinstance(node, ast.Constant):
            return float(node.value)
        return layers[node.id]

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        result = np.broadcast_to(_eval(tree), data.shape[:2]).astype(np.float64)

    invalid |= ~np.isfinite(result)
    out = result.astype(np.float32)
    out[invalid] = nodata
    return out
