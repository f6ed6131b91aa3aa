from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Tuple

from ..errors import PreflightError


def _exists(p: Path) -> bool:
    try:
        return p.exists()
    except OSError:
        return False


def require_paths(paths: Mapping[str, Path], label: str) -> None:
    missing = [key for key, value in paths.items() if not _exists(Path(value))]
    if missing:
        raise PreflightError(f"Missing {label}: {', '.join(missing)}")


def validate_inputs(
    input_path: Path,
    out_folder: Path,
    l2_file: Optional[Path] = None,
) -> Tuple[Path, Path]:
    """Check the input file(s) and prepare ``out_folder``; return both resolved."""

    input_path = Path(input_path)
    if not _exists(input_path) or not input_path.is_file():
        raise PreflightError(f"Input not found: {input_path}")
    if l2_file is not None:
        require_paths({"l2_file": Path(l2_file)}, "L2 companion file")

    out_folder = Path(out_folder)
    if _exists(out_folder) and not out_folder.is_dir():
        raise PreflightError(f"Output folder is not a directory: {out_folder}")
    try:
        out_folder.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise PreflightError(f"Cannot create output folder {out_folder}: {exc}") from exc
    return input_path.resolve(), out_folder.resolve()
