from __future__ import annotations

from pathlib import Path

import pytest

from prisma_convert.errors import PreflightError, PrismaConvertError
from prisma_convert.validations.preflight import validate_inputs


def test_validate_inputs_missing(tmp_path: Path) -> None:
    with pytest.raises(PreflightError, match="Input not found"):
        validate_inputs(tmp_path / "nope.he5", tmp_path / "out")


def test_validate_inputs_missing_l2(tmp_path: Path) -> None:
    in_file = tmp_path / "scene.he5"
    in_file.write_bytes(b"")
    with pytest.raises(PreflightError, match="l2_file"):
        validate_inputs(in_file, tmp_path / "out", tmp_path / "l2.he5")


def test_validate_inputs_out_folder_is_file(tmp_path: Path) -> None:
    in_file = tmp_path / "scene.he5"
    in_file.write_bytes(b"")
    blocker = tmp_path / "out"
    blocker.write_text("x")
    with pytest.raises(PrismaConvertError):
        validate_inputs(in_file, blocker)


def test_validate_inputs_creates_out_folder(tmp_path: Path) -> None:
    in_file = tmp_path / "scene.he5"
    in_file.write_bytes(b"")
    in_path, out = validate_inputs(in_file, tmp_path / "a" / "b")
    assert out.is_dir()
    assert in_path == in_file.resolve()
