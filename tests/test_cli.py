from pathlib import Path

import pytest

from prisma_builders import L1_FILENAME
from prisma_convert import cli

STEM = Path(L1_FILENAME).stem


def test_cli_converts_requested_products(l1_file, tmp_path):
    pytest.importorskip("pyproj")
    out = tmp_path / "out"
    cli.main(
        [
            str(l1_file),
            str(out),
            "--products",
            "vnir",
            "cloud",
            "--format",
            "ENVI",
            "--apply-errmatrix",
        ]
    )
    assert (out / f"{STEM}_VNIR.img").exists()
    assert (out / f"{STEM}_CLOUD.hdr").exists()
    assert not (out / f"{STEM}_SWIR.img").exists()


def test_config_file_and_overrides(tmp_path):
    config_path = tmp_path / "config.json"
    config_path.write_text('{"full": true, "join_priority": "SWIR", "err_threshold": 3}')
    args = cli._build_parser().parse_args(
        ["in.he5", "out", "--config", str(config_path), "--join-priority", "VNIR"]
    )
    config = cli.config_from_args(args)
    assert config.full is True
    assert config.join_priority == "VNIR"
    assert config.err_threshold == 3.0


def test_products_flag_replaces_defaults():
    args = cli._build_parser().parse_args(["in.he5", "out", "--products", "PAN"])
    config = cli.config_from_args(args)
    assert config.requested_products == ("PAN",)


def test_missing_input_exits_with_message(tmp_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.main([str(tmp_path / "missing.he5"), str(tmp_path / "out")])
    assert excinfo.value.code == 2
    assert "[prisma-convert]" in capsys.readouterr().err


def test_bad_config_exits(tmp_path, capsys):
    config_path = tmp_path / "config.json"
    config_path.write_text('{"bogus": 1}')
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["in.he5", str(tmp_path), "--config", str(config_path)])
    assert excinfo.value.code == 2
    assert "invalid configuration" in capsys.readouterr().err
