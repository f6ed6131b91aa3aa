import json

import pytest

from prisma_convert.config import ConvertConfig, load_config


def test_defaults():
    config = ConvertConfig()
    assert config.requested_products == ("VNIR", "SWIR")
    assert config.out_format == "GTiff"
    assert config.join_priority == "VNIR"
    assert config.nodata == -9999.0


def test_normalisation():
    config = ConvertConfig(
        source="hrc",
        join_priority="swir",
        out_format="envi",
        selbands_vnir=[500, 600],
        atcor_columns=[0, "5"],
        indexes="NDVI",
    )
    assert config.source == "HRC"
    assert config.join_priority == "SWIR"
    assert config.out_format == "ENVI"
    assert config.selbands_vnir == (500.0, 600.0)
    assert config.atcor_columns == (0, 5)
    assert config.indexes == ("NDVI",)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"source": "PCO"},
        {"join_priority": "PAN"},
        {"out_format": "netcdf"},
        {"pixel_size": 0},
        {"atcor_columns": [-1]},
        {"geometry_tolerance": -0.1},
    ],
)
def test_invalid_values(kwargs):
    with pytest.raises(ValueError):
        ConvertConfig(**kwargs)


def test_from_mapping_rejects_unknown_keys():
    with pytest.raises(ValueError, match="bogus"):
        ConvertConfig.from_mapping({"vnir": True, "bogus": 1})


def test_load_config_and_overrides(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"full": True, "swir": False, "indexes": ["NDVI"]}))
    config = load_config(path)
    assert config.requested_products == ("VNIR", "FULL")
    assert config.indexes == ("NDVI",)

    updated = config.with_overrides(overwrite=True, out_format=None)
    assert updated.overwrite is True
    assert updated.out_format == "GTiff"
    assert config.overwrite is False
