from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from prisma_convert.envi_writer import build_envi_header_text, envi_map_info
from prisma_convert.geometry import OutputGridSpec
from prisma_convert.naming import OutputPaths, product_paths
from prisma_convert.writers import (
    RasterProduct,
    write_raster,
    write_sun_geometry,
    write_wavelength_table,
)

GEO_GRID = OutputGridSpec(3, 4, x_origin=10.0, y_origin=45.0, pixel_x=0.01, pixel_y=0.005, crs="EPSG:4326")


def test_product_paths_naming(tmp_path):
    assert product_paths(tmp_path, "scene", "full") == (tmp_path / "scene_FULL.tif",)
    assert product_paths(tmp_path, "scene", "VNIR", "ENVI") == (
        tmp_path / "scene_VNIR.img",
        tmp_path / "scene_VNIR.hdr",
    )
    paths = OutputPaths(tmp_path, "scene")
    assert paths.wavelengths("FULL").name == "scene_FULL.wvl"
    assert paths.atcor_column(12).name == "scene_ATCOR_wl_col12.wvl"
    assert paths.atcor_nominal.name == "scene_ATCOR_wl_nominal.wvl"
    assert paths.sun_geometry.name == "scene_sun_geometry.txt"
    with pytest.raises(ValueError):
        product_paths(tmp_path, "scene", "VNIR", "netcdf")


def test_product_paths_with_dotted_basename(tmp_path):
    vnir = product_paths(tmp_path, "site.v2", "VNIR", "ENVI")
    swir = product_paths(tmp_path, "site.v2", "SWIR", "ENVI")
    assert [p.name for p in vnir] == ["site.v2_VNIR.img", "site.v2_VNIR.hdr"]
    assert set(vnir).isdisjoint(swir)
    assert product_paths(tmp_path, "site.v2", "FULL") == (tmp_path / "site.v2_FULL.tif",)


def test_map_info_variants():
    assert envi_map_info(GEO_GRID)[0] == "Geographic Lat/Lon"
    assert envi_map_info(GEO_GRID)[3:7] == [10.0, 45.0, 0.01, 0.005]
    utm = OutputGridSpec(2, 2, 500000.0, 5000030.0, 30.0, 30.0, "EPSG:32733")
    info = envi_map_info(utm)
    assert info[0] == "UTM" and info[7:9] == [33, "South"]
    assert envi_map_info(OutputGridSpec.ungeoreferenced(2, 2)) is None


def test_header_without_map_info():
    text = build_envi_header_text(
        {
            "samples": 4,
            "lines": 3,
            "bands": 2,
            "data type": 4,
            "interleave": "bsq",
            "byte order": 0,
            "wavelength": [500.0, 600.0],
        }
    )
    assert text.startswith("ENVI\n")
    assert "map info" not in text
    assert "wavelength = {500.0, 600.0}" in text
    assert "wavelength units = Nanometers" in text


def test_envi_round_trip(tmp_path):
    pytest.importorskip("pyproj")
    data = np.arange(24, dtype=np.float32).reshape(3, 4, 2)
    product = RasterProduct(
        "FULL", data, GEO_GRID, wavelengths=np.array([500.0, 600.0]), fwhm=np.array([10.0, 11.0])
    )
    img, hdr = write_raster(product, tmp_path, "scene", "ENVI")
    header = hdr.read_text()
    assert "map info = {Geographic Lat/Lon" in header
    assert "coordinate system string = {GEOGCS" in header
    assert "fwhm = {10.0, 11.0}" in header
    assert "data ignore value = -9999.0" in header

    stored = np.fromfile(img, dtype="<f4").reshape(2, 3, 4)
    np.testing.assert_array_equal(stored[1], data[:, :, 1])


def test_gtiff_georeferenced(tmp_path):
    rasterio = pytest.importorskip("rasterio")
    data = np.arange(12, dtype=np.float32).reshape(3, 4)
    product = RasterProduct("PAN", data, GEO_GRID, band_names=["PAN"])
    (path,) = write_raster(product, tmp_path, "scene")
    with rasterio.open(path) as src:
        assert src.count == 1
        assert src.crs.to_epsg() == 4326
        assert src.transform.c == pytest.approx(10.0)
        assert src.transform.e == pytest.approx(-0.005)
        assert src.nodata == -9999.0
        assert src.descriptions == ("PAN",)
        np.testing.assert_array_equal(src.read(1), data)


def test_gtiff_uint8_promoted_for_nodata(tmp_path):
    rasterio = pytest.importorskip("rasterio")
    grid = OutputGridSpec.ungeoreferenced(2, 2)
    product = RasterProduct("CLOUD", np.ones((2, 2), dtype=np.uint8), grid)
    (path,) = write_raster(product, tmp_path, "scene")
    with rasterio.open(path) as src:
        assert src.dtypes[0] == "float32"


def test_raster_product_grid_mismatch():
    with pytest.raises(ValueError):
        RasterProduct("VNIR", np.zeros((2, 2, 1)), GEO_GRID)


def test_ancillary_tables(tmp_path):
    wvl = write_wavelength_table(tmp_path / "x.wvl", [500.0, 600.0], [10.0, 12.0])
    frame = pd.read_csv(wvl, sep="\t")
    assert list(frame.columns) == ["band", "wavelength", "fwhm"]
    assert frame["band"].tolist() == [1, 2]
    assert frame["fwhm"].tolist() == [10.0, 12.0]

    sun = write_sun_geometry(tmp_path / "sun.txt", [1.0, 2.0, 3.0], 30.0, 150.0)
    frame = pd.read_csv(sun, sep="\t")
    assert list(frame.columns) == ["line", "time", "sun_zenith", "sun_azimuth"]
    assert len(frame) == 3
    assert (frame["sun_azimuth"] == 150.0).all()

    with pytest.raises(ValueError):
        write_wavelength_table(tmp_path / "bad.wvl", [500.0], [1.0, 2.0])
