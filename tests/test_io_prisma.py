import numpy as np
import pytest

import prisma_builders as pb
from prisma_convert.errors import PrismaConvertError, ProductNotAvailable, ShapeMismatch
from prisma_convert.io.prisma import (
    ProductLayout,
    detect_level,
    read_angles,
    read_error_matrix,
    read_geolocation,
    read_line_times,
    read_mask,
    read_pan,
    read_projection,
    read_smile_matrices,
    read_sun_angles,
    read_swath,
)
from prisma_convert.io.source import H5ArraySource, MappingArraySource


L1 = ProductLayout("L1", "HCO")


def _source(builder=pb.build_l1_product, name=pb.L1_FILENAME, **kwargs):
    arrays, attrs = builder(**kwargs)
    return MappingArraySource(arrays, attrs, name=name)


def test_detect_level_from_attribute_and_filename():
    assert detect_level(_source()) == "L1"
    arrays, attrs = pb.build_l2_product("L2D")
    assert detect_level(MappingArraySource(arrays, attrs)) == "L2D"
    attrs.pop("Processing_Level")
    assert detect_level(MappingArraySource(arrays, attrs, name=pb.L2_FILENAME)) == "L2C"
    with pytest.raises(PrismaConvertError, match="processing level"):
        detect_level(MappingArraySource(arrays, attrs, name="scene.he5"))


def test_read_swath_filters_sorts_and_scales():
    swath = read_swath(_source(), L1, "VNIR")
    assert swath.wavelengths.tolist() == [400.0, 600.0, 700.0]
    assert swath.fwhm.tolist() == [9.0, 11.0, 12.0]
    assert swath.kept_indices.tolist() == pb.VNIR_KEPT.tolist()
    assert swath.data.shape == (pb.ROWS, pb.COLS, 3)
    assert swath.data.dtype == np.float32
    np.testing.assert_allclose(swath.data[:, :, 0], pb.expected_radiance(3))
    np.testing.assert_allclose(swath.data[:, :, 2], pb.expected_radiance(0))
    assert not swath.data.flags.writeable


def test_swath_subset_keeps_file_indices():
    swath = read_swath(_source(), L1, "SWIR")
    sub = swath.subset(np.array([0, 2]))
    assert sub.wavelengths.tolist() == [650.0, 2200.0]
    assert sub.kept_indices.tolist() == [2, 0]


def test_read_swath_missing_head():
    with pytest.raises(ProductNotAvailable):
        read_swath(_source(), ProductLayout("L1", "HRC"), "VNIR")


def test_band_metadata_length_mismatch():
    arrays, attrs = pb.build_l1_product()
    attrs["List_Cw_Vnir"] = attrs["List_Cw_Vnir"][:2]
    with pytest.raises(ShapeMismatch):
        read_swath(MappingArraySource(arrays, attrs), L1, "VNIR")


def test_l2_scaling_uses_min_max():
    arrays, attrs = pb.build_l2_product()
    attrs["L2ScaleVnirMax"] = 65535.0 * 2
    swath = read_swath(MappingArraySource(arrays, attrs), ProductLayout("L2C"), "VNIR")
    np.testing.assert_allclose(swath.data[:, :, 0], pb.expected_radiance(3) * pb.SCALE * 2)


def test_geolocation_paths_per_level():
    lat, lon = read_geolocation(_source(), L1, "SWIR")
    assert lat.shape == (pb.ROWS, pb.COLS)
    arrays, attrs = pb.build_l2_product()
    lat2, _ = read_geolocation(MappingArraySource(arrays, attrs), ProductLayout("L2C"), "VNIR")
    np.testing.assert_array_equal(lat, lat2)
    pan_lat, _ = read_geolocation(_source(), L1, "PAN")
    assert pan_lat.shape == (pb.ROWS * 2, pb.COLS * 2)


def test_error_matrix_follows_kept_bands():
    err = read_error_matrix(_source(), L1, "VNIR", pb.VNIR_KEPT)
    assert err.shape == (pb.ROWS, pb.COLS, 3)
    # file band 0 (700 nm) is the last kept band
    assert err[pb.MASKED_PIXEL[0], pb.MASKED_PIXEL[1]].tolist() == [0, 0, 3]


def test_masks_and_angles_by_level():
    src = _source()
    assert read_mask(src, L1, "cloud")[0].tolist() == [1] * pb.COLS
    with pytest.raises(ProductNotAvailable):
        read_angles(src, L1)

    arrays, attrs = pb.build_l2_product()
    l2 = MappingArraySource(arrays, attrs)
    angles = read_angles(l2, ProductLayout("L2C"))
    assert angles.shape == (pb.ROWS, pb.COLS, 3)
    assert angles[0, 0].tolist() == [5.0, 90.0, 30.0]
    with pytest.raises(ProductNotAvailable):
        read_mask(l2, ProductLayout("L2C"), "GLINT")


def test_pan_times_and_sun():
    src = _source()
    pan = read_pan(src, L1)
    assert pan.data.shape == (pb.ROWS * 2, pb.COLS * 2)
    assert pan.data[0, 1] == pytest.approx(1 / pb.SCALE)
    assert read_line_times(src, L1).size == pb.ROWS
    assert read_sun_angles(src) == (30.5, 140.25)


def test_smile_matrices_transposed_and_band_ordered():
    src = _source(head="HRC")
    layout = ProductLayout("L1", "HRC")
    swath = read_swath(src, layout, "VNIR")
    cw, fwhm = read_smile_matrices(src, layout, swath)
    assert cw.shape == (pb.COLS, 3)
    assert cw[0].tolist() == [400.0, 600.0, 700.0]
    assert cw[2, 0] == pytest.approx(400.2)
    assert fwhm[0].tolist() == [9.0, 11.0, 12.0]

    hco = read_swath(_source(), L1, "VNIR")
    assert read_smile_matrices(_source(), L1, hco) == (None, None)


def test_projection_attributes():
    arrays, attrs = pb.build_l2_product("L2D")
    ul, ur, ll, epsg = read_projection(MappingArraySource(arrays, attrs))
    assert ul == (500015.0, 5000015.0)
    assert epsg == 32632


def test_h5_source_matches_mapping(l1_file):
    with H5ArraySource(l1_file) as src:
        assert src.has("HDFEOS/SWATHS/PRS_L1_HCO/Data Fields/VNIR_Cube")
        assert not src.has("HDFEOS/SWATHS/PRS_L1_HCO")
        assert detect_level(src) == "L1"
        swath = read_swath(src, L1, "VNIR")
        assert swath.wavelengths.tolist() == [400.0, 600.0, 700.0]
        assert src.attr("Missing", None) is None
        with pytest.raises(KeyError):
            src.attr("Missing")
