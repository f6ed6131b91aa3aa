import numpy as np
import pytest

from prisma_convert.errors import ShapeMismatch
from prisma_convert.mask import NODATA, apply_mask, error_per_pixel


def test_threshold_is_strict_and_all_bands_nulled():
    cube = np.ones((2, 2, 3), dtype=np.float32)
    err = np.array([[0, 1], [2, 0]], dtype=np.uint8)
    out = apply_mask(cube, err, threshold=1)
    assert (out[1, 0] == NODATA).all()
    assert (out[0, 1] == 1).all()
    assert (out[0, 0] == 1).all()


def test_input_is_not_mutated():
    cube = np.ones((2, 2), dtype=np.float32)
    err = np.full((2, 2), 5)
    apply_mask(cube, err)
    assert (cube == 1).all()


def test_per_band_matrix_reduced_to_pixel_max():
    err = np.zeros((2, 2, 3), dtype=np.uint8)
    err[0, 1, 2] = 4
    assert error_per_pixel(err).tolist() == [[0, 4], [0, 0]]

    out = apply_mask(np.zeros((2, 2, 3), dtype=np.float32), err, nodata=-1.0)
    assert out[0, 1].tolist() == [-1.0, -1.0, -1.0]
    assert out[0, 0].tolist() == [0.0, 0.0, 0.0]


def test_shape_mismatch():
    with pytest.raises(ShapeMismatch, match="mask"):
        apply_mask(np.zeros((3, 3, 2)), np.zeros((2, 3)))
