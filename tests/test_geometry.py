import math

import numpy as np
import pytest

from prisma_builders import regular_geolocation
from prisma_convert.errors import GeometryMismatch, ShapeMismatch
from prisma_convert.geometry import (
    GEOGRAPHIC_CRS,
    OutputGridSpec,
    apply_table,
    build_grid,
    check_geometry,
    estimate_pixel_size,
    flip_rows,
    grid_from_corners,
)
from prisma_convert.mask import NODATA


def test_regular_swath_maps_one_to_one():
    lat, lon = regular_geolocation(rows=6, cols=5)
    cube = np.random.default_rng(0).random((6, 5, 3)).astype(np.float32)

    table, grid = build_grid(lat, lon, cube.shape)
    assert grid.shape == (6, 5)
    assert grid.crs == GEOGRAPHIC_CRS
    assert table.valid.all()
    np.testing.assert_array_equal(table.source_row, np.repeat(np.arange(6)[:, None], 5, axis=1))
    np.testing.assert_array_equal(table.source_col, np.repeat(np.arange(5)[None, :], 6, axis=0))

    out = table.apply(cube)
    np.testing.assert_array_equal(out, cube)


def test_grid_origin_is_padded_by_half_a_pixel():
    lat, lon = regular_geolocation(rows=4, cols=4)
    _, grid = build_grid(lat, lon)
    x_size, y_size = estimate_pixel_size(lat, lon)
    assert grid.x_origin == pytest.approx(lon.min() - x_size / 2)
    assert grid.y_origin == pytest.approx(lat.max() + y_size / 2)
    assert y_size == pytest.approx(0.001)
    assert x_size == pytest.approx(0.001 / np.cos(np.radians(lat.mean())))


def test_bowtie_collision_last_scanned_wins():
    lat = np.array([[10.0, 10.0], [10.0, 8.0]])
    lon = np.array([[0.0, 2.0], [0.1, 2.0]])
    values = np.array([[1.0, 2.0], [3.0, 4.0]], dtype=np.float32)

    table, grid = build_grid(lat, lon, values.shape, pixel_size=1.0)
    assert grid.shape == (3, 3)
    assert (table.source_row[0, 0], table.source_col[0, 0]) == (1, 0)

    out = apply_table(table, values)
    assert out[0, 0] == 3.0
    assert out[0, 2] == 2.0
    assert out[2, 2] == 4.0
    assert int(table.valid.sum()) == 3
    assert out[1, 1] == NODATA


def test_later_swath_wins():
    lat = [np.array([[10.0]]), np.array([[10.0]])]
    lon = [np.array([[0.0]]), np.array([[0.0]])]
    table, grid = build_grid(lat, lon, pixel_size=0.5)

    assert grid.shape == (1, 1)
    assert table.source_swath[0, 0] == 1
    out = table.apply([np.array([[1.0]]), np.array([[2.0]])])
    assert out[0, 0] == 2.0


def test_multi_swath_cells_come_from_their_own_swath():
    lat = [np.array([[10.0, 10.0]]), np.array([[9.0, 9.0]])]
    lon = [np.array([[0.0, 1.0]]), np.array([[0.0, 1.0]])]
    table, _ = build_grid(lat, lon, pixel_size=1.0)
    out = table.apply([np.array([[1.0, 2.0]]), np.array([[3.0, 4.0]])])
    np.testing.assert_array_equal(out, [[1.0, 2.0], [3.0, 4.0]])


def test_apply_is_idempotent():
    lat = np.array([[10.0, 10.0], [10.0, 8.0]])
    lon = np.array([[0.0, 2.0], [0.1, 2.0]])
    table, _ = build_grid(lat, lon, pixel_size=1.0)
    cube = np.arange(8, dtype=np.float32).reshape(2, 2, 2)
    first = table.apply(cube)
    second = table.apply(cube)
    assert first.tobytes() == second.tobytes()


def test_non_finite_geolocation_is_ignored():
    lat, lon = regular_geolocation(rows=3, cols=3)
    lat[1, 1] = np.nan
    table, grid = build_grid(lat, lon, pixel_size=(0.002, 0.001))
    assert not ((table.source_row == 1) & (table.source_col == 1)).any()


def test_source_shape_mismatch():
    lat, lon = regular_geolocation(rows=3, cols=3)
    with pytest.raises(ShapeMismatch):
        build_grid(lat, lon, (4, 3, 2))
    table, _ = build_grid(lat, lon)
    with pytest.raises(ShapeMismatch, match="apply_table"):
        table.apply(np.zeros((3, 4, 2)))


def test_integer_cube_promoted_to_hold_nodata():
    lat, lon = regular_geolocation(rows=2, cols=2)
    table, _ = build_grid(lat, lon)
    out = table.apply(np.ones((2, 2), dtype=np.uint8))
    assert out.dtype == np.int16
    assert (out == 1).all()


def test_flip_rows():
    arr = np.arange(6).reshape(3, 2)
    flipped = flip_rows(arr)
    assert flipped[0].tolist() == [4, 5]
    assert flipped.flags["C_CONTIGUOUS"]
    grid = OutputGridSpec.ungeoreferenced(3, 2)
    assert not grid.georeferenced
    assert grid.transform is None


def test_check_geometry():
    lat, lon = regular_geolocation()
    check_geometry(lat, lon, lat + 0.001, lon, tolerance=0.01)
    with pytest.raises(GeometryMismatch, match="footprint"):
        check_geometry(lat, lon, lat + 0.5, lon, tolerance=0.01)
    with pytest.raises(GeometryMismatch, match="shape"):
        check_geometry(lat, lon, lat[:-1], lon[:-1])


def test_grid_from_corners():
    grid = grid_from_corners(
        ul=(500015.0, 5000015.0),
        ur=(500015.0 + 30.0 * 9, 5000015.0),
        ll=(500015.0, 5000015.0 - 30.0 * 4),
        nrows=5,
        ncols=10,
        epsg=32632,
    )
    assert grid.crs == "EPSG:32632"
    assert grid.transform == (500000.0, 30.0, 0.0, 5000030.0, 0.0, -30.0)
    assert grid.bounds == (500000.0, 4999880.0, 500300.0, 5000030.0)


def _rasterize_by_loop(lat, lon, cube, grid):
    """Reference gather: visit source pixels in scan order, last write wins."""
    out = np.full(grid.shape + cube.shape[2:], NODATA, dtype=cube.dtype)
    for i in range(lat.shape[0]):
        for j in range(lat.shape[1]):
            row = math.floor((grid.y_origin - lat[i, j]) / grid.pixel_y)
            col = math.floor((lon[i, j] - grid.x_origin) / grid.pixel_x)
            out[row, col] = cube[i, j]
    return out


def test_shuffled_swath_matches_loop_rasterization():
    rows, cols, step = 3, 4, 0.01
    perm = np.random.default_rng(7).permutation(rows * cols)
    target_row, target_col = np.divmod(perm, cols)
    lat = (45.0 - step * target_row).reshape(rows, cols)
    lon = (10.0 + step * target_col).reshape(rows, cols)
    cube = np.arange(rows * cols * 2, dtype=np.float32).reshape(rows, cols, 2)

    table, grid = build_grid(lat, lon, cube.shape, pixel_size=step)
    assert grid.shape == (rows, cols)
    assert table.valid.all()

    out = apply_table(table, cube, NODATA)
    np.testing.assert_array_equal(out, _rasterize_by_loop(lat, lon, cube, grid))
    # Not the identity: the permutation moved pixels.
    assert not np.array_equal(out, cube)
