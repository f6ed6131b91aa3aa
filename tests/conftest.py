from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
TESTS_ROOT = Path(__file__).resolve().parent

for candidate in (PROJECT_ROOT, SRC_ROOT, TESTS_ROOT):
    path_str = str(candidate)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


os.environ.setdefault("GDAL_NUM_THREADS", "1")
os.environ.setdefault("CPL_DEBUG", "OFF")
os.environ.setdefault("PROJ_NETWORK", "OFF")
os.environ.setdefault("OMP_NUM_THREADS", "1")
os.environ.setdefault("OPENBLAS_NUM_THREADS", "1")

for name in ("osgeo", "rasterio"):
    logging.getLogger(name).setLevel(logging.ERROR)


@pytest.fixture
def l1_product():
    from prisma_builders import build_l1_product

    return build_l1_product()


@pytest.fixture
def l1_file(tmp_path: Path) -> Path:
    pytest.importorskip("h5py")
    from prisma_builders import L1_FILENAME, build_l1_product, write_h5

    path = tmp_path / L1_FILENAME
    write_h5(path, *build_l1_product())
    return path
