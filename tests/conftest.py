"""
tests/conftest.py
-----------------
Fishnet fixtures shared by the test modules. No test touches the network.
"""

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import box

from battery_risk.grid import build_fishnet
from tests.helpers import CELL, CRS


@pytest.fixture
def square_boundary() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(geometry=[box(0, 0, 400, 400)], crs=CRS)


@pytest.fixture
def grid4(square_boundary) -> gpd.GeoDataFrame:
    """4 x 4 fishnet, cell 0 at the lower-left corner, row-major ids."""
    return build_fishnet(square_boundary, CELL)


@pytest.fixture
def grid8() -> gpd.GeoDataFrame:
    boundary = gpd.GeoDataFrame(geometry=[box(0, 0, 800, 800)], crs=CRS)
    return build_fishnet(boundary, CELL)


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(7)
