"""
tests/helpers.py
----------------
Point-layer builders shared by the test modules. Everything is built in a
projected CRS with 100-unit cells so expected distances can be worked out
by hand.
"""

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Point

CRS = "EPSG:3435"
CELL = 100.0


def make_points(coords, crs: str = CRS, **columns) -> gpd.GeoDataFrame:
    coords = list(coords)
    return gpd.GeoDataFrame(
        pd.DataFrame(columns, index=range(len(coords))) if columns else None,
        geometry=[Point(x, y) for x, y in coords],
        crs=crs,
    )


def points_in_cells(grid: gpd.GeoDataFrame, counts: dict, rng: np.random.Generator) -> gpd.GeoDataFrame:
    """Scatter counts[cell_id] points strictly inside each cell."""
    coords = []
    bounds = grid.set_index("cell_id").geometry.bounds
    for cell_id, n in counts.items():
        minx, miny, maxx, maxy = bounds.loc[cell_id]
        for _ in range(int(n)):
            coords.append((minx + rng.uniform(5, 95), miny + rng.uniform(5, 95)))
    return make_points(coords)
