"""Nearest-neighbor distance features.

``mean_nn_distance`` is the single engine behind every proximity feature:
risk-factor distances and the distance to significant hot-spot cells.
"""

from __future__ import annotations

import logging
from typing import Mapping

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import Point
from sklearn.neighbors import NearestNeighbors

from . import config
from .errors import ConfigurationError, InsufficientDataError
from .grid import CELL_ID_COL, cell_centroids

logger = logging.getLogger(__name__)


def point_coords(layer: gpd.GeoDataFrame) -> np.ndarray:
    """(n, 2) coordinates of a layer; polygons are represented by their centroids."""
    geoms = layer.geometry
    if not (geoms.geom_type == "Point").all():
        geoms = geoms.centroid
    return np.c_[geoms.x.to_numpy(), geoms.y.to_numpy()]


def mean_nn_distance(from_xy, to_xy, k: int = config.NN_K) -> np.ndarray:
    """Mean Euclidean distance from each *from_xy* point to its *k* nearest *to_xy* points.

    Raises InsufficientDataError when *to_xy* has fewer than *k* points;
    k is never reduced to fit the data.
    """
    if int(k) != k or k < 1:
        raise ConfigurationError(f"k must be a positive integer, got {k!r}")
    k = int(k)

    from_xy = np.asarray(from_xy, dtype=float).reshape(-1, 2)
    to_xy = np.asarray(to_xy, dtype=float).reshape(-1, 2)
    if len(to_xy) < k:
        raise InsufficientDataError(
            f"Nearest-neighbor distance needs at least {k} reference points, got {len(to_xy)}"
        )
    if len(from_xy) == 0:
        return np.empty(0, dtype=float)

    nn = NearestNeighbors(n_neighbors=k, metric="euclidean").fit(to_xy)
    dist, _ = nn.kneighbors(from_xy, return_distance=True)
    return dist.mean(axis=1)


def nn_features(
    grid: gpd.GeoDataFrame,
    layers: Mapping[str, gpd.GeoDataFrame],
    k: int = config.NN_K,
) -> pd.DataFrame:
    """One ``<layer>_nn`` column per point layer, indexed by ``cell_id``."""
    centroids = cell_centroids(grid)
    out = pd.DataFrame(index=pd.Index(grid[CELL_ID_COL], name=CELL_ID_COL))
    for name, layer in layers.items():
        if grid.crs is not None and layer.crs is not None and layer.crs != grid.crs:
            layer = layer.to_crs(grid.crs)
        out[config.nn_column(name)] = mean_nn_distance(centroids, point_coords(layer), k=k)
        logger.debug("Computed %s from %d points", config.nn_column(name), len(layer))
    return out


def center_distance(grid: gpd.GeoDataFrame, center: Point) -> pd.Series:
    """Distance from each cell centroid to a city-center point."""
    dist = grid.geometry.centroid.distance(center)
    return pd.Series(dist.to_numpy(), index=pd.Index(grid[CELL_ID_COL], name=CELL_ID_COL),
                     name=config.CENTER_DISTANCE_COL)


def neighborhood_center(neighborhoods: gpd.GeoDataFrame, name: str, name_col: str = "name") -> Point:
    """Centroid of the named neighborhood, e.g. the Loop for Chicago."""
    match = neighborhoods.loc[neighborhoods[name_col] == name]
    if match.empty:
        raise ConfigurationError(f"Neighborhood {name!r} not found in column {name_col!r}")
    return match.geometry.union_all().centroid
