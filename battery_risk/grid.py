"""Fishnet construction: fixed-size square cells over a study boundary."""

from __future__ import annotations

import logging
import math

import geopandas as gpd
import numpy as np
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CELL_ID_COL = "cell_id"


def _boundary_geometry(boundary) -> tuple[BaseGeometry, object]:
    """Return (single geometry, crs) for a GeoDataFrame, GeoSeries or shapely geometry."""
    if isinstance(boundary, (gpd.GeoDataFrame, gpd.GeoSeries)):
        if len(boundary) == 0:
            raise ConfigurationError("Boundary has no features.")
        return boundary.geometry.union_all(), boundary.crs
    if isinstance(boundary, BaseGeometry):
        return boundary, None
    raise ConfigurationError(f"Unsupported boundary type: {type(boundary).__name__}")


def build_fishnet(
    boundary,
    cell_size: float,
    crs=None,
    clip: bool = False,
) -> gpd.GeoDataFrame:
    """Cover *boundary* with square cells of side *cell_size*.

    Cells are generated row by row from the lower-left corner of the
    boundary's bounding box (x varies fastest) and kept when their interior
    overlaps the boundary. ``cell_id`` is dense (0..n-1) in generation order.
    With ``clip=True`` the kept cells are cut to the boundary outline.
    """
    try:
        size = float(cell_size)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"cell_size must be a number, got {cell_size!r}") from exc
    if not math.isfinite(size) or size <= 0:
        raise ConfigurationError(f"cell_size must be a positive finite number, got {cell_size!r}")

    geom, boundary_crs = _boundary_geometry(boundary)
    if geom is None or geom.is_empty:
        raise ConfigurationError("Boundary geometry is empty.")
    if not geom.is_valid:
        raise ConfigurationError("Boundary geometry is invalid.")
    if geom.area <= 0:
        raise ConfigurationError("Boundary geometry has no area.")

    minx, miny, maxx, maxy = geom.bounds
    n_cols = max(1, math.ceil((maxx - minx) / size))
    n_rows = max(1, math.ceil((maxy - miny) / size))

    xs = minx + np.arange(n_cols) * size
    ys = miny + np.arange(n_rows) * size
    cells = [box(x, y, x + size, y + size) for y in ys for x in xs]

    fishnet = gpd.GeoDataFrame(geometry=cells, crs=crs or boundary_crs)
    keep = fishnet.intersects(geom) & ~fishnet.touches(geom)
    fishnet = fishnet.loc[keep].reset_index(drop=True)
    if clip:
        fishnet["geometry"] = fishnet.geometry.intersection(geom)

    fishnet.insert(0, CELL_ID_COL, np.arange(len(fishnet), dtype=int))
    logger.info(
        "Built fishnet of %d cells (%d x %d candidates, cell size %s)",
        len(fishnet), n_cols, n_rows, size,
    )
    return fishnet


def cell_centroids(grid: gpd.GeoDataFrame) -> np.ndarray:
    """Centroid coordinates of every cell as an (n, 2) array, in grid order."""
    centroids = grid.geometry.centroid
    return np.c_[centroids.x.to_numpy(), centroids.y.to_numpy()]
