"""Point-to-grid aggregation and centroid joins."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping

import geopandas as gpd
import pandas as pd

from .grid import CELL_ID_COL

logger = logging.getLogger(__name__)

CATEGORY_COL = "category"


def count_points(
    grid: gpd.GeoDataFrame,
    points: gpd.GeoDataFrame,
    category_col: str = CATEGORY_COL,
    categories: Iterable[str] | None = None,
) -> pd.DataFrame:
    """Count points per cell and category.

    Containment is closed: a point on an edge or vertex shared by several
    cells is counted once, in the cell with the lowest ``cell_id``. Points
    outside every cell are dropped. The result is indexed by ``cell_id``
    (every cell of *grid*) with one integer column per category and zeros
    where a cell holds no points.
    """
    if category_col not in points.columns:
        raise ValueError(f"Point layer missing category column {category_col!r}")
    if categories is None:
        categories = sorted(points[category_col].dropna().unique())
    categories = list(categories)

    pts = points[[category_col, "geometry"]].reset_index(drop=True)
    wanted = pts[category_col].isin(categories)
    if not wanted.all():
        logger.info(
            "Dropped %d of %d points with a category outside %s", int((~wanted).sum()), len(pts), categories
        )
        pts = pts[wanted].reset_index(drop=True)
    if grid.crs is not None and pts.crs is not None and pts.crs != grid.crs:
        pts = pts.to_crs(grid.crs)

    joined = gpd.sjoin(pts, grid[[CELL_ID_COL, "geometry"]], how="inner", predicate="intersects")
    joined = joined.sort_values(CELL_ID_COL, kind="stable")
    joined = joined[~joined.index.duplicated(keep="first")]

    outside = len(pts) - len(joined)
    if outside:
        logger.info("Dropped %d of %d points outside the grid", outside, len(pts))

    if joined.empty:
        return pd.DataFrame(
            0, index=pd.Index(grid[CELL_ID_COL], name=CELL_ID_COL), columns=categories, dtype=int
        )

    counts = (
        joined.groupby([CELL_ID_COL, category_col]).size()
        .unstack(fill_value=0)
        .reindex(index=grid[CELL_ID_COL], columns=categories, fill_value=0)
        .fillna(0)
        .astype(int)
    )
    counts.index.name = CELL_ID_COL
    counts.columns.name = None
    return counts


def count_layers(grid: gpd.GeoDataFrame, layers: Mapping[str, gpd.GeoDataFrame]) -> pd.DataFrame:
    """Count several point layers at once, one column per layer name."""
    frames = []
    for name, layer in layers.items():
        tagged = layer[["geometry"]].copy()
        if grid.crs is not None and tagged.crs is not None:
            tagged = tagged.to_crs(grid.crs)
        tagged[CATEGORY_COL] = name
        frames.append(tagged)
    if not frames:
        return pd.DataFrame(index=pd.Index(grid[CELL_ID_COL], name=CELL_ID_COL))
    stacked = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), geometry="geometry", crs=grid.crs)
    return count_points(grid, stacked, categories=list(layers))


def join_by_centroid(
    grid: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    column: str,
    out_col: str | None = None,
) -> pd.Series:
    """Attach *column* of the polygon containing each cell centroid.

    Cells whose centroid falls outside every polygon get a missing value.
    """
    out_col = out_col or column
    polys = polygons[[column, "geometry"]]
    if grid.crs is not None and polys.crs is not None and polys.crs != grid.crs:
        polys = polys.to_crs(grid.crs)

    centroids = gpd.GeoDataFrame(
        {CELL_ID_COL: grid[CELL_ID_COL].to_numpy()},
        geometry=grid.geometry.centroid.to_numpy(),
        crs=grid.crs,
    )
    joined = gpd.sjoin(centroids, polys, how="left", predicate="within")
    joined = joined[~joined[CELL_ID_COL].duplicated(keep="first")]

    unmatched = int(joined[column].isna().sum())
    if unmatched:
        logger.info("%d cells have no %s (centroid outside all polygons)", unmatched, out_col)

    return joined.set_index(CELL_ID_COL)[column].rename(out_col)
