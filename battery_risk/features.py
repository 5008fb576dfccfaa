"""Assembly of the per-cell feature table."""

from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

import geopandas as gpd
import pandas as pd

from . import config
from .errors import ConfigurationError
from .grid import CELL_ID_COL

logger = logging.getLogger(__name__)


def validate_feature_names(
    features: Iterable[str],
    risk_factors: Sequence[str] = config.RISK_FACTORS,
) -> List[str]:
    """Reject any feature name outside the closed set for these risk factors."""
    features = list(features)
    known = set(config.known_features(risk_factors))
    unknown = [f for f in features if f not in known]
    if unknown:
        raise ConfigurationError(f"Undeclared feature names: {unknown}")
    if len(set(features)) != len(features):
        raise ConfigurationError("Feature names must be unique")
    return features


def build_feature_table(
    grid: gpd.GeoDataFrame,
    parts: Iterable[pd.DataFrame | pd.Series],
    features: Sequence[str],
    required: Sequence[str] = (),
    risk_factors: Sequence[str] = config.RISK_FACTORS,
) -> gpd.GeoDataFrame:
    """Join per-cell parts (indexed by ``cell_id``) onto the grid.

    *features* are the declared numeric features; *required* lists extra
    columns (target, neighborhood, ...) that must also be present. Cells
    missing any of them are dropped and counted in the log.
    """
    features = validate_feature_names(features, risk_factors)
    table = grid[[CELL_ID_COL, "geometry"]].set_index(CELL_ID_COL)
    for part in parts:
        table = table.join(part, how="left")

    needed = [*features, *required]
    absent = [c for c in needed if c not in table.columns]
    if absent:
        raise ConfigurationError(f"No input provides columns: {absent}")

    complete = table[needed].notna().all(axis=1)
    dropped = int((~complete).sum())
    if dropped:
        logger.warning("Dropped %d of %d cells with missing features", dropped, len(table))

    table = table.loc[complete].reset_index()
    table[features] = table[features].astype(float)
    return gpd.GeoDataFrame(table, geometry="geometry", crs=grid.crs)
