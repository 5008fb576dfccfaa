"""Loading point and polygon layers from local files or open-data URLs."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd
import requests

from . import config

logger = logging.getLogger(__name__)


def _is_url(source) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def fetch_text(url: str, params: dict | None = None, timeout: float = config.FETCH_TIMEOUT) -> str:
    """GET *url* and return the body; HTTP errors propagate as requests exceptions."""
    logger.info("Fetching %s", url)
    resp = requests.get(url, params=params, timeout=timeout)
    resp.raise_for_status()
    return resp.text


def read_table(source, params: dict | None = None, timeout: float = config.FETCH_TIMEOUT) -> pd.DataFrame:
    """Read a CSV file, or a Socrata JSON/CSV endpoint, into a DataFrame."""
    if _is_url(source):
        text = fetch_text(source, params=params, timeout=timeout)
        if source.split("?")[0].endswith(".json"):
            return pd.read_json(io.StringIO(text))
        return pd.read_csv(io.StringIO(text))
    path = Path(source)
    if path.suffix.lower() == ".json":
        return pd.read_json(path)
    return pd.read_csv(path)


def load_polygons(source, crs: str = config.DEFAULT_CRS, timeout: float = config.FETCH_TIMEOUT) -> gpd.GeoDataFrame:
    """Load a polygon layer (GeoJSON, GeoPackage, shapefile) and project it to *crs*."""
    if _is_url(source):
        features = json.loads(fetch_text(source, timeout=timeout))["features"]
        gdf = gpd.GeoDataFrame.from_features(features, crs=config.SOURCE_CRS)
    else:
        gdf = gpd.read_file(source)
    if gdf.crs is None:
        gdf = gdf.set_crs(config.SOURCE_CRS)
    return gdf.to_crs(crs)


def points_from_table(
    df: pd.DataFrame,
    lat_col: str = "latitude",
    lon_col: str = "longitude",
    crs: str = config.DEFAULT_CRS,
) -> gpd.GeoDataFrame:
    """Build a projected point layer from lat/lon columns, dropping rows without coordinates."""
    missing = {lat_col, lon_col} - set(df.columns)
    if missing:
        raise ValueError(f"Point table missing columns: {sorted(missing)}")
    df = df.copy()
    df[lat_col] = pd.to_numeric(df[lat_col], errors="coerce")
    df[lon_col] = pd.to_numeric(df[lon_col], errors="coerce")
    before = len(df)
    df = df.dropna(subset=[lat_col, lon_col])
    if len(df) < before:
        logger.info("Dropped %d rows without coordinates", before - len(df))
    gdf = gpd.GeoDataFrame(
        df,
        geometry=gpd.points_from_xy(df[lon_col], df[lat_col]),
        crs=config.SOURCE_CRS,
    )
    return gdf.to_crs(crs)


def load_points(
    source,
    lat_col: str = "latitude",
    lon_col: str = "longitude",
    crs: str = config.DEFAULT_CRS,
    params: dict | None = None,
    timeout: float = config.FETCH_TIMEOUT,
) -> gpd.GeoDataFrame:
    return points_from_table(read_table(source, params=params, timeout=timeout), lat_col, lon_col, crs)


def filter_incidents(
    incidents: pd.DataFrame,
    primary_type: str = config.INCIDENT_PRIMARY_TYPE,
    description: str = config.INCIDENT_DESCRIPTION,
) -> pd.DataFrame:
    """Keep incidents of one primary type and description (case-insensitive)."""
    missing = {"primary_type", "description"} - set(incidents.columns)
    if missing:
        raise ValueError(f"Incident table missing columns: {sorted(missing)}")
    mask = (
        (incidents["primary_type"].str.upper() == primary_type.upper())
        & (incidents["description"].str.upper() == description.upper())
    )
    return incidents.loc[mask]


def filter_licenses(licenses: pd.DataFrame, pattern: str, column: str = "license_description") -> pd.DataFrame:
    """Business licenses whose *column* matches the regex *pattern*."""
    if column not in licenses.columns:
        raise ValueError(f"License table missing column {column!r}")
    return licenses.loc[licenses[column].str.contains(pattern, case=False, na=False)]
