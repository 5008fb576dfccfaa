"""Comparison of model predictions against a kernel density baseline."""

from __future__ import annotations

from typing import Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from sklearn.neighbors import KernelDensity

from . import config
from .grid import CELL_ID_COL


def kernel_density(points_xy, cells_xy, bandwidth: float = config.KDE_BANDWIDTH) -> np.ndarray:
    """Gaussian kernel density of *points_xy* evaluated at *cells_xy*."""
    points_xy = np.asarray(points_xy, dtype=float).reshape(-1, 2)
    cells_xy = np.asarray(cells_xy, dtype=float).reshape(-1, 2)
    kde = KernelDensity(bandwidth=bandwidth, kernel="gaussian").fit(points_xy)
    return np.exp(kde.score_samples(cells_xy))


def percentile_rank(values) -> np.ndarray:
    """Split values into 100 equal-count tiles numbered 1..100 (ties broken by position)."""
    values = np.asarray(values, dtype=float)
    n = len(values)
    order = np.argsort(values, kind="stable")
    rank = np.empty(n, dtype=int)
    rank[order] = np.arange(n)
    return np.floor(100 * rank / n).astype(int) + 1


def risk_categories(values) -> pd.Categorical:
    """Bucket values into the five percentile risk categories."""
    tiles = percentile_rank(values)
    idx = np.searchsorted(config.RISK_CATEGORY_BREAKS, tiles, side="right") - 1
    labels = np.asarray(config.RISK_CATEGORY_LABELS, dtype=object)[idx]
    return pd.Categorical(labels, categories=config.RISK_CATEGORY_LABELS, ordered=True)


def capture_rates(categories, observed) -> pd.DataFrame:
    """Held-out incidents falling in each risk category and their share of the total."""
    frame = pd.DataFrame({"risk_category": categories, "observed": np.asarray(observed, dtype=float)})
    out = (
        frame.groupby("risk_category", observed=False)["observed"].sum()
        .rename("risk_count").reset_index()
    )
    total = out["risk_count"].sum()
    out["pct_of_total"] = out["risk_count"] / total if total else 0.0
    return out


def compare_to_baseline(predicted, density, observed) -> pd.DataFrame:
    """Capture rates of the regression and the kernel density, stacked by label."""
    model = capture_rates(risk_categories(predicted), observed)
    model.insert(0, "label", "Risk Predictions")
    baseline = capture_rates(risk_categories(density), observed)
    baseline.insert(0, "label", "Kernel Density")
    return pd.concat([baseline, model], ignore_index=True)


def racial_context(
    tracts: gpd.GeoDataFrame,
    total_col: str,
    white_col: str,
    threshold: float = 0.5,
) -> gpd.GeoDataFrame:
    """Label tracts Majority_White / Majority_Non_White from population counts."""
    out = tracts[[total_col, white_col, "geometry"]].copy()
    total = out[total_col].astype(float).replace(0, np.nan)
    out["pct_white"] = out[white_col].astype(float) / total
    out[config.CONTEXT_COL] = np.where(out["pct_white"] > threshold, "Majority_White", "Majority_Non_White")
    out.loc[out["pct_white"].isna(), config.CONTEXT_COL] = None
    return out


def error_by_context(predictions: pd.DataFrame, context: pd.Series) -> pd.DataFrame:
    """Mean signed error and MAE per variant and demographic context.

    *context* maps ``cell_id`` to a label; cells without one are left out.
    """
    frame = predictions.merge(
        context.rename(config.CONTEXT_COL), left_on=CELL_ID_COL, right_index=True, how="inner"
    ).dropna(subset=[config.CONTEXT_COL])
    keys = [c for c in ("regression", "cv_scheme") if c in frame.columns] + [config.CONTEXT_COL]
    return (
        frame.groupby(keys, sort=False)
        .agg(mean_error=("error", "mean"), mae=("abs_error", "mean"), n_cells=(CELL_ID_COL, "size"))
        .reset_index()
    )


def feature_correlations(table: pd.DataFrame, features: Sequence[str], target: str) -> pd.DataFrame:
    """Pearson correlation of each feature with the target count."""
    rows = []
    for feature in features:
        r = table[feature].astype(float).corr(table[target].astype(float))
        rows.append({"feature": feature, "correlation": r})
    return pd.DataFrame(rows).sort_values("correlation", key=np.abs, ascending=False, ignore_index=True)
