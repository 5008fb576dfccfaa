"""Local Moran's I hot-spot analysis on the fishnet.

Two significance levels are used: ``report_alpha`` flags cells
for display, ``cluster_alpha`` (far stricter) decides which cells count as
part of a hot-spot cluster when that flag becomes a model feature.
"""

from __future__ import annotations

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
from esda.moran import Moran_Local
from libpysal.weights import Queen, W
from scipy import stats

from . import config
from .errors import ConfigurationError, InsufficientDataError
from .grid import CELL_ID_COL, cell_centroids
from .neighbors import mean_nn_distance

logger = logging.getLogger(__name__)

ALTERNATIVES = {"greater", "less", "two-sided"}


def queen_weights(grid: gpd.GeoDataFrame) -> W:
    """Row-standardized queen contiguity weights keyed by ``cell_id``.

    Cells with no neighbors stay in the graph with an all-zero row.
    """
    w = Queen.from_dataframe(grid.set_index(CELL_ID_COL), use_index=True, silence_warnings=True)
    w.transform = "r"
    if w.islands:
        logger.warning("%d cells have no queen neighbors and get zero weight", len(w.islands))
    return w


def _check_alpha(alpha: float, name: str) -> float:
    if not 0 < alpha < 1:
        raise ConfigurationError(f"{name} must be in (0, 1), got {alpha!r}")
    return float(alpha)


def _aligned_values(values, w: W) -> np.ndarray:
    if isinstance(values, pd.Series):
        aligned = values.reindex(w.id_order)
        if aligned.isna().any():
            raise ValueError("values are missing for some ids in the weights graph")
        return aligned.to_numpy(dtype=float)
    arr = np.asarray(values, dtype=float).ravel()
    if len(arr) != w.n:
        raise ValueError(f"Expected {w.n} values, got {len(arr)}")
    return arr


def _analytic_moran(x: np.ndarray, w: W, alternative: str) -> pd.DataFrame:
    n = len(x)
    weights = w.sparse.tocsr()
    wi = np.asarray(weights.sum(axis=1)).ravel()
    wi2 = np.asarray(weights.multiply(weights).sum(axis=1)).ravel()

    if np.ptp(x) == 0:
        zeros = np.zeros(n)
        return pd.DataFrame({
            "local_i": zeros,
            "expected_i": zeros,
            "variance_i": zeros,
            "z_score": np.full(n, np.nan),
            "p_value": np.ones(n),
        })

    z = x - x.mean()
    m2 = (z ** 2).sum() / n
    local_i = z / m2 * (weights @ z)

    expected_i = -wi / (n - 1)
    b2 = ((z ** 4).sum() / n) / m2 ** 2
    a = (n - b2) / (n - 1)
    b = (2 * b2 - n) / ((n - 1) * (n - 2))
    c = wi ** 2 / (n - 1) ** 2
    variance_i = a * wi2 + b * (wi ** 2 - wi2) - c

    with np.errstate(divide="ignore", invalid="ignore"):
        z_score = np.where(variance_i > 0, (local_i - expected_i) / np.sqrt(variance_i), np.nan)

    if alternative == "greater":
        p_value = stats.norm.sf(z_score)
    elif alternative == "less":
        p_value = stats.norm.cdf(z_score)
    else:
        p_value = 2 * stats.norm.sf(np.abs(z_score))
    p_value = np.where(np.isnan(z_score), 1.0, p_value)

    return pd.DataFrame({
        "local_i": local_i,
        "expected_i": expected_i,
        "variance_i": variance_i,
        "z_score": z_score,
        "p_value": p_value,
    })


def _permutation_moran(x: np.ndarray, w: W, alternative: str, permutations: int) -> pd.DataFrame:
    lisa = Moran_Local(
        x, w,
        transformation=w.transform,
        permutations=permutations,
        seed=config.RANDOM_STATE,
        keep_simulations=True,
    )
    # p_sim is folded; count the simulations on the requested side instead
    upper = ((lisa.sim >= lisa.Is).sum(axis=0) + 1.0) / (permutations + 1.0)
    lower = ((lisa.sim <= lisa.Is).sum(axis=0) + 1.0) / (permutations + 1.0)
    if alternative == "greater":
        p_value = upper
    elif alternative == "less":
        p_value = lower
    else:
        p_value = np.minimum(1.0, 2 * np.minimum(upper, lower))

    # esda scales I_i by (n - 1) where the analytic form uses n
    scale = len(x) / (len(x) - 1)
    return pd.DataFrame({
        "local_i": lisa.Is * scale,
        "expected_i": lisa.EI_sim * scale,
        "variance_i": lisa.VI_sim * scale ** 2,
        "z_score": lisa.z_sim,
        "p_value": p_value,
    })


def local_moran(
    values,
    w: W,
    alpha: float = config.REPORT_ALPHA,
    alternative: str = "greater",
    method: str = "analytic",
    permutations: int = 999,
) -> pd.DataFrame:
    """Local Moran's I per cell with p-values and a significance flag.

    ``method="analytic"`` uses the normal approximation with the total
    randomisation variance; ``method="permutation"`` counts esda's
    conditional permutations on the side *alternative* asks for. Cells
    without neighbors, and every cell when *values* is constant, get
    I = 0 and p = 1.
    """
    alpha = _check_alpha(alpha, "alpha")
    if alternative not in ALTERNATIVES:
        raise ConfigurationError(f"alternative must be one of {sorted(ALTERNATIVES)}")
    x = _aligned_values(values, w)
    if len(x) < 3:
        raise InsufficientDataError(f"Local Moran's I needs at least 3 cells, got {len(x)}")

    if method == "analytic":
        result = _analytic_moran(x, w, alternative)
    elif method == "permutation":
        if permutations < 1:
            raise ConfigurationError(f"permutations must be positive, got {permutations!r}")
        result = _permutation_moran(x, w, alternative, permutations)
    else:
        raise ConfigurationError(f"Unknown method {method!r}")

    island_ids = set(w.islands)
    if island_ids:
        islands = np.array([cell in island_ids for cell in w.id_order])
        result.loc[islands, "local_i"] = 0.0
        result.loc[islands, "p_value"] = 1.0

    result["is_significant"] = result["p_value"] <= alpha
    result.index = pd.Index(w.id_order, name=CELL_ID_COL)
    return result


def hotspot_features(
    grid: gpd.GeoDataFrame,
    values: pd.Series,
    w: W,
    report_alpha: float = config.REPORT_ALPHA,
    cluster_alpha: float = config.CLUSTER_ALPHA,
    k: int = config.CLUSTER_NN_K,
    method: str = "analytic",
) -> pd.DataFrame:
    """Local Moran's I columns plus the two spatial-process features.

    *values* is the observed count per cell, indexed by ``cell_id``.
    ``is_cluster`` marks cells significant at *cluster_alpha* and
    ``cluster_distance`` is the mean distance from each cell centroid to its
    *k* nearest cluster cells.
    """
    cluster_alpha = _check_alpha(cluster_alpha, "cluster_alpha")
    lisa = local_moran(values, w, alpha=report_alpha, method=method)
    lisa = lisa.reindex(grid[CELL_ID_COL])

    is_cluster = (lisa["p_value"] <= cluster_alpha).astype(int)
    logger.info(
        "%d cells significant at alpha=%g, %d at cluster alpha=%g",
        int(lisa["is_significant"].sum()), report_alpha, int(is_cluster.sum()), cluster_alpha,
    )

    centroids = cell_centroids(grid)
    cluster_xy = centroids[is_cluster.to_numpy() == 1]
    try:
        distance = mean_nn_distance(centroids, cluster_xy, k=k)
    except InsufficientDataError as exc:
        raise InsufficientDataError(
            f"Only {len(cluster_xy)} cells are significant at cluster_alpha={cluster_alpha:g}; "
            f"need {k} to compute {config.CLUSTER_DISTANCE_COL}"
        ) from exc

    out = lisa[["local_i", "p_value", "is_significant"]].copy()
    out[config.IS_CLUSTER_COL] = is_cluster
    out[config.CLUSTER_DISTANCE_COL] = distance
    return out
