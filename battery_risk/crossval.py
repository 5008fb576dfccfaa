"""Cross-validated Poisson regression over the fishnet.

Each fold key (a random bucket or a neighborhood name) is held out once:
the model is fit on every other cell and predicts the held-out cells, so
every cell ends up with exactly one out-of-fold prediction.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.linear_model import PoissonRegressor
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from . import config
from .errors import ConfigurationError, RankDeficientFoldError, RiskModelError
from .grid import CELL_ID_COL

logger = logging.getLogger(__name__)

FOLD_COL = "fold"
PREDICTION_COLUMNS = [CELL_ID_COL, FOLD_COL, "observed", "predicted", "error", "abs_error"]


# --------------------------
# Fold assignment
# --------------------------
def random_folds(
    cell_ids: Sequence,
    n_folds: int = config.N_RANDOM_FOLDS,
    random_state: int = config.RANDOM_STATE,
) -> pd.Series:
    """Shuffle cells into *n_folds* buckets of (nearly) equal size."""
    ids = pd.Index(cell_ids, name=CELL_ID_COL)
    if not ids.is_unique:
        raise ConfigurationError("cell ids must be unique")
    if n_folds < 2 or n_folds > len(ids):
        raise ConfigurationError(f"n_folds must be between 2 and {len(ids)}, got {n_folds}")
    rng = np.random.default_rng(random_state)
    keys = rng.permutation(np.arange(len(ids)) % n_folds)
    return pd.Series(keys, index=ids, name=FOLD_COL)


def group_folds(table: pd.DataFrame, group_col: str, id_col: str = CELL_ID_COL) -> pd.Series:
    """Use a natural grouping (e.g. neighborhood name) as the fold key."""
    groups = table.set_index(id_col)[group_col]
    if groups.isna().any():
        raise ConfigurationError(f"{int(groups.isna().sum())} cells have no {group_col!r}")
    if groups.nunique() < 2:
        raise ConfigurationError(f"Leave-one-group-out needs at least 2 groups in {group_col!r}")
    return groups.rename(FOLD_COL)


# --------------------------
# Model fitting
# --------------------------
def make_poisson_model() -> Pipeline:
    """Unpenalized Poisson GLM with a log link and an intercept."""
    return Pipeline([
        ("scaler", StandardScaler()),
        ("model", PoissonRegressor(alpha=0.0, solver="newton-cholesky", max_iter=1000)),
    ])


def design_rank(X: np.ndarray) -> tuple[int, int]:
    """Rank and column count of the design matrix [1, X]."""
    design = np.column_stack([np.ones(len(X)), X])
    return int(np.linalg.matrix_rank(design)), design.shape[1]


def _fit_fold(fold, X_train: np.ndarray, y_train: np.ndarray, X_test: np.ndarray) -> np.ndarray:
    rank, n_cols = design_rank(X_train)
    if rank < n_cols:
        raise RankDeficientFoldError(fold, rank, n_cols)
    model = make_poisson_model().fit(X_train, y_train)
    return model.predict(X_test)


def _check_partition(predictions: pd.DataFrame, cell_ids: pd.Index) -> None:
    seen = predictions[CELL_ID_COL]
    if seen.duplicated().any() or len(seen) != len(cell_ids) or set(seen) != set(cell_ids):
        raise RiskModelError("Cross-validation did not produce exactly one prediction per cell")


def cross_validate(
    table: pd.DataFrame,
    feature_cols: List[str],
    folds: pd.Series,
    target_col: str = config.TARGET_COL,
    n_jobs: int = 1,
    id_col: str = CELL_ID_COL,
) -> pd.DataFrame:
    """Out-of-fold Poisson predictions for every cell.

    Raises RankDeficientFoldError when a training fold cannot identify all
    coefficients; covariates are never dropped to make a fold fit.
    """
    data = table.set_index(id_col) if id_col in table.columns else table
    missing = [c for c in [*feature_cols, target_col] if c not in data.columns]
    if missing:
        raise ConfigurationError(f"Feature table missing columns: {missing}")

    fold_keys = folds.reindex(data.index)
    if fold_keys.isna().any():
        raise ConfigurationError(f"{int(fold_keys.isna().sum())} cells have no fold assignment")

    X = data[feature_cols].to_numpy(dtype=float)
    y = data[target_col].to_numpy(dtype=float)
    keys = pd.unique(fold_keys.to_numpy())
    masks = [(key, (fold_keys == key).to_numpy()) for key in keys]
    logger.info("Cross-validating %d cells over %d folds with %d covariates", len(data), len(keys), len(feature_cols))

    predicted = Parallel(n_jobs=n_jobs)(
        delayed(_fit_fold)(key, X[~mask], y[~mask], X[mask]) for key, mask in masks
    )

    frames = []
    for (key, mask), pred in zip(masks, predicted):
        frames.append(pd.DataFrame({
            CELL_ID_COL: data.index[mask],
            FOLD_COL: key,
            "observed": y[mask],
            "predicted": pred,
        }))
    out = pd.concat(frames, ignore_index=True)
    _check_partition(out, data.index)

    out["error"] = out["predicted"] - out["observed"]
    out["abs_error"] = out["error"].abs()
    return out.sort_values(CELL_ID_COL, kind="stable").reset_index(drop=True)[PREDICTION_COLUMNS]


def run_variants(
    table: pd.DataFrame,
    covariate_sets: Mapping[str, List[str]],
    fold_schemes: Mapping[str, pd.Series],
    target_col: str = config.TARGET_COL,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """Cross-validate every (covariate set, fold scheme) pair and stack the results."""
    frames = []
    for regression, features in covariate_sets.items():
        for scheme, folds in fold_schemes.items():
            logger.info("Cross-validating %s with %s", regression, scheme)
            preds = cross_validate(table, features, folds, target_col=target_col, n_jobs=n_jobs)
            preds.insert(0, "cv_scheme", scheme)
            preds.insert(0, "regression", regression)
            frames.append(preds)
    return pd.concat(frames, ignore_index=True)


# --------------------------
# Error summaries
# --------------------------
def error_by_fold(predictions: pd.DataFrame) -> pd.DataFrame:
    """MAE and mean signed error per variant and fold."""
    keys = [c for c in ("regression", "cv_scheme") if c in predictions.columns] + [FOLD_COL]
    return (
        predictions.groupby(keys, sort=False)
        .agg(mae=("abs_error", "mean"), mean_error=("error", "mean"), n_cells=(CELL_ID_COL, "size"))
        .reset_index()
    )


def error_summary(predictions: pd.DataFrame) -> pd.DataFrame:
    """MAE over all cells plus the mean and spread of per-fold MAE, per variant."""
    keys = [c for c in ("regression", "cv_scheme") if c in predictions.columns]
    by_fold = error_by_fold(predictions)
    if not keys:
        return pd.DataFrame([{
            "mae": predictions["abs_error"].mean(),
            "mean_fold_mae": by_fold["mae"].mean(),
            "sd_fold_mae": by_fold["mae"].std(),
            "n_cells": len(predictions),
        }])
    overall = predictions.groupby(keys, sort=False).agg(
        mae=("abs_error", "mean"), n_cells=(CELL_ID_COL, "size")
    )
    folds = by_fold.groupby(keys, sort=False)["mae"].agg(mean_fold_mae="mean", sd_fold_mae="std")
    return overall.join(folds)[["mae", "mean_fold_mae", "sd_fold_mae", "n_cells"]].reset_index()


def fold_schemes(
    table: pd.DataFrame,
    group_col: str = config.NEIGHBORHOOD_COL,
    n_folds: int = config.N_RANDOM_FOLDS,
    random_state: int = config.RANDOM_STATE,
) -> Dict[str, pd.Series]:
    """The random k-fold and leave-one-neighborhood-out assignments."""
    return {
        "Random k-fold": random_folds(table[CELL_ID_COL], n_folds=n_folds, random_state=random_state),
        "Spatial LOGO-CV": group_folds(table, group_col),
    }
