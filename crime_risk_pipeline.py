#!/usr/bin/env python3
"""End-to-end domestic battery risk model over a city fishnet.

This script:
1) Loads the city boundary, neighborhoods, incidents and risk-factor layers.
2) Builds a fishnet and aggregates every point layer onto it.
3) Engineers nearest-neighbor, distance-to-center and hot-spot features.
4) Cross-validates Poisson regressions (random k-fold and leave-one-neighborhood-out).
5) Compares predictions against a kernel density baseline and by racial context.
6) Writes tables and plots for interpretation.

Example:
python crime_risk_pipeline.py \
  --incidents data/crimes_2018.csv \
  --holdout_incidents data/crimes_2019.csv \
  --tracts data/tracts.geojson \
  --output_dir outputs
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, List, Tuple

import geopandas as gpd
import matplotlib.pyplot as plt
import pandas as pd

from battery_risk import config
from battery_risk.aggregate import count_layers, count_points, join_by_centroid
from battery_risk.autocorrelation import hotspot_features, queen_weights
from battery_risk.crossval import error_by_fold, error_summary, fold_schemes, run_variants
from battery_risk.evaluate import (
    compare_to_baseline,
    error_by_context,
    feature_correlations,
    kernel_density,
    racial_context,
)
from battery_risk.features import build_feature_table
from battery_risk.grid import CELL_ID_COL, build_fishnet, cell_centroids
from battery_risk.loaders import (
    filter_incidents,
    filter_licenses,
    load_points,
    load_polygons,
    points_from_table,
    read_table,
)
from battery_risk.neighbors import center_distance, neighborhood_center, nn_features, point_coords

logger = logging.getLogger("crime_risk_pipeline")

SERVICE_REQUEST_LAYERS = ("abandoned_buildings", "abandoned_cars", "graffiti", "street_lights_out", "sanitation")
COMPARISON_VARIANT = ("Spatial Process", "Spatial LOGO-CV")


# --------------------------
# Loading
# --------------------------
def _socrata_params(limit: int) -> Dict[str, object]:
    return {"$limit": limit}


def load_incidents(source: str, args: argparse.Namespace) -> gpd.GeoDataFrame:
    df = read_table(source, params=_socrata_params(args.limit), timeout=args.timeout)
    df = filter_incidents(df, args.primary_type, args.description)
    return points_from_table(df, crs=args.crs)


def load_risk_layers(args: argparse.Namespace) -> Dict[str, gpd.GeoDataFrame]:
    """Risk-factor point layers keyed by name: --risk_layer overrides, else the open-data defaults."""
    if args.risk_layer:
        layers = {}
        for entry in args.risk_layer:
            name, _, source = entry.partition("=")
            if not source:
                raise ValueError(f"--risk_layer expects NAME=SOURCE, got {entry!r}")
            layers[name] = load_points(source, crs=args.crs, params=_socrata_params(args.limit), timeout=args.timeout)
        return layers

    layers = {
        name: load_points(config.DATA_SOURCES[name], crs=args.crs,
                          params=_socrata_params(args.limit), timeout=args.timeout)
        for name in SERVICE_REQUEST_LAYERS
    }
    licenses = read_table(config.DATA_SOURCES["business_licenses"],
                          params=_socrata_params(args.limit), timeout=args.timeout)
    for name, pattern in config.LICENSE_CATEGORIES.items():
        layers[name] = points_from_table(filter_licenses(licenses, pattern), crs=args.crs)
    return layers


# --------------------------
# Feature engineering
# --------------------------
def engineer_features(
    boundary: gpd.GeoDataFrame,
    neighborhoods: gpd.GeoDataFrame,
    incidents: gpd.GeoDataFrame,
    layers: Dict[str, gpd.GeoDataFrame],
    args: argparse.Namespace,
) -> Tuple[gpd.GeoDataFrame, List[str]]:
    grid = build_fishnet(boundary, args.cell_size)
    risk_factors = list(layers)

    incidents = incidents.assign(category=config.TARGET_COL)
    target = count_points(grid, incidents, categories=[config.TARGET_COL])
    counts = count_layers(grid, layers)
    nn = nn_features(grid, layers, k=args.nn_k)
    center = center_distance(grid, neighborhood_center(neighborhoods, args.center_neighborhood, args.name_col))
    hood = join_by_centroid(grid, neighborhoods, args.name_col, out_col=config.NEIGHBORHOOD_COL)

    w = queen_weights(grid)
    hotspots = hotspot_features(
        grid,
        target[config.TARGET_COL],
        w,
        report_alpha=args.report_alpha,
        cluster_alpha=args.cluster_alpha,
        k=args.cluster_k,
    )

    features = risk_factors + list(nn.columns) + [config.CENTER_DISTANCE_COL, *config.SPATIAL_PROCESS_FEATURES]
    table = build_feature_table(
        grid,
        [target, counts, nn, center, hotspots, hood],
        features=features,
        required=[config.TARGET_COL, config.NEIGHBORHOOD_COL],
        risk_factors=risk_factors,
    )
    return table, risk_factors


# --------------------------
# Evaluation
# --------------------------
def compare_with_density(
    table: gpd.GeoDataFrame,
    predictions: pd.DataFrame,
    incidents: gpd.GeoDataFrame,
    holdout: gpd.GeoDataFrame,
    bandwidth: float,
) -> pd.DataFrame:
    regression, scheme = COMPARISON_VARIANT
    chosen = predictions[(predictions["regression"] == regression) & (predictions["cv_scheme"] == scheme)]
    chosen = chosen.set_index(CELL_ID_COL).reindex(table[CELL_ID_COL])

    observed = count_points(table, holdout.assign(category="holdout"), categories=["holdout"])["holdout"]
    density = kernel_density(point_coords(incidents), cell_centroids(table), bandwidth=bandwidth)
    return compare_to_baseline(chosen["predicted"].to_numpy(), density, observed.to_numpy())


def context_errors(table: gpd.GeoDataFrame, predictions: pd.DataFrame, args: argparse.Namespace) -> pd.DataFrame:
    tracts = load_polygons(args.tracts, crs=args.crs, timeout=args.timeout)
    labelled = racial_context(tracts, args.tract_total_col, args.tract_white_col)
    context = join_by_centroid(table, labelled, config.CONTEXT_COL)
    return error_by_context(predictions, context)


# --------------------------
# Visualization
# --------------------------
def plot_prediction_maps(table: gpd.GeoDataFrame, predictions: pd.DataFrame, output_dir: Path) -> None:
    variants = predictions.groupby(["regression", "cv_scheme"], sort=False)
    fig, axes = plt.subplots(1, len(variants) + 1, figsize=(5 * (len(variants) + 1), 6))
    table.plot(column=config.TARGET_COL, cmap="Reds", legend=True, ax=axes[0])
    axes[0].set_title("Observed battery count")

    for ax, ((regression, scheme), preds) in zip(axes[1:], variants):
        mapped = table[[CELL_ID_COL, "geometry"]].merge(preds[[CELL_ID_COL, "predicted"]], on=CELL_ID_COL)
        mapped.plot(column="predicted", cmap="Reds", legend=True, ax=ax)
        ax.set_title(f"{regression}\n{scheme}")

    for ax in axes:
        ax.axis("off")
    fig.tight_layout()
    fig.savefig(output_dir / "prediction_maps.png", dpi=200)
    plt.close(fig)


def plot_hotspots(table: gpd.GeoDataFrame, output_dir: Path) -> None:
    fig, axes = plt.subplots(1, 3, figsize=(15, 6))
    table.plot(column="local_i", cmap="viridis", legend=True, ax=axes[0])
    axes[0].set_title("Local Moran's I")
    table.plot(column="is_significant", cmap="Reds", categorical=True, legend=True, ax=axes[1])
    axes[1].set_title("Significant at report alpha")
    table.plot(column=config.CLUSTER_DISTANCE_COL, cmap="viridis_r", legend=True, ax=axes[2])
    axes[2].set_title("Distance to hot-spot cluster")
    for ax in axes:
        ax.axis("off")
    fig.tight_layout()
    fig.savefig(output_dir / "hotspots.png", dpi=200)
    plt.close(fig)


def plot_risk_comparison(comparison: pd.DataFrame, output_dir: Path) -> None:
    pivot = comparison.pivot(index="risk_category", columns="label", values="pct_of_total")
    fig, ax = plt.subplots(figsize=(8, 5))
    pivot.plot.bar(ax=ax)
    ax.set_ylabel("Share of held-out incidents")
    ax.set_xlabel("Risk category")
    ax.set_title("Risk predictions vs. kernel density")
    fig.tight_layout()
    fig.savefig(output_dir / "risk_comparison.png", dpi=200)
    plt.close(fig)


# --------------------------
# Main orchestration
# --------------------------
def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Domestic battery risk model pipeline")
    parser.add_argument("--boundary", type=str, default=config.DATA_SOURCES["boundary"])
    parser.add_argument("--neighborhoods", type=str, default=config.DATA_SOURCES["neighborhoods"])
    parser.add_argument("--name_col", type=str, default="name")
    parser.add_argument("--center_neighborhood", type=str, default="Loop")
    parser.add_argument("--incidents", type=str, default=config.DATA_SOURCES["incidents"])
    parser.add_argument("--holdout_incidents", type=str, default=None)
    parser.add_argument("--primary_type", type=str, default=config.INCIDENT_PRIMARY_TYPE)
    parser.add_argument("--description", type=str, default=config.INCIDENT_DESCRIPTION)
    parser.add_argument("--risk_layer", action="append", metavar="NAME=SOURCE")
    parser.add_argument("--tracts", type=str, default=None)
    parser.add_argument("--tract_total_col", type=str, default="B02001_001E")
    parser.add_argument("--tract_white_col", type=str, default="B02001_002E")
    parser.add_argument("--crs", type=str, default=config.DEFAULT_CRS)
    parser.add_argument("--cell_size", type=float, default=config.CELL_SIZE)
    parser.add_argument("--nn_k", type=int, default=config.NN_K)
    parser.add_argument("--cluster_k", type=int, default=config.CLUSTER_NN_K)
    parser.add_argument("--report_alpha", type=float, default=config.REPORT_ALPHA)
    parser.add_argument("--cluster_alpha", type=float, default=config.CLUSTER_ALPHA)
    parser.add_argument("--n_random_folds", type=int, default=config.N_RANDOM_FOLDS)
    parser.add_argument("--kde_bandwidth", type=float, default=config.KDE_BANDWIDTH)
    parser.add_argument("--n_jobs", type=int, default=1)
    parser.add_argument("--limit", type=int, default=500000, help="Row limit for open-data queries")
    parser.add_argument("--timeout", type=float, default=config.FETCH_TIMEOUT)
    parser.add_argument("--output_dir", type=Path, default=Path("outputs"))
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = parse_args()
    args.output_dir.mkdir(parents=True, exist_ok=True)

    print("Loading datasets...")
    boundary = load_polygons(args.boundary, crs=args.crs, timeout=args.timeout)
    neighborhoods = load_polygons(args.neighborhoods, crs=args.crs, timeout=args.timeout)
    incidents = load_incidents(args.incidents, args)
    layers = load_risk_layers(args)

    print("Building feature table...")
    table, risk_factors = engineer_features(boundary, neighborhoods, incidents, layers, args)
    covariates = config.covariate_sets(risk_factors)

    print("Cross-validating models...")
    schemes = fold_schemes(table, n_folds=args.n_random_folds)
    predictions = run_variants(table, covariates, schemes, n_jobs=args.n_jobs)
    summary = error_summary(predictions)
    print("\n=== Cross-validation summary ===")
    print(summary)

    table.to_file(args.output_dir / "feature_table.geojson", driver="GeoJSON")
    predictions.to_csv(args.output_dir / "predictions.csv", index=False)
    summary.to_csv(args.output_dir / "error_summary.csv", index=False)
    error_by_fold(predictions).to_csv(args.output_dir / "error_by_fold.csv", index=False)
    feature_correlations(table, covariates["Spatial Process"], config.TARGET_COL).to_csv(
        args.output_dir / "feature_correlations.csv", index=False
    )

    if args.holdout_incidents:
        print("Comparing against kernel density...")
        holdout = load_incidents(args.holdout_incidents, args)
        comparison = compare_with_density(table, predictions, incidents, holdout, args.kde_bandwidth)
        comparison.to_csv(args.output_dir / "risk_comparison.csv", index=False)
        plot_risk_comparison(comparison, args.output_dir)
    else:
        logger.info("No --holdout_incidents given; skipping the kernel density comparison")

    if args.tracts:
        print("Summarising errors by racial context...")
        context_errors(table, predictions, args).to_csv(args.output_dir / "error_by_context.csv", index=False)

    with open(args.output_dir / "metadata.json", "w", encoding="utf-8") as f:
        json.dump(
            {
                "target": config.TARGET_COL,
                "risk_factors": risk_factors,
                "covariate_sets": covariates,
                "cv_schemes": list(schemes),
                "n_cells": int(len(table)),
                "cell_size": args.cell_size,
                "crs": args.crs,
                "nn_k": args.nn_k,
                "cluster_k": args.cluster_k,
                "report_alpha": args.report_alpha,
                "cluster_alpha": args.cluster_alpha,
                "mae": {
                    f"{row.regression} / {row.cv_scheme}": float(row.mae)
                    for row in summary.itertuples(index=False)
                },
            },
            f,
            indent=2,
        )

    print("Generating visualizations...")
    plot_prediction_maps(table, predictions, args.output_dir)
    plot_hotspots(table, args.output_dir)

    print(f"Done. Artifacts written to: {args.output_dir.resolve()}")


if __name__ == "__main__":
    main()
