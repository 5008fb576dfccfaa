"""Shared constants and defaults for the battery risk pipeline.

Library functions take these as keyword defaults; crime_risk_pipeline.py
exposes the ones worth changing as command-line flags.
"""

from __future__ import annotations

from typing import Dict, List, Sequence, Tuple

RANDOM_STATE = 42

# Illinois East (ftUS). All distances, cell sizes and bandwidths are in CRS units.
DEFAULT_CRS = "EPSG:3435"
SOURCE_CRS = "EPSG:4326"

CELL_SIZE = 500.0
NN_K = 3
CLUSTER_NN_K = 1
REPORT_ALPHA = 0.05
CLUSTER_ALPHA = 0.0000001
KDE_BANDWIDTH = 1000.0
N_RANDOM_FOLDS = 100
FETCH_TIMEOUT = 60

# --------------------------
# Incident selection
# --------------------------
INCIDENT_PRIMARY_TYPE = "BATTERY"
INCIDENT_DESCRIPTION = "DOMESTIC BATTERY SIMPLE"
TARGET_COL = "battery_count"

# --------------------------
# Feature names
# --------------------------
RISK_FACTORS: Tuple[str, ...] = (
    "abandoned_buildings",
    "abandoned_cars",
    "graffiti",
    "street_lights_out",
    "sanitation",
    "liquor_retail",
    "tobacco_retail",
    "pawn_shops",
)

CENTER_DISTANCE_COL = "center_distance"
IS_CLUSTER_COL = "is_cluster"
CLUSTER_DISTANCE_COL = "cluster_distance"
SPATIAL_PROCESS_FEATURES: Tuple[str, ...] = (IS_CLUSTER_COL, CLUSTER_DISTANCE_COL)

NEIGHBORHOOD_COL = "neighborhood"
CONTEXT_COL = "race_context"


def nn_column(layer_name: str) -> str:
    return f"{layer_name}_nn"


def known_features(risk_factors: Sequence[str] = RISK_FACTORS) -> List[str]:
    """Closed set of feature names a feature table may declare."""
    names = list(risk_factors)
    names += [nn_column(name) for name in risk_factors]
    names += [CENTER_DISTANCE_COL, *SPATIAL_PROCESS_FEATURES]
    return names


def covariate_sets(risk_factors: Sequence[str] = RISK_FACTORS) -> Dict[str, List[str]]:
    """The two regressions compared in every run."""
    risk_only = [nn_column(name) for name in risk_factors] + [CENTER_DISTANCE_COL]
    return {
        "Just Risk Factors": risk_only,
        "Spatial Process": risk_only + list(SPATIAL_PROCESS_FEATURES),
    }


RISK_CATEGORY_LABELS: Tuple[str, ...] = (
    "1% to 29%",
    "30% to 49%",
    "50% to 69%",
    "70% to 89%",
    "90% to 100%",
)
# Lower percentile bound of each label above.
RISK_CATEGORY_BREAKS: Tuple[int, ...] = (1, 30, 50, 70, 90)

# --------------------------
# Chicago open data endpoints
# --------------------------
DATA_SOURCES = {
    "boundary": "https://data.cityofchicago.org/api/geospatial/ewy2-6yfk?method=export&format=GeoJSON",
    "neighborhoods": "https://raw.githubusercontent.com/blackmad/neighborhoods/master/chicago.geojson",
    "incidents": "https://data.cityofchicago.org/resource/3i3m-jwuy.json",
    "abandoned_buildings": "https://data.cityofchicago.org/resource/7nii-7srd.json",
    "abandoned_cars": "https://data.cityofchicago.org/resource/3c9v-pnva.json",
    "graffiti": "https://data.cityofchicago.org/resource/hec5-y4x5.json",
    "street_lights_out": "https://data.cityofchicago.org/resource/zuxi-7xem.json",
    "sanitation": "https://data.cityofchicago.org/resource/me59-5fac.json",
    "business_licenses": "https://data.cityofchicago.org/resource/r5kz-chrr.json",
}

# Business-license activity codes that make up the retail risk factors.
LICENSE_CATEGORIES = {
    "liquor_retail": "Tavern|Liquor",
    "tobacco_retail": "Tobacco",
    "pawn_shops": "Pawnbroker",
}
