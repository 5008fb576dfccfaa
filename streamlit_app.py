#!/usr/bin/env python3
"""Optional Streamlit dashboard for battery risk predictions."""

from __future__ import annotations

import json
from pathlib import Path

import geopandas as gpd
import pandas as pd
import plotly.express as px
import streamlit as st

from battery_risk.evaluate import risk_categories

st.set_page_config(page_title="Battery Risk", layout="wide")
st.title("Domestic Battery Risk Dashboard")

st.sidebar.header("Configuration")
artifacts_dir = Path(st.sidebar.text_input("Artifacts directory", "outputs"))

meta_path = artifacts_dir / "metadata.json"
features_path = artifacts_dir / "feature_table.geojson"
predictions_path = artifacts_dir / "predictions.csv"

if not (meta_path.exists() and features_path.exists() and predictions_path.exists()):
    st.warning("Missing artifacts. Run crime_risk_pipeline.py first.")
    st.stop()

with open(meta_path, "r", encoding="utf-8") as f:
    metadata = json.load(f)

gdf = gpd.read_file(features_path)
predictions = pd.read_csv(predictions_path)
target = metadata["target"]

regression = st.sidebar.selectbox("Regression", list(metadata["covariate_sets"]))
scheme = st.sidebar.selectbox("Cross-validation", metadata["cv_schemes"])

chosen = predictions[(predictions["regression"] == regression) & (predictions["cv_scheme"] == scheme)]
view_df = gdf.merge(chosen[["cell_id", "fold", "predicted", "error"]], on="cell_id", how="inner")
view_df["risk_category"] = risk_categories(view_df["predicted"]).astype(str)

col1, col2 = st.columns(2)
with col1:
    st.subheader("Mean absolute error")
    mae = pd.Series(metadata["mae"], name="MAE").rename_axis("variant").reset_index()
    fig = px.bar(mae, x="variant", y="MAE", height=400)
    st.plotly_chart(fig, use_container_width=True)

with col2:
    st.subheader("Selected variant")
    st.metric("Cells", len(view_df))
    st.metric("MAE", f"{view_df['error'].abs().mean():.3f}")
    st.metric("Mean error", f"{view_df['error'].mean():+.3f}")

st.subheader("Spatial View")
map_df = view_df.to_crs("EPSG:4326")
map_fig = px.choropleth_mapbox(
    map_df,
    geojson=map_df.__geo_interface__,
    locations=map_df.index,
    color="risk_category",
    category_orders={"risk_category": list(risk_categories([0]).categories)},
    mapbox_style="carto-positron",
    center={"lat": float(map_df.geometry.centroid.y.mean()), "lon": float(map_df.geometry.centroid.x.mean())},
    zoom=9,
    opacity=0.6,
    hover_data=["cell_id", target, "predicted", "fold"],
)
st.plotly_chart(map_fig, use_container_width=True)

comparison_path = artifacts_dir / "risk_comparison.csv"
if comparison_path.exists():
    st.subheader("Risk predictions vs. kernel density")
    comparison = pd.read_csv(comparison_path)
    fig = px.bar(comparison, x="risk_category", y="pct_of_total", color="label", barmode="group", height=400)
    st.plotly_chart(fig, use_container_width=True)

context_path = artifacts_dir / "error_by_context.csv"
if context_path.exists():
    st.subheader("Mean error by racial context")
    context = pd.read_csv(context_path)
    st.dataframe(context.pivot_table(index=["regression", "cv_scheme"], columns="race_context", values="mean_error"))

st.subheader("Download")
out_csv = view_df.drop(columns="geometry", errors="ignore").to_csv(index=False).encode("utf-8")
st.download_button("Download predictions CSV", data=out_csv, file_name="battery_risk_predictions.csv", mime="text/csv")
