"""
tests/test_autocorrelation.py
-----------------------------
Queen weights, Local Moran's I and the hot-spot features.

The "hot corner" fixture puts 10 incidents in cells 0, 1, 4 and 5 of the
4 x 4 grid and none elsewhere. Worked by hand with the normal
approximation: cell 0 has z ~ 5.98 (p ~ 1e-9), cells 1 and 4 z ~ 4.0,
cell 5 z ~ 2.27 (p ~ 0.012); every other cell has p > 0.15.
"""

import logging

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from esda.moran import Moran
from libpysal.weights import W
from shapely.geometry import box

from battery_risk.autocorrelation import hotspot_features, local_moran, queen_weights
from battery_risk.errors import ConfigurationError, InsufficientDataError
from battery_risk.grid import CELL_ID_COL, build_fishnet


@pytest.fixture
def w4(grid4):
    return queen_weights(grid4)


@pytest.fixture
def hot_corner():
    values = pd.Series(0.0, index=range(16))
    values.loc[[0, 1, 4, 5]] = 10.0
    return values


class TestQueenWeights:

    def test_neighbor_counts(self, w4):
        assert w4.cardinalities[0] == 3
        assert w4.cardinalities[1] == 5
        assert w4.cardinalities[5] == 8

    def test_corner_neighbors(self, w4):
        assert sorted(w4.neighbors[0]) == [1, 4, 5]

    def test_row_standardized(self, w4):
        for cell in w4.id_order:
            assert sum(w4.weights[cell]) == pytest.approx(1.0)

    def test_no_islands_on_full_grid(self, w4):
        assert w4.islands == []


class TestLocalMoran:

    def test_uniform_values_not_significant(self, w4):
        result = local_moran(pd.Series(3.0, index=range(16)), w4)
        np.testing.assert_allclose(result["local_i"], 0.0)
        assert (result["p_value"] > 0.05).all()
        assert not result["is_significant"].any()

    def test_mean_matches_global_moran(self, w4, rng):
        values = rng.poisson(4, size=16).astype(float)
        result = local_moran(values, w4)
        global_i = Moran(values, w4, transformation="r", permutations=0).I
        assert result["local_i"].mean() == pytest.approx(global_i)

    def test_hot_corner_statistic(self, w4, hot_corner):
        result = local_moran(hot_corner, w4)
        assert result.loc[0, "local_i"] == pytest.approx(3.0)
        assert result.loc[0, "expected_i"] == pytest.approx(-1 / 15)
        assert result.loc[0, "p_value"] < 1e-7

    def test_hot_corner_significance(self, w4, hot_corner):
        result = local_moran(hot_corner, w4, alpha=0.05)
        assert set(result.index[result["is_significant"]]) == {0, 1, 4, 5}

    def test_two_sided_p_doubles_upper_tail(self, w4, hot_corner):
        upper = local_moran(hot_corner, w4, alternative="greater")
        both = local_moran(hot_corner, w4, alternative="two-sided")
        assert both.loc[5, "p_value"] == pytest.approx(2 * upper.loc[5, "p_value"])

    def test_index_is_cell_id(self, w4, hot_corner):
        result = local_moran(hot_corner, w4)
        assert result.index.name == "cell_id"
        assert list(result.index) == list(range(16))

    def test_series_aligned_by_id(self, w4, hot_corner):
        shuffled = hot_corner.sample(frac=1, random_state=3)
        pd.testing.assert_frame_equal(local_moran(shuffled, w4), local_moran(hot_corner, w4))

    def test_unchanged_by_constant_shift(self, w4, hot_corner):
        base = local_moran(hot_corner, w4)
        shifted = local_moran(hot_corner + 1e6, w4)
        for col in ["local_i", "expected_i", "variance_i", "p_value"]:
            np.testing.assert_allclose(shifted[col], base[col], rtol=1e-9, atol=1e-12)
        assert shifted.loc[0, "p_value"] < 1e-7
        assert shifted["is_significant"].equals(base["is_significant"])

    def test_island_on_fishnet(self, square_boundary, caplog):
        detached = gpd.GeoDataFrame(geometry=[box(600, 600, 700, 700)], crs=square_boundary.crs)
        grid = build_fishnet(pd.concat([square_boundary, detached], ignore_index=True), 100)
        island = int(grid[CELL_ID_COL].max())
        with caplog.at_level(logging.WARNING, logger="battery_risk.autocorrelation"):
            w = queen_weights(grid)
        assert w.islands == [island]
        assert "1 cells have no queen neighbors" in caplog.text

        values = pd.Series(0.0, index=grid[CELL_ID_COL])
        values.loc[[0, 1, 4, 5, island]] = 10.0
        result = local_moran(values, w)
        assert result.loc[island, "local_i"] == 0.0
        assert result.loc[island, "p_value"] == 1.0
        assert not result.loc[island, "is_significant"]
        assert result.loc[0, "local_i"] > 0

    def test_island_gets_zero_weight(self):
        w = W({0: [1], 1: [0, 2], 2: [1], 3: []}, silence_warnings=True)
        w.transform = "r"
        result = local_moran(np.array([1.0, 5.0, 3.0, 7.0]), w)
        assert result.loc[3, "local_i"] == 0.0
        assert result.loc[3, "p_value"] == 1.0
        assert not result.loc[3, "is_significant"]
        assert result.loc[[0, 1, 2], "local_i"].notna().all()

    def test_too_few_cells(self):
        w = W({0: [1], 1: [0]}, silence_warnings=True)
        with pytest.raises(InsufficientDataError):
            local_moran([1.0, 2.0], w)

    def test_length_mismatch(self, w4):
        with pytest.raises(ValueError):
            local_moran(np.ones(5), w4)

    @pytest.mark.parametrize("kwargs", [
        {"alpha": 0},
        {"alpha": 1.5},
        {"alternative": "sideways"},
        {"method": "bootstrap"},
    ])
    def test_bad_parameters(self, w4, hot_corner, kwargs):
        with pytest.raises(ConfigurationError):
            local_moran(hot_corner, w4, **kwargs)

    def test_permutation_method(self, w4, hot_corner):
        result = local_moran(hot_corner, w4, method="permutation", permutations=99)
        assert result.loc[0, "local_i"] == pytest.approx(3.0)
        assert result["p_value"].between(0, 1).all()

    def test_permutation_honours_alternative(self, w4, hot_corner):
        def p_values(alternative):
            return local_moran(
                hot_corner, w4, alternative=alternative, method="permutation", permutations=999
            )["p_value"]

        greater, less, both = p_values("greater"), p_values("less"), p_values("two-sided")
        # cell 0 already has every hot value as a neighbor, so almost no draw exceeds it
        assert greater.loc[0] < 0.05
        assert less.loc[0] > 0.9
        np.testing.assert_allclose(both, np.minimum(1.0, 2 * np.minimum(greater, less)))
        assert not np.allclose(greater, less)

    def test_permutation_count_must_be_positive(self, w4, hot_corner):
        with pytest.raises(ConfigurationError):
            local_moran(hot_corner, w4, method="permutation", permutations=0)


class TestHotspotFeatures:

    def test_two_alphas_are_independent(self, grid4, w4, hot_corner):
        hot = hotspot_features(grid4, hot_corner, w4, report_alpha=0.05, cluster_alpha=1e-7)
        assert hot["is_significant"].sum() == 4
        assert hot["is_cluster"].sum() == 1
        assert hot.loc[0, "is_cluster"] == 1

    def test_looser_cluster_alpha_adds_cells(self, grid4, w4, hot_corner):
        hot = hotspot_features(grid4, hot_corner, w4, report_alpha=0.05, cluster_alpha=0.01)
        assert set(hot.index[hot["is_cluster"] == 1]) == {0, 1, 4}
        assert hot["is_significant"].sum() == 4

    def test_cluster_distance(self, grid4, w4, hot_corner):
        hot = hotspot_features(grid4, hot_corner, w4, k=1)
        assert hot.loc[0, "cluster_distance"] == pytest.approx(0.0)
        assert hot.loc[15, "cluster_distance"] == pytest.approx(np.hypot(300, 300))

    def test_columns(self, grid4, w4, hot_corner):
        hot = hotspot_features(grid4, hot_corner, w4)
        assert list(hot.columns) == ["local_i", "p_value", "is_significant", "is_cluster", "cluster_distance"]
        assert list(hot.index) == list(range(16))

    def test_no_cluster_cells_is_an_error(self, grid4, w4):
        with pytest.raises(InsufficientDataError):
            hotspot_features(grid4, pd.Series(2.0, index=range(16)), w4, cluster_alpha=0.5)

    def test_fewer_cluster_cells_than_k(self, grid4, w4, hot_corner):
        with pytest.raises(InsufficientDataError):
            hotspot_features(grid4, hot_corner, w4, cluster_alpha=1e-7, k=2)

    def test_bad_cluster_alpha(self, grid4, w4, hot_corner):
        with pytest.raises(ConfigurationError):
            hotspot_features(grid4, hot_corner, w4, cluster_alpha=0)
