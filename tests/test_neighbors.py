"""
tests/test_neighbors.py
-----------------------
Nearest-neighbor distance engine and distance-to-center feature.
"""

import geopandas as gpd
import numpy as np
import pytest
from shapely.geometry import Point, box

from battery_risk.errors import ConfigurationError, InsufficientDataError
from battery_risk.grid import cell_centroids
from battery_risk.neighbors import (
    center_distance,
    mean_nn_distance,
    neighborhood_center,
    nn_features,
    point_coords,
)
from tests.helpers import CRS, make_points


class TestMeanNNDistance:

    def test_exactly_k_points_uses_all(self, rng):
        to_xy = np.array([[0, 0], [10, 0], [0, 10]], dtype=float)
        from_xy = rng.uniform(-50, 50, size=(20, 2))
        result = mean_nn_distance(from_xy, to_xy, k=3)
        expected = np.linalg.norm(from_xy[:, None, :] - to_xy[None, :, :], axis=2).mean(axis=1)
        np.testing.assert_allclose(result, expected)

    def test_k1_is_nearest_distance(self):
        to_xy = [[0, 0], [100, 0]]
        from_xy = [[10, 0], [90, 0], [50, 30]]
        np.testing.assert_allclose(mean_nn_distance(from_xy, to_xy, k=1), [10, 10, np.hypot(50, 30)])

    def test_mean_of_k_nearest(self):
        to_xy = [[1, 0], [2, 0], [3, 0], [100, 0]]
        np.testing.assert_allclose(mean_nn_distance([[0, 0]], to_xy, k=3), [2.0])

    def test_output_order_matches_input(self, rng):
        to_xy = rng.uniform(0, 100, size=(10, 2))
        from_xy = rng.uniform(0, 100, size=(6, 2))
        forward = mean_nn_distance(from_xy, to_xy)
        backward = mean_nn_distance(from_xy[::-1], to_xy)
        np.testing.assert_allclose(forward, backward[::-1])

    def test_idempotent(self, rng):
        to_xy = rng.uniform(0, 100, size=(10, 2))
        from_xy = rng.uniform(0, 100, size=(6, 2))
        np.testing.assert_array_equal(mean_nn_distance(from_xy, to_xy), mean_nn_distance(from_xy, to_xy))

    def test_too_few_reference_points(self):
        with pytest.raises(InsufficientDataError):
            mean_nn_distance([[0, 0]], [[1, 1], [2, 2]], k=3)

    def test_empty_reference_layer(self):
        with pytest.raises(InsufficientDataError):
            mean_nn_distance([[0, 0]], np.empty((0, 2)), k=1)

    @pytest.mark.parametrize("k", [0, -1, 2.5])
    def test_bad_k(self, k):
        with pytest.raises(ConfigurationError):
            mean_nn_distance([[0, 0]], [[1, 1], [2, 2], [3, 3]], k=k)

    def test_empty_from(self):
        assert mean_nn_distance(np.empty((0, 2)), [[0, 0]], k=1).shape == (0,)


class TestGridFeatures:

    def test_nn_features_one_column_per_layer(self, grid4):
        layers = {
            "graffiti": make_points([(0, 0), (400, 0), (0, 400)]),
            "sanitation": make_points([(200, 200), (210, 200), (200, 210), (0, 0)]),
        }
        nn = nn_features(grid4, layers, k=3)
        assert list(nn.columns) == ["graffiti_nn", "sanitation_nn"]
        assert list(nn.index) == list(range(16))
        assert nn.notna().all().all()

    def test_each_layer_uses_its_own_points(self, grid4):
        near = make_points([(50, 50)])
        far = make_points([(5000, 5000)])
        nn = nn_features(grid4, {"near": near, "far": far}, k=1)
        assert nn.loc[0, "near_nn"] == pytest.approx(0.0)
        assert nn.loc[0, "far_nn"] > 6000

    def test_nn_features_insufficient_layer(self, grid4):
        with pytest.raises(InsufficientDataError):
            nn_features(grid4, {"pawn_shops": make_points([(10, 10)])}, k=3)

    def test_point_coords_uses_centroids_for_polygons(self, grid4):
        np.testing.assert_allclose(point_coords(grid4), cell_centroids(grid4))

    def test_center_distance(self, grid4):
        dist = center_distance(grid4, Point(0, 0))
        assert dist.name == "center_distance"
        assert dist.loc[0] == pytest.approx(np.hypot(50, 50))
        assert dist.loc[15] == pytest.approx(np.hypot(350, 350))

    def test_neighborhood_center(self):
        hoods = gpd.GeoDataFrame(
            {"name": ["Loop", "Uptown"]},
            geometry=[box(0, 0, 100, 100), box(100, 0, 300, 100)],
            crs=CRS,
        )
        center = neighborhood_center(hoods, "Loop")
        assert (center.x, center.y) == pytest.approx((50, 50))

    def test_neighborhood_center_unknown(self):
        hoods = gpd.GeoDataFrame({"name": ["Loop"]}, geometry=[box(0, 0, 1, 1)], crs=CRS)
        with pytest.raises(ConfigurationError):
            neighborhood_center(hoods, "Nowhere")
