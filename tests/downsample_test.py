#!/usr/bin/env python3
"""
ダウンサンプリングのテスト

グリッドサンプリングの点数上限と、段階的比率サンプリングをテストします。
"""

import unittest
import numpy as np
import pytest

from groundmesh.data_types import (
    PointSet,
    BoundingBox,
    NoDownsample,
    GridDownsample,
    ProgressiveDownsample,
)
from groundmesh.mesh.downsample import Downsampler, grid_downsample


def random_points(n: int, seed: int = 0, extent: float = 1.0) -> PointSet:
    rng = np.random.default_rng(seed)
    x = rng.uniform(0, extent, n)
    z = rng.uniform(0, extent, n)
    return PointSet(x, np.zeros(n), z, np.arange(n))


class TestGridSampling(unittest.TestCase):
    """グリッドサンプリングテスト"""

    def setUp(self):
        self.downsampler = Downsampler()
        self.points = random_points(10000)

    def test_count_within_bounds(self):
        """出力点数は 3 以上、目標以下"""
        for target in (3, 10, 100, 2500):
            with self.subTest(target=target):
                result = self.downsampler.grid_sample(self.points, target)
                self.assertGreaterEqual(len(result.points), 3)
                self.assertLessEqual(len(result.points), target)
                self.assertIsInstance(result.strategy, GridDownsample)
                self.assertEqual(result.strategy.original_count, 10000)
                self.assertEqual(result.strategy.point_count, len(result.points))

    def test_no_downsampling_below_target(self):
        result = self.downsampler.grid_sample(self.points, 20000)
        self.assertIsInstance(result.strategy, NoDownsample)
        self.assertIs(result.points, self.points)

    def test_grid_size(self):
        result = self.downsampler.grid_sample(self.points, 100)
        # 縦横比がほぼ1なので目標はほとんど増えない
        self.assertEqual(result.strategy.grid_size, 10)

    def test_representatives_are_input_points(self):
        result = self.downsampler.grid_sample(self.points, 100)
        indices = result.points.original_index
        np.testing.assert_array_equal(result.points.x, self.points.x[indices])
        np.testing.assert_array_equal(result.points.z, self.points.z[indices])
        # 入力順を保つ
        self.assertTrue(np.all(np.diff(indices) > 0))

    def test_deterministic(self):
        first = self.downsampler.grid_sample(self.points, 500)
        second = self.downsampler.grid_sample(self.points, 500)
        np.testing.assert_array_equal(first.points.original_index, second.points.original_index)

    def test_hard_cap(self):
        downsampler = Downsampler(max_points=500)
        result = downsampler.apply_hard_cap(self.points)

        self.assertIsInstance(result.strategy, GridDownsample)
        self.assertLessEqual(len(result.points), 500)

    def test_hard_cap_not_applied_below_limit(self):
        result = Downsampler().apply_hard_cap(self.points)
        self.assertIsInstance(result.strategy, NoDownsample)

    def test_enhanced_pass_for_thin_region(self):
        """代表点の検証に失敗し、1セルあたり複数点ある場合はセルごとに複数点を取る"""
        rng = np.random.default_rng(21)
        n = 1000
        thin = PointSet(rng.uniform(0, 1, n), np.zeros(n), rng.uniform(0, 5e-4, n), np.arange(n))

        downsampler = Downsampler()
        result = downsampler.grid_sample(thin, 10)

        self.assertEqual(downsampler.stats['enhanced_passes'], 1)
        self.assertGreater(len(result.points), 10)
        self.assertIsInstance(result.strategy, GridDownsample)
        self.assertEqual(result.strategy.point_count, len(result.points))
        self.assertEqual(result.strategy.original_count, n)

    def test_no_enhanced_pass_for_valid_sample(self):
        self.downsampler.grid_sample(self.points, 100)
        self.assertEqual(self.downsampler.stats['enhanced_passes'], 0)

    def test_module_function(self):
        result = grid_downsample(self.points, 50)
        self.assertLessEqual(len(result.points), 50)


class TestProgressiveSampling(unittest.TestCase):
    """段階的比率サンプリングテスト"""

    def setUp(self):
        self.downsampler = Downsampler()
        self.points = random_points(1000, seed=5)
        self.bbox = BoundingBox.from_points(self.points)

    def test_ratios_in_order(self):
        expected_targets = [500, 250, 100, 50, 10]
        for attempt, target in enumerate(expected_targets):
            with self.subTest(attempt=attempt):
                result = self.downsampler.progressive_sample(self.points, attempt, self.bbox)
                self.assertIsInstance(result.strategy, ProgressiveDownsample)
                self.assertEqual(result.strategy.attempt, attempt)
                self.assertEqual(result.strategy.ratio, self.downsampler.progressive_ratios[attempt])
                self.assertEqual(result.strategy.original_count, 1000)
                self.assertLessEqual(len(result.points), target)
                self.assertGreaterEqual(len(result.points), 3)

    def test_exhausted_ratios(self):
        self.assertIsNone(self.downsampler.progressive_sample(self.points, 5, self.bbox))
        self.assertIsNone(self.downsampler.progressive_sample(self.points, -1, self.bbox))

    def test_unreduced_target_reports_no_downsampling(self):
        """目標点数が元の点数以上なら NoDownsample で元の点群を返す"""
        points = random_points(3, seed=2)
        result = self.downsampler.progressive_sample(points, 0)

        self.assertIsInstance(result.strategy, NoDownsample)
        self.assertEqual(result.strategy.point_count, 3)
        self.assertIs(result.points, points)

    def test_minimum_target_is_three(self):
        points = random_points(50, seed=9)
        result = self.downsampler.progressive_sample(points, 4)
        self.assertGreaterEqual(len(result.points), 3)
        self.assertLessEqual(len(result.points), 3)


@pytest.mark.slow
class TestLargeGridSampling(unittest.TestCase):
    """大規模グリッドサンプリングテスト"""

    def test_elongated_bounding_box(self):
        """細長い領域でも目標以下に収まる"""
        rng = np.random.default_rng(11)
        n = 200000
        points = PointSet(rng.uniform(0, 1000, n), np.zeros(n), rng.uniform(0, 50, n), np.arange(n))

        result = Downsampler().apply_hard_cap(points)
        self.assertLessEqual(len(result.points), 100000)
        self.assertGreaterEqual(len(result.points), 3)


if __name__ == '__main__':
    unittest.main()
