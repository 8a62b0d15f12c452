#!/usr/bin/env python3
"""
地面点抽出のテスト
"""

import unittest
import numpy as np

from groundmesh.config import GroundConfig
from groundmesh.errors import InsufficientPointsError
from groundmesh.ground import extract_ground_points, transform_points


SCENE = np.array([
    [0.0, 0.0, 0.0],
    [1.0, 0.05, 0.0],
    [2.0, 0.5, 0.0],
    [3.0, -0.02, 1.0],
])


class TestTransformPoints(unittest.TestCase):
    """座標変換テスト"""

    def test_identity_when_no_matrix(self):
        np.testing.assert_array_equal(transform_points(SCENE, None), SCENE)

    def test_translation_in_last_column(self):
        matrix = np.eye(4)
        matrix[:3, 3] = [1.0, 10.0, -2.0]
        world = transform_points(SCENE, matrix)

        np.testing.assert_allclose(world, SCENE + [1.0, 10.0, -2.0])

    def test_homogeneous_divide(self):
        matrix = np.eye(4)
        matrix[3, 3] = 2.0
        np.testing.assert_allclose(transform_points(SCENE, matrix), SCENE / 2)

    def test_bad_shape(self):
        with self.assertRaises(ValueError):
            transform_points(SCENE, np.eye(3))


class TestExtractGroundPoints(unittest.TestCase):
    """地面点抽出テスト"""

    def test_height_filter(self):
        cloud = extract_ground_points(SCENE.reshape(-1), downsample_ratio=1.0)

        self.assertEqual(cloud.count, 3)
        self.assertEqual(cloud.positions.dtype, np.float32)
        np.testing.assert_allclose(
            cloud.positions.reshape(-1, 3), SCENE[[0, 1, 3]], rtol=1e-6, atol=1e-7
        )

    def test_downsample_step(self):
        """比率0.5なら2点ごとに1点を調べる"""
        cloud = extract_ground_points(SCENE, downsample_ratio=0.5)

        self.assertEqual(cloud.count, 1)
        np.testing.assert_allclose(cloud.positions, [0.0, 0.0, 0.0])

    def test_custom_tolerance(self):
        cloud = extract_ground_points(SCENE, ground_height_tolerance=1.0, downsample_ratio=1.0)
        self.assertEqual(cloud.count, 4)

    def test_config_supplies_defaults(self):
        config = GroundConfig(ground_height_tolerance=1.0, downsample_ratio=1.0)
        self.assertEqual(extract_ground_points(SCENE, config=config).count, 4)

    def test_explicit_arguments_override_config(self):
        config = GroundConfig(ground_height_tolerance=1.0, downsample_ratio=1.0)
        cloud = extract_ground_points(SCENE, ground_height_tolerance=0.1, config=config)
        self.assertEqual(cloud.count, 3)

    def test_world_matrix_applied(self):
        matrix = np.eye(4)
        matrix[1, 3] = 10.0
        cloud = extract_ground_points(SCENE, world_matrix=matrix, downsample_ratio=1.0)

        self.assertEqual(cloud.count, 3)
        self.assertTrue(np.all(cloud.positions.reshape(-1, 3)[:, 1] >= 9.9))

    def test_empty_cloud(self):
        with self.assertRaises(InsufficientPointsError):
            extract_ground_points(np.zeros(0))

    def test_no_finite_heights(self):
        positions = np.array([[0.0, np.nan, 0.0], [1.0, np.nan, 1.0]])
        with self.assertRaises(InsufficientPointsError):
            extract_ground_points(positions, downsample_ratio=1.0)

    def test_lowest_point_skipped_by_stride(self):
        positions = np.array([[0, 5, 0], [1, 5, 0], [2, 5, 0], [3, 0, 0]], dtype=np.float64)
        with self.assertRaises(InsufficientPointsError) as context:
            extract_ground_points(positions, downsample_ratio=0.5)
        self.assertIn('No ground points found', str(context.exception))

    def test_invalid_ratio(self):
        for ratio in (0.0, -0.5, 1.5):
            with self.subTest(ratio=ratio):
                with self.assertRaises(ValueError):
                    extract_ground_points(SCENE, downsample_ratio=ratio)

    def test_buffer_not_multiple_of_three(self):
        with self.assertRaises(ValueError):
            extract_ground_points(np.zeros(4))


if __name__ == '__main__':
    unittest.main()
