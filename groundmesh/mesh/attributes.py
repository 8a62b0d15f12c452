#!/usr/bin/env python3
"""
メッシュ属性計算

受理された三角形リストから面法線と頂点法線を計算します。
面積がほぼゼロの三角形は法線に寄与しません。
"""

import time
from typing import Tuple

import numpy as np

from ..constants import NORMAL_LENGTH_THRESHOLD
from .. import get_logger

logger = get_logger(__name__)


class NormalComputer:
    """頂点法線計算器"""

    def __init__(self, length_threshold: float = NORMAL_LENGTH_THRESHOLD):
        """
        初期化

        Args:
            length_threshold: 面法線として採用する外積長の下限
        """
        self.length_threshold = length_threshold

        self.stats = {
            'total_calculations': 0,
            'total_time_ms': 0.0,
            'last_num_vertices': 0,
            'last_num_triangles': 0,
            'last_degenerate_triangles': 0,
            'last_isolated_vertices': 0
        }

    def calculate_face_normals(
        self,
        vertices: np.ndarray,
        triangles: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        三角形法線を計算

        Args:
            vertices: 頂点座標 (N, 3)
            triangles: 三角形インデックス (M, 3)

        Returns:
            (単位面法線 (M, 3), 有効フラグ (M,))。無効な三角形の法線はゼロ
        """
        vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        if len(triangles) == 0:
            return np.zeros((0, 3)), np.zeros(0, dtype=bool)

        v0 = vertices[triangles[:, 0]]
        v1 = vertices[triangles[:, 1]]
        v2 = vertices[triangles[:, 2]]
        cross = np.cross(v1 - v0, v2 - v0)
        lengths = np.linalg.norm(cross, axis=1)

        valid = lengths > self.length_threshold
        face_normals = np.zeros_like(cross)
        face_normals[valid] = cross[valid] / lengths[valid, np.newaxis]
        return face_normals, valid

    def calculate_vertex_normals(self, vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
        """
        頂点法線を計算

        寄与する面法線の平均を再正規化する。寄与する面がない頂点は
        ゼロベクトルのまま残す。

        Args:
            vertices: 頂点座標 (N, 3)
            triangles: 三角形インデックス (M, 3)

        Returns:
            頂点法線 (N, 3)
        """
        start_time = time.perf_counter()

        vertices = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
        triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        num_vertices = len(vertices)

        face_normals, valid = self.calculate_face_normals(vertices, triangles)

        accumulated = np.zeros((num_vertices, 3))
        counts = np.zeros(num_vertices)
        contributing = triangles[valid]
        for corner in range(3):
            np.add.at(accumulated, contributing[:, corner], face_normals[valid])
            np.add.at(counts, contributing[:, corner], 1)

        has_faces = counts > 0
        accumulated[has_faces] /= counts[has_faces, np.newaxis]

        lengths = np.linalg.norm(accumulated, axis=1)
        renormalize = lengths > self.length_threshold
        accumulated[renormalize] /= lengths[renormalize, np.newaxis]

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['total_calculations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_num_vertices'] = num_vertices
        self.stats['last_num_triangles'] = len(triangles)
        self.stats['last_degenerate_triangles'] = int(np.count_nonzero(~valid))
        self.stats['last_isolated_vertices'] = int(np.count_nonzero(~has_faces))

        if self.stats['last_degenerate_triangles']:
            logger.debug(
                "%d degenerate triangles skipped for normals", self.stats['last_degenerate_triangles']
            )
        return accumulated

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0


# 便利関数

def calculate_vertex_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """頂点法線を計算（簡単なインターフェース）"""
    return NormalComputer().calculate_vertex_normals(vertices, triangles)


def calculate_face_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """面法線を計算（簡単なインターフェース）"""
    face_normals, _ = NormalComputer().calculate_face_normals(vertices, triangles)
    return face_normals
