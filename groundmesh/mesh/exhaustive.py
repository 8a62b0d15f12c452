#!/usr/bin/env python3
"""
網羅的三角形化（低保証経路）

地面への投影を前提としない任意の3D点群向けに、全ての添字三つ組 (i < j < k) を
列挙し、外積の大きさが閾値を超える三つ組を面として採用します。
平面性・多様体性の保証はなく、出力は面積が有効な三角形の重なり合った集合です。
大きな入力は一定間隔の間引きで MAX_POINTS_FOR_MESH 以下にしてから列挙します。
"""

import math
import time
from typing import Optional

import numpy as np

from ..config import ExhaustiveConfig
from ..constants import MAX_POINTS_FOR_MESH, MAX_TRIANGLES, EXHAUSTIVE_MIN_AREA
from ..data_types import Mesh
from ..errors import InsufficientPointsError, TriangulationEmptyResult
from .attributes import NormalComputer
from .. import get_logger

logger = get_logger(__name__)


def stride_downsample(positions: np.ndarray, max_points: int = MAX_POINTS_FOR_MESH) -> np.ndarray:
    """
    一定間隔の間引き

    step = ceil(n / max_points) とし、先頭から step ごとに floor(n / step) 点を取る。

    Args:
        positions: 頂点座標 (N, 3)
        max_points: 上限点数

    Returns:
        間引き後の座標 (M, 3)
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
    n = len(positions)
    if n <= max_points:
        return positions

    step = int(math.ceil(n / max_points))
    new_count = n // step
    return positions[:new_count * step:step]


class ExhaustiveTriangulator:
    """網羅的三角形化クラス"""

    def __init__(
        self,
        max_triangles: int = MAX_TRIANGLES,
        min_area: float = EXHAUSTIVE_MIN_AREA,
        normal_computer: Optional[NormalComputer] = None
    ):
        """
        初期化

        Args:
            max_triangles: 列挙を打ち切る三角形数
            min_area: 面として採用する外積長の下限
            normal_computer: 頂点法線計算器
        """
        self.max_triangles = max_triangles
        self.min_area = min_area
        self.normal_computer = normal_computer or NormalComputer()

        self.stats = {
            'total_triangulations': 0,
            'total_time_ms': 0.0,
            'last_num_points': 0,
            'last_num_triangles': 0,
            'last_cap_reached': 0
        }

    def find_triangles(self, positions: np.ndarray) -> np.ndarray:
        """
        有効な面積を持つ三つ組を辞書順に列挙

        Args:
            positions: 頂点座標 (N, 3)

        Returns:
            三角形インデックス (M, 3)、M <= max_triangles
        """
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        n = len(positions)
        chunks = []
        found = 0

        for i in range(n - 2):
            if found >= self.max_triangles:
                break
            for j in range(i + 1, n - 1):
                if found >= self.max_triangles:
                    break
                k = np.arange(j + 1, n)
                cross = np.cross(positions[j] - positions[i], positions[k] - positions[i])
                valid_k = k[np.linalg.norm(cross, axis=1) > self.min_area]
                if valid_k.size == 0:
                    continue

                valid_k = valid_k[:self.max_triangles - found]
                triangles = np.empty((len(valid_k), 3), dtype=np.int64)
                triangles[:, 0] = i
                triangles[:, 1] = j
                triangles[:, 2] = valid_k
                chunks.append(triangles)
                found += len(valid_k)

        self.stats['last_cap_reached'] = int(found >= self.max_triangles)
        if not chunks:
            return np.empty((0, 3), dtype=np.int64)
        return np.concatenate(chunks)

    def triangulate(self, positions: np.ndarray) -> Mesh:
        """
        網羅的三角形化でメッシュを作成

        Args:
            positions: 頂点座標 (N, 3)

        Returns:
            メッシュ

        Raises:
            TriangulationEmptyResult: 有効な三角形が1つもない
        """
        start_time = time.perf_counter()
        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)

        triangles = self.find_triangles(positions)
        if len(triangles) == 0:
            logger.error("No valid triangles found among %d points", len(positions))
            raise TriangulationEmptyResult(
                'No valid triangles found in point cloud', {'point_count': len(positions)}
            )

        normals = self.normal_computer.calculate_vertex_normals(positions, triangles)
        mesh = Mesh(
            vertices=positions.astype(np.float32).reshape(-1),
            indices=triangles.astype(np.uint32).reshape(-1),
            normals=normals.astype(np.float32).reshape(-1),
            vertex_count=len(positions),
            index_count=triangles.size,
        )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['total_triangulations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_num_points'] = len(positions)
        self.stats['last_num_triangles'] = len(triangles)
        if self.stats['last_cap_reached']:
            logger.warning("Triangle cap %d reached, enumeration stopped", self.max_triangles)
        logger.debug(
            "Exhaustive triangulation: %d points -> %d triangles in %.1fms",
            len(positions), len(triangles), elapsed_ms,
        )
        return mesh

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0


def convert_point_cloud_to_mesh(
    positions: np.ndarray,
    count: Optional[int] = None,
    config: Optional[ExhaustiveConfig] = None
) -> Mesh:
    """
    点群を網羅的三角形化でメッシュに変換（簡単なインターフェース）

    Args:
        positions: フラットな位置バッファまたは (N, 3) 配列
        count: 点数（Noneならバッファ長から算出）
        config: 網羅的三角形化設定

    Returns:
        メッシュ

    Raises:
        InsufficientPointsError: 点数が3未満
        TriangulationEmptyResult: 有効な三角形が1つもない
    """
    config = config or ExhaustiveConfig()
    positions = np.asarray(positions, dtype=np.float64).reshape(-1)
    if count is None:
        count = len(positions) // 3
    if count < 3:
        raise InsufficientPointsError(
            'Point cloud must have at least 3 points', {'point_count': count}
        )
    if len(positions) < count * 3:
        raise ValueError(f"Position buffer holds {len(positions) // 3} points, but count={count}")

    points = stride_downsample(positions[:count * 3].reshape(-1, 3), config.max_points_for_mesh)
    if len(points) < count:
        logger.info("Strided %d points down to %d for exhaustive triangulation", count, len(points))

    triangulator = ExhaustiveTriangulator(max_triangles=config.max_triangles, min_area=config.min_area)
    return triangulator.triangulate(points)
