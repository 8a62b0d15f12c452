#!/usr/bin/env python3
"""
メッシュ組み立て

受理された三角形リストと（正規化前の）点群から、頂点・インデックス・法線の
3つの型付きバッファを持つ Mesh を作成します。
"""

import time
from typing import Optional

import numpy as np

from ..data_types import PointSet, Mesh
from .attributes import NormalComputer
from .. import get_logger

logger = get_logger(__name__)


def orient_triangles_upward(xz: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """面法線の y 成分が負の三角形の巻き順を反転する

    y 成分は (x, z) 平面上の符号付き面積だけで決まる。
    """
    triangles = np.array(triangles, dtype=np.int64).reshape(-1, 3)
    if len(triangles) == 0:
        return triangles

    p0 = xz[triangles[:, 0]]
    p1 = xz[triangles[:, 1]]
    p2 = xz[triangles[:, 2]]
    e1 = p1 - p0
    e2 = p2 - p0
    # cross(e1, e2).y = e1.z * e2.x - e1.x * e2.z
    normal_y = e1[:, 1] * e2[:, 0] - e1[:, 0] * e2[:, 1]

    flip = normal_y < 0
    triangles[flip] = triangles[flip][:, [0, 2, 1]]
    return triangles


class MeshAssembler:
    """メッシュ組み立てクラス"""

    def __init__(
        self,
        normal_computer: Optional[NormalComputer] = None,
        orient_upward: bool = True
    ):
        """
        初期化

        Args:
            normal_computer: 頂点法線計算器
            orient_upward: 全三角形の面法線を上向き (+y) に揃えるか
        """
        self.normal_computer = normal_computer or NormalComputer()
        self.orient_upward = orient_upward

        self.stats = {
            'total_assemblies': 0,
            'total_time_ms': 0.0,
            'last_num_vertices': 0,
            'last_num_triangles': 0
        }

    def assemble(self, points: PointSet, triangles: np.ndarray) -> Mesh:
        """
        メッシュを作成

        Args:
            points: 三角形分割に使った点群（正規化前の座標）
            triangles: 三角形インデックス (M, 3)

        Returns:
            検証済みメッシュ
        """
        start_time = time.perf_counter()

        triangles = np.asarray(triangles, dtype=np.int64).reshape(-1, 3)
        if self.orient_upward:
            triangles = orient_triangles_upward(points.xz, triangles)

        positions = points.positions
        normals = self.normal_computer.calculate_vertex_normals(positions, triangles)

        mesh = Mesh(
            vertices=positions.astype(np.float32).reshape(-1),
            indices=triangles.astype(np.uint32).reshape(-1),
            normals=normals.astype(np.float32).reshape(-1),
            vertex_count=len(points),
            index_count=triangles.size,
        )
        mesh.validate()

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['total_assemblies'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_num_vertices'] = mesh.vertex_count
        self.stats['last_num_triangles'] = mesh.num_triangles

        logger.debug(
            "Assembled mesh: %d vertices, %d triangles in %.1fms",
            mesh.vertex_count, mesh.num_triangles, elapsed_ms,
        )
        return mesh

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0
