#!/usr/bin/env python3
"""
Delaunay三角形分割アダプタ

外部の2D Delaunayプリミティブ（既定は scipy.spatial.Delaunay）を呼び出し、
その出力を検証します。プリミティブ自体は入力の整備も出力の検証も行わないため、
正規化済み座標を渡し、返ってきた三角形インデックスを全て検査します。
全ての段階的リトライが失敗した場合の最終手段として、バウンディングボックスの
4隅を加えて分割するフォールバックも提供します。
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
from scipy.spatial import Delaunay, QhullError

from ..data_types import (
    PointSet,
    BoundingBox,
    FailureKind,
    TriangulationResult,
    TriangulationSuccess,
    TriangulationEmpty,
    TriangulationError,
)
from .normalize import CoordinateNormalizer
from .. import get_logger

logger = get_logger(__name__)


@dataclass
class PrimitiveOutput:
    """プリミティブの生出力"""
    triangles: Any                     # フラットな三角形インデックス配列
    halfedges: Optional[Any] = None    # 隣接（ハーフエッジ）配列


DelaunayPrimitive = Callable[[Any], PrimitiveOutput]


def scipy_delaunay(coords: Any) -> PrimitiveOutput:
    """scipy.spatial.Delaunay による2D三角形分割

    Args:
        coords: (N, 2) 座標（ndarray または入れ子リスト）

    Returns:
        simplices と neighbors をフラット化した出力
    """
    delaunay = Delaunay(coords)
    return PrimitiveOutput(
        triangles=delaunay.simplices.reshape(-1),
        halfedges=delaunay.neighbors.reshape(-1),
    )


def validate_primitive_output(output: Optional[PrimitiveOutput], point_count: int) -> TriangulationResult:
    """プリミティブ出力の構造検証"""
    if output is None or output.triangles is None:
        return TriangulationEmpty(point_count, 'triangles array is undefined')

    triangles = np.asarray(output.triangles)
    if triangles.size and not np.issubdtype(triangles.dtype, np.integer):
        return TriangulationError(
            point_count, f"triangles is not an integer array, got {triangles.dtype}", FailureKind.MALFORMED
        )
    triangles = triangles.reshape(-1)

    if triangles.size == 0:
        return TriangulationEmpty(point_count, 'triangles array length is zero')

    if triangles.size % 3 != 0:
        return TriangulationError(
            point_count,
            f"Invalid triangles array length: {triangles.size} (must be multiple of 3)",
            FailureKind.MALFORMED,
        )

    out_of_range = np.flatnonzero((triangles >= point_count) | (triangles < 0))
    if out_of_range.size:
        position = int(out_of_range[0])
        return TriangulationError(
            point_count,
            f"Triangle index {int(triangles[position])} at position {position} "
            f"exceeds point count {point_count}",
            FailureKind.MALFORMED,
        )

    if output.halfedges is not None:
        halfedges = np.asarray(output.halfedges).reshape(-1)
        if halfedges.size != triangles.size:
            return TriangulationError(
                point_count,
                f"Halfedges length {halfedges.size} does not match triangles length {triangles.size}",
                FailureKind.MALFORMED,
            )

    return TriangulationSuccess(triangles=triangles.reshape(-1, 3).astype(np.int64), point_count=point_count)


class TriangulationAdapter:
    """Delaunayプリミティブのアダプタ"""

    def __init__(
        self,
        primitive: DelaunayPrimitive = scipy_delaunay,
        normalizer: Optional[CoordinateNormalizer] = None
    ):
        """
        初期化

        Args:
            primitive: 2D Delaunayプリミティブ
            normalizer: 座標正規化器
        """
        self.primitive = primitive
        self.normalizer = normalizer or CoordinateNormalizer()

        self.stats = {
            'total_triangulations': 0,
            'total_time_ms': 0.0,
            'average_time_ms': 0.0,
            'engine_failures': 0,
            'representation_fallbacks': 0,
            'fallback_triangulations': 0,
            'last_num_points': 0,
            'last_num_triangles': 0
        }

    def triangulate(self, points: PointSet) -> TriangulationResult:
        """
        正規化済み座標で1回分の三角形分割を行う

        Args:
            points: 条件整備済み点群

        Returns:
            三角形分割結果（インデックスは points の並び順を参照）
        """
        start_time = time.perf_counter()
        point_count = len(points)
        if point_count < 3:
            return TriangulationError(
                point_count,
                f"Insufficient points for triangulation: {point_count}",
                FailureKind.INSUFFICIENT,
            )

        normalized = self.normalizer.normalize(points)
        output, last_error = self._run_primitive(normalized.coords)

        if output is None:
            self.stats['engine_failures'] += 1
            coord_range = BoundingBox.from_points(points)
            result = TriangulationError(
                point_count,
                f"Delaunay primitive failed with all coordinate representations. "
                f"Last error: {last_error or 'Unknown'}. Coordinate range: {coord_range.describe()}",
                FailureKind.ENGINE,
            )
        else:
            result = validate_primitive_output(output, point_count)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        num_triangles = result.num_triangles if isinstance(result, TriangulationSuccess) else 0
        self._update_stats(elapsed_ms, point_count, num_triangles)
        logger.debug(
            "[DELAUNAY] %d points -> %d triangles in %.1fms", point_count, num_triangles, elapsed_ms
        )
        return result

    def triangulate_with_corners(self, points: PointSet, bounding_box: BoundingBox) -> TriangulationResult:
        """
        フォールバック三角形分割

        バウンディングボックスの4隅を追加して分割し、隅の点を参照する
        三角形を全て捨てる。

        Args:
            points: 最後に試行した点群
            bounding_box: 隅の点を決めるバウンディングボックス

        Returns:
            三角形分割結果（1つ以上の三角形が残れば成功）
        """
        point_count = len(points)
        if point_count < 3:
            return TriangulationError(
                point_count, 'Insufficient points for fallback triangulation', FailureKind.INSUFFICIENT
            )

        self.stats['fallback_triangulations'] += 1
        corners = bounding_box.corners()
        corner_points = PointSet(
            corners[:, 0], np.zeros(4), corners[:, 1], np.full(4, -1, dtype=np.int64)
        )
        combined = points.concat(corner_points)

        normalized = self.normalizer.normalize(combined)
        output, last_error = self._run_primitive(normalized.coords)
        if output is None:
            return TriangulationError(
                point_count,
                f"Fallback triangulation failed to create Delaunay triangulation: {last_error}",
                FailureKind.ENGINE,
            )

        validation = validate_primitive_output(output, len(combined))
        if isinstance(validation, TriangulationSuccess):
            triangles = validation.triangles
            keep = np.all(triangles < point_count, axis=1)
            filtered = triangles[keep]
            if len(filtered) >= 1:
                logger.warning(
                    "Fallback triangulation kept %d of %d triangles", len(filtered), len(triangles)
                )
                return TriangulationSuccess(triangles=filtered, point_count=point_count)

        return TriangulationError(
            point_count, 'Fallback triangulation produced no valid triangles', FailureKind.MALFORMED
        )

    def _run_primitive(self, coords: np.ndarray):
        """倍精度・単精度・リストの順に試し、最初に例外を出さなかった出力を返す"""
        representations = (
            ('float64', lambda: np.ascontiguousarray(coords, dtype=np.float64)),
            ('float32', lambda: coords.astype(np.float32)),
            ('list', lambda: coords.tolist()),
        )

        last_error: Optional[str] = None
        for index, (name, build) in enumerate(representations):
            try:
                output = self.primitive(build())
            except (QhullError, ValueError) as e:
                last_error = f"{name}: {e}"
                logger.debug("Delaunay primitive failed with %s coordinates: %s", name, e)
                continue
            if index > 0:
                self.stats['representation_fallbacks'] += 1
            return output, last_error

        return None, last_error

    def _update_stats(self, elapsed_ms: float, num_points: int, num_triangles: int):
        """パフォーマンス統計更新"""
        self.stats['total_triangulations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['average_time_ms'] = self.stats['total_time_ms'] / self.stats['total_triangulations']
        self.stats['last_num_points'] = num_points
        self.stats['last_num_triangles'] = num_triangles

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0


def triangulate_points(points: PointSet) -> TriangulationResult:
    """
    点群を1回だけ三角形分割（簡単なインターフェース）

    Args:
        points: 条件整備済み点群

    Returns:
        三角形分割結果
    """
    return TriangulationAdapter().triangulate(points)
