#!/usr/bin/env python3
"""
点群の重複除去

フラットな位置バッファから地面点を読み出し、空間ハッシュで重複点を除去します。
非有限座標のフィルタは後段（conditioning.py）で行い、ここでは同一性の判定のみ行います。
"""

import time
from typing import Optional

import numpy as np

from ..constants import POINT_TOLERANCE
from ..data_types import PointSet, BoundingBox
from ..errors import InsufficientPointsError
from .. import get_logger

logger = get_logger(__name__)


def spatial_hash_keys(x: np.ndarray, z: np.ndarray, tolerance: float = POINT_TOLERANCE) -> np.ndarray:
    """(floor(x/ε), floor(z/ε)) のバケットキーを1次元のバイト列配列として返す

    NaN は全て同じバケットに入る。大きすぎる座標はinfのバケットに入る。
    """
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        keys = np.column_stack([
            np.floor(np.asarray(x, dtype=np.float64) / tolerance),
            np.floor(np.asarray(z, dtype=np.float64) / tolerance),
        ]) + 0.0  # -0.0 を 0.0 に揃える
    keys[np.isnan(keys)] = np.nan
    keys = np.ascontiguousarray(keys)
    return keys.view(np.dtype((np.void, keys.dtype.itemsize * 2))).ravel()


def first_unique_indices(x: np.ndarray, z: np.ndarray, tolerance: float = POINT_TOLERANCE) -> np.ndarray:
    """各バケットに最初に入った点のインデックス（入力順）"""
    if len(x) == 0:
        return np.empty(0, dtype=np.int64)
    _, first = np.unique(spatial_hash_keys(x, z, tolerance), return_index=True)
    return np.sort(first).astype(np.int64)


def count_unique_positions(points: PointSet, tolerance: float = POINT_TOLERANCE) -> int:
    """空間的にユニークな点の数"""
    if len(points) == 0:
        return 0
    return int(len(np.unique(spatial_hash_keys(points.x, points.z, tolerance))))


class PointSanitizer:
    """空間ハッシュによる重複除去器"""

    def __init__(self, tolerance: float = POINT_TOLERANCE, min_points: int = 3):
        """
        初期化

        Args:
            tolerance: 空間ハッシュの刻み幅
            min_points: 重複除去後に必要な最小点数
        """
        self.tolerance = tolerance
        self.min_points = min_points

        self.stats = {
            'total_sanitizations': 0,
            'total_time_ms': 0.0,
            'last_input_count': 0,
            'last_output_count': 0,
            'last_duplicates_removed': 0
        }

    def sanitize(
        self,
        positions: np.ndarray,
        count: Optional[int] = None,
        heights: Optional[np.ndarray] = None
    ) -> PointSet:
        """
        位置バッファから重複のない点群を作成

        Args:
            positions: フラットな位置バッファ（1点あたり3要素）または (N, 3) 配列
            count: 点数（Noneならバッファ長から算出）
            heights: 点ごとの高さ上書き値（Noneなら y 座標を使用）

        Returns:
            重複除去済み点群（original_index に入力位置を保持）
        """
        start_time = time.perf_counter()

        points = self.read_points(positions, count, heights)
        keep = first_unique_indices(points.x, points.z, self.tolerance)
        sanitized = points.take(keep)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self._update_stats(elapsed_ms, len(points), len(sanitized))

        if len(sanitized) < self.min_points:
            bbox = BoundingBox.from_points(sanitized)
            logger.error(
                "Only %d unique points after deduplication (input %d)", len(sanitized), len(points)
            )
            raise InsufficientPointsError(
                f"After deduplication, only {len(sanitized)} unique points remain "
                f"(minimum {self.min_points} required). Original point count: {len(points)}. "
                f"Bounding box: width={bbox.width:.6f}, height={bbox.height:.6f}. "
                f"Consider adjusting groundHeightTolerance or downsampleRatio parameters.",
                {
                    'original_count': len(points),
                    'unique_count': len(sanitized),
                    'bbox_width': bbox.width,
                    'bbox_height': bbox.height,
                },
            )

        logger.debug(
            "Sanitized %d -> %d points (%d duplicates) in %.1fms",
            len(points), len(sanitized), len(points) - len(sanitized), elapsed_ms,
        )
        return sanitized

    @staticmethod
    def read_points(
        positions: np.ndarray,
        count: Optional[int] = None,
        heights: Optional[np.ndarray] = None
    ) -> PointSet:
        """フラットな位置バッファを点群に変換（重複除去なし）"""
        flat = np.asarray(positions, dtype=np.float64).reshape(-1)
        if count is None:
            if len(flat) % 3 != 0:
                raise ValueError(f"Position buffer length {len(flat)} is not a multiple of 3")
            count = len(flat) // 3
        if count < 0 or len(flat) < count * 3:
            raise ValueError(
                f"Position buffer holds {len(flat) // 3} points, but count={count}"
            )

        xyz = flat[:count * 3].reshape(count, 3)
        if heights is None:
            y = xyz[:, 1]
        else:
            heights = np.asarray(heights, dtype=np.float64).reshape(-1)
            if len(heights) < count:
                raise ValueError(f"Height array holds {len(heights)} values, but count={count}")
            y = heights[:count]

        return PointSet(xyz[:, 0], y, xyz[:, 2], np.arange(count, dtype=np.int64))

    def _update_stats(self, elapsed_ms: float, input_count: int, output_count: int):
        self.stats['total_sanitizations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_input_count'] = input_count
        self.stats['last_output_count'] = output_count
        self.stats['last_duplicates_removed'] = input_count - output_count

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0


def sanitize_points(
    positions: np.ndarray,
    count: Optional[int] = None,
    heights: Optional[np.ndarray] = None,
    tolerance: float = POINT_TOLERANCE
) -> PointSet:
    """
    位置バッファから重複のない点群を作成（簡単なインターフェース）

    Args:
        positions: フラットな位置バッファ
        count: 点数
        heights: 高さ上書き値
        tolerance: 空間ハッシュの刻み幅

    Returns:
        重複除去済み点群
    """
    return PointSanitizer(tolerance=tolerance).sanitize(positions, count, heights)
