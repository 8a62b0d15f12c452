#!/usr/bin/env python3
"""
点群ダウンサンプリング

グリッドサンプリング（点数の上限適用）と、三角形分割の失敗後に使う
段階的な比率サンプリングを提供します。段階的サンプリングは常に
検証済みの元点群から取り直します。
"""

import math
import time
from typing import Optional, Sequence

import numpy as np

from ..constants import MAX_POINTS_FOR_TRIANGULATION, PROGRESSIVE_RATIOS
from ..data_types import (
    PointSet,
    BoundingBox,
    DownsampledPoints,
    NoDownsample,
    GridDownsample,
    ProgressiveDownsample,
    GeometryInvalid,
)
from .conditioning import GeometryConditioner
from .sanitize import first_unique_indices
from .. import get_logger

logger = get_logger(__name__)


class Downsampler:
    """グリッド/段階的ダウンサンプリングクラス"""

    def __init__(
        self,
        max_points: int = MAX_POINTS_FOR_TRIANGULATION,
        progressive_ratios: Sequence[float] = PROGRESSIVE_RATIOS,
        conditioner: Optional[GeometryConditioner] = None
    ):
        """
        初期化

        Args:
            max_points: グリッドサンプリングを適用する上限点数
            progressive_ratios: 段階的リトライで順に試す比率
            conditioner: ダウンサンプリング結果の健全性検証に使う整備器
        """
        self.max_points = max_points
        self.progressive_ratios = tuple(progressive_ratios)
        self.conditioner = conditioner or GeometryConditioner()

        self.stats = {
            'grid_samplings': 0,
            'progressive_samplings': 0,
            'enhanced_passes': 0,
            'total_time_ms': 0.0,
            'last_input_count': 0,
            'last_output_count': 0
        }

    def apply_hard_cap(self, points: PointSet, bounding_box: Optional[BoundingBox] = None) -> DownsampledPoints:
        """上限点数を超える場合のみグリッドサンプリングを適用"""
        if len(points) <= self.max_points:
            return DownsampledPoints(points, NoDownsample(len(points)))
        logger.info(
            "Point count %d exceeds %d, applying grid downsampling", len(points), self.max_points
        )
        return self.grid_sample(points, self.max_points, bounding_box)

    def grid_sample(
        self,
        points: PointSet,
        target_count: int,
        bounding_box: Optional[BoundingBox] = None
    ) -> DownsampledPoints:
        """
        グリッドサンプリング

        バウンディングボックスを ⌈√target⌉ × ⌈√target⌉ に分割し、占有セルごとに
        セル内の中央（個数順）の点を代表点として選ぶ。

        Args:
            points: 入力点群
            target_count: 目標点数
            bounding_box: 分割に使うバウンディングボックス（Noneなら点群から計算）

        Returns:
            ダウンサンプリング結果
        """
        n = len(points)
        if n <= target_count:
            return DownsampledPoints(points, NoDownsample(n))

        start_time = time.perf_counter()
        bbox = bounding_box or BoundingBox.from_points(points)

        # 縦横比が極端なほどセルの占有が偏るので目標を最大50%増やす
        adjusted_target = max(3, int(math.floor(target_count * (1 + 0.5 * (1 - bbox.aspect_ratio)))))
        grid_size = int(math.ceil(math.sqrt(adjusted_target)))
        cell_width = bbox.width / grid_size if bbox.width > 0 else 1.0
        cell_height = bbox.height / grid_size if bbox.height > 0 else 1.0

        with np.errstate(invalid='ignore'):
            cell_x = np.clip(np.floor((points.x - bbox.min_x) / cell_width), 0, grid_size - 1)
            cell_z = np.clip(np.floor((points.z - bbox.min_z) / cell_height), 0, grid_size - 1)
        cell_ids = cell_x.astype(np.int64) * grid_size + cell_z.astype(np.int64)

        order = np.argsort(cell_ids, kind='stable')
        sorted_ids = cell_ids[order]
        starts = np.flatnonzero(np.r_[True, sorted_ids[1:] != sorted_ids[:-1]])
        counts = np.diff(np.r_[starts, n])

        representatives = np.sort(order[starts + counts // 2])
        representatives = representatives[
            first_unique_indices(points.x[representatives], points.z[representatives])
        ]

        if len(representatives) > target_count:
            thinned = np.unique(np.round(np.linspace(0, len(representatives) - 1, target_count)).astype(np.int64))
            representatives = representatives[thinned]

        if len(representatives) < 3:
            representatives = self._pad_to_minimum(representatives, n)

        sampled = points.take(representatives)
        result = DownsampledPoints(
            sampled, GridDownsample(len(sampled), grid_size, n)
        )

        validation = self.conditioner.validate_geometry(sampled, bbox)
        if isinstance(validation, GeometryInvalid) and len(sampled) >= 3:
            min_points_per_cell = max(1, n // (grid_size * grid_size))
            if min_points_per_cell > 1:
                enhanced = self._sample_per_cell(order, starts, counts, min_points_per_cell)
                enhanced = enhanced[first_unique_indices(points.x[enhanced], points.z[enhanced])]
                if len(enhanced) >= 3:
                    self.stats['enhanced_passes'] += 1
                    logger.debug(
                        "Grid sample invalid (%s), enhanced pass kept %d points",
                        validation.reason, len(enhanced),
                    )
                    enhanced_points = points.take(enhanced)
                    result = DownsampledPoints(
                        enhanced_points, GridDownsample(len(enhanced_points), grid_size, n)
                    )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['grid_samplings'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['last_input_count'] = n
        self.stats['last_output_count'] = len(result.points)
        logger.debug(
            "Grid downsampled %d -> %d points (grid=%d) in %.1fms",
            n, len(result.points), grid_size, elapsed_ms,
        )
        return result

    def progressive_sample(
        self,
        points: PointSet,
        attempt: int,
        bounding_box: Optional[BoundingBox] = None
    ) -> Optional[DownsampledPoints]:
        """
        段階的比率サンプリング

        Args:
            points: 検証済みの元点群（失敗した点群ではない）
            attempt: 試行インデックス（0始まり）
            bounding_box: 分割に使うバウンディングボックス

        Returns:
            ダウンサンプリング結果（比率を使い切った場合はNone、
            目標点数が元の点数以上なら NoDownsample）
        """
        if attempt < 0 or attempt >= len(self.progressive_ratios):
            return None

        ratio = self.progressive_ratios[attempt]
        target_count = max(3, int(math.floor(len(points) * ratio)))
        self.stats['progressive_samplings'] += 1
        if target_count >= len(points):
            return DownsampledPoints(points, NoDownsample(len(points)))

        sampled = self.grid_sample(points, target_count, bounding_box)

        return DownsampledPoints(
            sampled.points,
            ProgressiveDownsample(
                point_count=len(sampled.points),
                ratio=ratio,
                original_count=len(points),
                attempt=attempt,
            ),
        )

    @staticmethod
    def _sample_per_cell(
        order: np.ndarray,
        starts: np.ndarray,
        counts: np.ndarray,
        quota: int
    ) -> np.ndarray:
        """各セルから最大 quota 点を等間隔に取り出す"""
        sample_counts = np.minimum(quota, counts)
        steps = np.maximum(1, counts // sample_counts)
        position_in_cell = np.arange(len(order)) - np.repeat(starts, counts)
        mask = position_in_cell % np.repeat(steps, counts) == 0
        return np.sort(order[mask])

    @staticmethod
    def _pad_to_minimum(selected: np.ndarray, n: int, minimum: int = 3) -> np.ndarray:
        chosen = list(selected.tolist())
        for index in np.round(np.linspace(0, n - 1, n if n < 16 else 16)).astype(np.int64).tolist():
            if len(chosen) >= minimum:
                break
            if index not in chosen:
                chosen.append(index)
        return np.sort(np.array(chosen, dtype=np.int64))

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0


def grid_downsample(points: PointSet, target_count: int) -> DownsampledPoints:
    """
    グリッドサンプリング（簡単なインターフェース）

    Args:
        points: 入力点群
        target_count: 目標点数

    Returns:
        ダウンサンプリング結果
    """
    return Downsampler().grid_sample(points, target_count)
