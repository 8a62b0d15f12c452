#!/usr/bin/env python3
"""
地面点抽出

シーン全体の点群をワールド座標に変換し、最も低い高さから一定の許容範囲内に
ある点だけを一定間隔で取り出します。結果はメッシュ生成パイプラインへの入力
（フラットな位置バッファ + 点数）になります。
"""

from typing import Optional

import numpy as np

from .config import GroundConfig, get_config
from .data_types import NavigablePointCloud
from .errors import InsufficientPointsError
from . import get_logger

logger = get_logger(__name__)


def transform_points(points: np.ndarray, world_matrix: Optional[np.ndarray]) -> np.ndarray:
    """
    同次座標変換

    Args:
        points: ローカル座標 (N, 3)
        world_matrix: 4x4 変換行列（列ベクトル規約、平行移動は最終列）

    Returns:
        ワールド座標 (N, 3)
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if world_matrix is None:
        return points

    matrix = np.asarray(world_matrix, dtype=np.float64)
    if matrix.shape != (4, 4):
        raise ValueError(f"World matrix must be 4x4, got shape {matrix.shape}")

    homogeneous = np.hstack([points, np.ones((len(points), 1))])
    transformed = homogeneous @ matrix.T
    w = transformed[:, 3:4]
    # 射影成分がある場合のみ w で割る
    w = np.where(w == 0, 1.0, w)
    return transformed[:, :3] / w


def extract_ground_points(
    positions: np.ndarray,
    world_matrix: Optional[np.ndarray] = None,
    ground_height_tolerance: Optional[float] = None,
    downsample_ratio: Optional[float] = None,
    config: Optional[GroundConfig] = None
) -> NavigablePointCloud:
    """
    地面点を抽出

    Args:
        positions: フラットな位置バッファまたは (N, 3) 配列
        world_matrix: ローカル→ワールド変換行列（Noneなら恒等変換）
        ground_height_tolerance: 最低高さからの許容範囲（Noneなら設定値）
        downsample_ratio: 取り出す点の割合（floor(1/ratio) 点ごとに1点を調べる。Noneなら設定値）
        config: 地面点抽出設定（Noneならグローバル設定）

    Returns:
        地面点群

    Raises:
        InsufficientPointsError: 点がない、または地面点が見つからない
        ValueError: 変換行列・比率が不正
    """
    config = config or get_config().ground
    if ground_height_tolerance is None:
        ground_height_tolerance = config.ground_height_tolerance
    if downsample_ratio is None:
        downsample_ratio = config.downsample_ratio

    if not 0 < downsample_ratio <= 1:
        raise ValueError(f"downsample_ratio must be in (0, 1], got {downsample_ratio}")

    flat = np.asarray(positions, dtype=np.float64).reshape(-1)
    if len(flat) % 3 != 0:
        raise ValueError(f"Position buffer length {len(flat)} is not a multiple of 3")
    if len(flat) == 0:
        raise InsufficientPointsError('Point cloud has no points', {'point_count': 0})

    world = transform_points(flat.reshape(-1, 3), world_matrix)

    heights = world[:, 1]
    finite_heights = heights[np.isfinite(heights)]
    if len(finite_heights) == 0:
        raise InsufficientPointsError(
            'Could not determine minimum Y coordinate', {'point_count': len(world)}
        )
    min_y = float(np.min(finite_heights))
    threshold = min_y + ground_height_tolerance

    step = max(1, int(np.floor(1 / downsample_ratio)))
    visited = world[::step]
    ground = visited[visited[:, 1] <= threshold]

    if len(ground) == 0:
        raise InsufficientPointsError(
            'No ground points found after filtering',
            {'point_count': len(world), 'visited_count': len(visited), 'min_y': min_y},
        )

    logger.info(
        "Extracted %d ground points from %d (min_y=%.3f, tolerance=%.3f, step=%d)",
        len(ground), len(world), min_y, ground_height_tolerance, step,
    )
    return NavigablePointCloud(
        positions=ground.astype(np.float32).reshape(-1),
        count=len(ground),
    )
