#!/usr/bin/env python3
"""
幾何条件の整備

三角形分割プリミティブが前提とするが自らは検証しない条件を整えます。

処理順:
1. 座標検証（NaN/Infinity の除外）
2. 共線判定（厳密判定 + 連続する三つ組による近似判定）
3. 共線補正（交互オフセット）
4. 健全性検証（面積・縦横比・多様性）と摂動
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from ..constants import (
    POINT_TOLERANCE,
    NEAR_COLLINEAR_TOLERANCE,
    COLLINEAR_FRACTION,
    MIN_BOUNDING_BOX_AREA,
    MIN_POINT_SPREAD_RATIO,
    MIN_DIVERSITY_RATIO,
    DIVERSITY_CHECK_MIN_POINTS,
    COLLINEARITY_OFFSET_FACTOR,
    PERTURBATION_FACTOR,
    PERTURBATION_MAX_ATTEMPTS,
    GOLDEN_ANGLE_DEG,
)
from ..data_types import (
    PointSet,
    BoundingBox,
    CoordinateValidation,
    CoordinatesValid,
    CoordinatesInvalid,
    GeometryValidation,
    GeometryValid,
    GeometryInvalid,
)
from ..errors import InsufficientPointsError, InvalidCoordinatesError, DegenerateGeometryError
from .sanitize import count_unique_positions, first_unique_indices
from .. import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConditionedPoints:
    """条件整備済みの点群"""
    points: PointSet
    bounding_box: BoundingBox
    collinear_detected: bool     # 補正前に共線と判定されたか
    offset_applied: bool         # 共線補正を適用したか
    perturbed: bool              # 摂動を適用したか
    invalid_count: int = 0       # 除外した非有限点の数


class GeometryConditioner:
    """幾何条件整備クラス"""

    def __init__(
        self,
        tolerance: float = POINT_TOLERANCE,
        near_collinear_tolerance: float = NEAR_COLLINEAR_TOLERANCE,
        collinear_fraction: float = COLLINEAR_FRACTION,
        min_bounding_box_area: float = MIN_BOUNDING_BOX_AREA,
        min_point_spread_ratio: float = MIN_POINT_SPREAD_RATIO,
        min_diversity_ratio: float = MIN_DIVERSITY_RATIO,
        collinearity_offset_factor: float = COLLINEARITY_OFFSET_FACTOR,
        perturbation_factor: float = PERTURBATION_FACTOR
    ):
        self.tolerance = tolerance
        self.near_collinear_tolerance = near_collinear_tolerance
        self.collinear_fraction = collinear_fraction
        self.min_bounding_box_area = min_bounding_box_area
        self.min_point_spread_ratio = min_point_spread_ratio
        self.min_diversity_ratio = min_diversity_ratio
        self.collinearity_offset_factor = collinearity_offset_factor
        self.perturbation_factor = perturbation_factor

        self.stats = {
            'total_conditionings': 0,
            'collinearity_corrections': 0,
            'perturbations': 0,
            'non_finite_removed': 0
        }

    # ------------------------------------------------------------------
    # 一括整備（パイプラインの前段）
    # ------------------------------------------------------------------

    def condition(self, points: PointSet) -> ConditionedPoints:
        """
        座標検証・共線補正・健全性検証を順に実施

        Args:
            points: 重複除去済み点群

        Returns:
            条件整備済み点群

        Raises:
            InvalidCoordinatesError: 有限な点が3点未満
            InsufficientPointsError: 点数が3点未満
            DegenerateGeometryError: 共線・退化を補正できなかった
        """
        self.stats['total_conditionings'] += 1

        validation = self.validate_coordinates(points)
        invalid_count = 0
        if isinstance(validation, CoordinatesInvalid):
            invalid_count = validation.invalid_count
            if len(validation.points) < 3:
                logger.error("Coordinate validation failed: %s", validation.reason)
                raise InvalidCoordinatesError(
                    f"Coordinate validation failed: {validation.reason}. "
                    f"Only {len(validation.points)} valid points remain (minimum 3 required). "
                    f"Invalid count: {validation.invalid_count}",
                    {'point_count': len(points), 'invalid_count': validation.invalid_count,
                     'valid_count': len(validation.points)},
                )
            logger.warning(
                "%s: dropped %d non-finite points", validation.reason, validation.invalid_count
            )
            self.stats['non_finite_removed'] += validation.invalid_count
        points = validation.points

        if len(points) < 3:
            raise InsufficientPointsError(
                f"Only {len(points)} points available (minimum 3 required)",
                {'point_count': len(points)},
            )

        collinear_detected = self.check_collinearity(points)
        offset_applied = False
        if collinear_detected:
            points = self.apply_collinearity_offset(points)
            offset_applied = True
            self.stats['collinearity_corrections'] += 1
            logger.warning("Collinear point set detected, applied alternating offset")
            if self.check_collinearity(points):
                bbox = BoundingBox.from_points(points)
                logger.error("Points remain collinear after offset")
                raise DegenerateGeometryError(
                    f"Points are collinear and could not be corrected. "
                    f"Unique points: {len(points)}. "
                    f"Bounding box: width={bbox.width:.6f}, height={bbox.height:.6f}. "
                    f"Consider adjusting groundHeightTolerance or downsampleRatio parameters.",
                    {'point_count': len(points), 'bbox_width': bbox.width,
                     'bbox_height': bbox.height, 'collinear': True},
                )

        perturbed = False
        initial = self.validate_geometry(points)
        if isinstance(initial, GeometryInvalid):
            candidate = self.ensure_non_degenerate(points)
            after = self.validate_geometry(candidate)
            if isinstance(after, GeometryInvalid):
                bbox = BoundingBox.from_points(points)
                logger.error("Geometry validation failed: %s", initial.describe())
                raise DegenerateGeometryError(
                    f"Point set geometry validation failed: {initial.reason}. {initial.details}. "
                    f"After perturbation: {after.reason}. {after.details}. "
                    f"Consider adjusting groundHeightTolerance or downsampleRatio parameters.",
                    {'point_count': len(points), 'bbox_width': bbox.width,
                     'bbox_height': bbox.height, 'reason': initial.reason,
                     'reason_after_perturbation': after.reason},
                )
            perturbed = candidate is not points
            points = candidate

        return ConditionedPoints(
            points=points,
            bounding_box=BoundingBox.from_points(points),
            collinear_detected=collinear_detected,
            offset_applied=offset_applied,
            perturbed=perturbed,
            invalid_count=invalid_count,
        )

    # ------------------------------------------------------------------
    # 座標検証
    # ------------------------------------------------------------------

    def validate_coordinates(self, points: PointSet) -> CoordinateValidation:
        """投影座標 (x, z) の有限性を検証"""
        nan_mask = np.isnan(points.x) | np.isnan(points.z)
        inf_mask = ~nan_mask & (np.isinf(points.x) | np.isinf(points.z))
        invalid_mask = nan_mask | inf_mask
        invalid_count = int(np.count_nonzero(invalid_mask))

        if invalid_count == 0:
            return CoordinatesValid(points)

        has_nan = bool(np.any(nan_mask))
        has_inf = bool(np.any(inf_mask))
        if has_nan and has_inf:
            reason = 'NaN and Infinity values found'
        elif has_nan:
            reason = 'NaN values found'
        else:
            reason = 'Infinity values found'

        return CoordinatesInvalid(
            reason=reason,
            invalid_count=invalid_count,
            points=points.take(np.flatnonzero(~invalid_mask)),
        )

    # ------------------------------------------------------------------
    # 共線判定・補正
    # ------------------------------------------------------------------

    def check_collinearity(self, points: PointSet) -> bool:
        """点群が（ほぼ）一直線上にあるか判定

        近似判定は配列順で連続する三つ組のみを見る。
        """
        n = len(points)
        if n < 3:
            return False

        dx = np.abs(points.x - points.x[0])
        dz = np.abs(points.z - points.z[0])
        if np.all(dx <= self.tolerance) or np.all(dz <= self.tolerance):
            return True

        bbox = BoundingBox.from_points(points)
        tolerance = bbox.max_spread * self.near_collinear_tolerance
        if tolerance < self.tolerance:
            return False

        xz = points.xz
        d1 = xz[1:-1] - xz[:-2]
        d2 = xz[2:] - xz[1:-1]
        cross = d1[:, 0] * d2[:, 1] - d1[:, 1] * d2[:, 0]
        areas = np.abs(cross) / 2

        near_collinear = int(np.count_nonzero(areas < tolerance * tolerance))
        return near_collinear >= len(areas) * self.collinear_fraction

    def apply_collinearity_offset(self, points: PointSet) -> PointSet:
        """点の位置に応じた交互オフセットで厳密な共線を崩す"""
        bbox = BoundingBox.from_points(points)
        index = np.arange(len(points))
        parity = np.where(index % 2 == 0, 1.0, -1.0)
        tertiary = np.where(index % 3 == 0, 1.0, -1.0)

        # 軸に平行な直線では幅ゼロの軸を、もう一方の広がりに比例してずらす
        line_offset = bbox.max_spread * self.collinearity_offset_factor
        if abs(bbox.width) < self.tolerance:
            return points.with_xz(points.x + line_offset * parity, points.z)
        if abs(bbox.height) < self.tolerance:
            return points.with_xz(points.x, points.z + line_offset * parity)

        offset_x = bbox.width * self.collinearity_offset_factor
        offset_z = bbox.height * self.collinearity_offset_factor
        return points.with_xz(points.x + offset_x * parity, points.z + offset_z * tertiary)

    # ------------------------------------------------------------------
    # 健全性検証・摂動
    # ------------------------------------------------------------------

    def validate_geometry(
        self,
        points: PointSet,
        bounding_box: Optional[BoundingBox] = None
    ) -> GeometryValidation:
        """面積・縦横比・多様性の検証"""
        n = len(points)
        if n < 3:
            return GeometryInvalid(
                'Insufficient points', f"Only {n} points (minimum 3 required)"
            )

        bbox = bounding_box or BoundingBox.from_points(points)
        area = bbox.area
        if area < self.min_bounding_box_area:
            return GeometryInvalid(
                'Bounding box area too small',
                f"Area: {area:.10f} (minimum: {self.min_bounding_box_area})",
            )

        max_spread = bbox.max_spread
        spread_ratio = bbox.min_spread / max_spread if max_spread > 0 else 1.0
        if spread_ratio < self.min_point_spread_ratio and max_spread > 0:
            return GeometryInvalid(
                'Point spread too narrow',
                f"Spread ratio: {spread_ratio:.6f} (minimum: {self.min_point_spread_ratio})",
            )

        # 軸に平行でない細長い点群は主軸方向の広がりの比で判定する
        centered = points.xz - points.xz.mean(axis=0)
        eigenvalues = np.linalg.eigvalsh(centered.T @ centered / n)
        if eigenvalues[1] > 0:
            principal_ratio = float(np.sqrt(max(eigenvalues[0], 0.0) / eigenvalues[1]))
            if principal_ratio < self.min_point_spread_ratio:
                return GeometryInvalid(
                    'Point spread too narrow',
                    f"Principal axis ratio: {principal_ratio:.6f} (minimum: {self.min_point_spread_ratio})",
                )

        if n > DIVERSITY_CHECK_MIN_POINTS:
            unique_count = count_unique_positions(points, self.tolerance)
            diversity = unique_count / n
            if diversity < self.min_diversity_ratio:
                return GeometryInvalid(
                    'Low geometric diversity',
                    f"Unique points: {unique_count}/{n} ({diversity * 100:.1f}%)",
                )

        return GeometryValid()

    def ensure_non_degenerate(self, points: PointSet) -> PointSet:
        """黄金角スパイラルの摂動で退化を解消する

        重複する点だけでなく全ての点を半径 max(最大広がり×perturbation_factor, 10×tolerance)
        でずらすため、成功時の出力頂点は摂動後の座標になる。
        摂動後も検証に失敗した場合は元の点群をそのまま返す。
        """
        n = len(points)
        if n < 3:
            return points

        if not self.check_collinearity(points):
            if isinstance(self.validate_geometry(points), GeometryValid):
                return points

        bbox = BoundingBox.from_points(points)
        radius = max(bbox.max_spread * self.perturbation_factor, self.tolerance * 10)

        index = np.arange(n)
        angles = np.deg2rad(index * GOLDEN_ANGLE_DEG)
        jittered_x = points.x + np.cos(angles) * radius
        jittered_z = points.z + np.sin(angles) * radius

        # 同じバケットに落ちた点だけ角度と半径を変えて再配置
        keep = first_unique_indices(jittered_x, jittered_z, self.tolerance)
        colliding = np.setdiff1d(index, keep, assume_unique=True)
        if colliding.size:
            used = set(zip(
                np.floor(jittered_x[keep] / self.tolerance).tolist(),
                np.floor(jittered_z[keep] / self.tolerance).tolist(),
            ))
            for i in colliding.tolist():
                for attempt in range(1, PERTURBATION_MAX_ATTEMPTS + 1):
                    angle = np.deg2rad(i * GOLDEN_ANGLE_DEG + attempt * 42.0)
                    r = radius * (1 + attempt * 0.1)
                    cx = points.x[i] + np.cos(angle) * r
                    cz = points.z[i] + np.sin(angle) * r
                    key = (float(np.floor(cx / self.tolerance)), float(np.floor(cz / self.tolerance)))
                    if key not in used:
                        break
                used.add(key)
                jittered_x[i] = cx
                jittered_z[i] = cz

        perturbed = points.with_xz(jittered_x, jittered_z)
        if isinstance(self.validate_geometry(perturbed), GeometryValid):
            self.stats['perturbations'] += 1
            logger.warning(
                "Applied golden-angle perturbation (radius=%.3g) to %d points", radius, n
            )
            return perturbed

        logger.debug("Perturbation did not fix geometry, keeping original points")
        return points

    def get_performance_stats(self) -> dict:
        """統計取得"""
        return self.stats.copy()

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0
