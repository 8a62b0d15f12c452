#!/usr/bin/env python3
"""
地面メッシュ生成パイプライン

重複除去 → 幾何条件整備 → (ダウンサンプリング) → 正規化 → 三角形分割 →
法線計算 → メッシュ組み立て、の各段階をまとめるファサードです。
三角形分割に失敗した場合は retry.py の状態機械に従って段階的
ダウンサンプリングとフォールバックを試み、全て失敗した場合のみ
TriangulationExhausted を送出します。
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Tuple

import numpy as np

from ..config import MeshingConfig, get_config
from ..data_types import (
    PointSet,
    BoundingBox,
    Mesh,
    DownsampledPoints,
    DownsampleStrategy,
    GridDownsample,
    CoordinatesInvalid,
    GeometryInvalid,
    FailureKind,
    TriangulationResult,
    TriangulationSuccess,
    TriangulationEmpty,
    TriangulationError,
    describe_result,
    unique_strategies,
)
from ..errors import MeshGenerationError, TriangulationExhausted
from .sanitize import PointSanitizer
from .conditioning import GeometryConditioner
from .downsample import Downsampler
from .normalize import CoordinateNormalizer
from .delaunay import TriangulationAdapter, DelaunayPrimitive, scipy_delaunay
from .attributes import NormalComputer
from .assembler import MeshAssembler
from .retry import RetryPhase, RetryState, initial_state, advance, max_triangulation_attempts
from .. import get_logger

logger = get_logger(__name__)


class GroundMeshGenerator:
    """地面点群から三角形メッシュを生成するクラス"""

    _EXECUTOR: Optional[ThreadPoolExecutor] = None  # class-level ThreadPoolExecutor

    def __init__(
        self,
        config: Optional[MeshingConfig] = None,
        primitive: DelaunayPrimitive = scipy_delaunay
    ):
        """
        初期化

        Args:
            config: メッシュ生成設定（Noneなら既定値）
            primitive: 2D Delaunayプリミティブ
        """
        self.config = config or MeshingConfig()
        cfg = self.config

        self.sanitizer = PointSanitizer(tolerance=cfg.point_tolerance)
        self.conditioner = GeometryConditioner(
            tolerance=cfg.point_tolerance,
            near_collinear_tolerance=cfg.near_collinear_tolerance,
            collinear_fraction=cfg.collinear_fraction,
            min_bounding_box_area=cfg.min_bounding_box_area,
            min_point_spread_ratio=cfg.min_point_spread_ratio,
            min_diversity_ratio=cfg.min_diversity_ratio,
            collinearity_offset_factor=cfg.collinearity_offset_factor,
            perturbation_factor=cfg.perturbation_factor,
        )
        self.downsampler = Downsampler(
            max_points=cfg.max_points_for_triangulation,
            progressive_ratios=cfg.progressive_ratios,
            conditioner=self.conditioner,
        )
        self.adapter = TriangulationAdapter(
            primitive=primitive,
            normalizer=CoordinateNormalizer(tolerance=cfg.point_tolerance),
        )
        self.assembler = MeshAssembler(
            normal_computer=NormalComputer(cfg.normal_length_threshold),
            orient_upward=cfg.orient_upward,
        )

        # 同一インスタンスでの実行は直列化する（統計・診断情報を共有するため）
        self._lock = threading.Lock()

        # 直近の実行の診断情報
        self.last_strategies: Tuple[DownsampleStrategy, ...] = ()
        self.last_state: RetryState = initial_state()

        self.stats = {
            'total_generations': 0,
            'successful_generations': 0,
            'failed_generations': 0,
            'total_time_ms': 0.0,
            'average_time_ms': 0.0,
            'total_attempts': 0,
            'progressive_retries': 0,
            'fallbacks_used': 0,
            'last_input_count': 0,
            'last_vertex_count': 0,
            'last_num_triangles': 0
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self,
        positions: np.ndarray,
        count: Optional[int] = None,
        heights: Optional[np.ndarray] = None
    ) -> Mesh:
        """
        位置バッファからメッシュを生成

        Args:
            positions: フラットな位置バッファ（1点あたり3要素）
            count: 点数（Noneならバッファ長から算出）
            heights: 点ごとの高さ上書き値

        Returns:
            検証済みメッシュ

        Raises:
            MeshGenerationError: 入力不足・退化・全戦略の失敗
        """
        with self._lock:
            return self._generate_locked(positions, count, heights)

    def _generate_locked(
        self,
        positions: np.ndarray,
        count: Optional[int],
        heights: Optional[np.ndarray]
    ) -> Mesh:
        start_time = time.perf_counter()
        self.stats['total_generations'] += 1

        try:
            mesh = self._generate(positions, count, heights)
        except MeshGenerationError:
            self.stats['failed_generations'] += 1
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.stats['successful_generations'] += 1
        self.stats['total_time_ms'] += elapsed_ms
        self.stats['average_time_ms'] = (
            self.stats['total_time_ms'] / self.stats['successful_generations']
        )
        self.stats['last_vertex_count'] = mesh.vertex_count
        self.stats['last_num_triangles'] = mesh.num_triangles

        logger.info(
            "Generated ground mesh: %d vertices, %d triangles in %.1fms",
            mesh.vertex_count, mesh.num_triangles, elapsed_ms,
        )
        return mesh

    def generate_async(
        self,
        positions: np.ndarray,
        count: Optional[int] = None,
        heights: Optional[np.ndarray] = None
    ) -> "Future[Mesh]":
        """非同期に generate() を実行し Future を返す。

        同じインスタンスへの複数の呼び出しは順に実行される。並列に生成する場合は
        インスタンスを分けること。
        """
        if GroundMeshGenerator._EXECUTOR is None:
            GroundMeshGenerator._EXECUTOR = ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="groundmesh"
            )
        return GroundMeshGenerator._EXECUTOR.submit(self.generate, positions, count, heights)

    # ------------------------------------------------------------------
    # 内部処理
    # ------------------------------------------------------------------

    def _generate(
        self,
        positions: np.ndarray,
        count: Optional[int],
        heights: Optional[np.ndarray]
    ) -> Mesh:
        sanitized = self.sanitizer.sanitize(positions, count, heights)
        self.stats['last_input_count'] = self.sanitizer.stats['last_input_count']

        conditioned = self.conditioner.condition(sanitized)
        validated = conditioned.points
        bbox = conditioned.bounding_box

        initial = self.downsampler.apply_hard_cap(validated, bbox)
        if isinstance(initial.strategy, GridDownsample):
            if isinstance(self.conditioner.validate_geometry(initial.points), GeometryInvalid):
                initial = DownsampledPoints(
                    self.conditioner.ensure_non_degenerate(initial.points), initial.strategy
                )

        points, result = self._triangulate_with_retries(validated, bbox, initial)
        return self.assembler.assemble(points, result.triangles)

    def _triangulate_with_retries(
        self,
        validated: PointSet,
        bbox: BoundingBox,
        initial: DownsampledPoints
    ) -> Tuple[PointSet, TriangulationSuccess]:
        """
        状態機械に従って三角形分割を繰り返す

        Args:
            validated: 条件整備済みの元点群（段階的サンプリングの元）
            bbox: 元点群のバウンディングボックス
            initial: 初回試行の点群

        Returns:
            (三角形分割に使った点群, 成功結果)
        """
        num_ratios = len(self.downsampler.progressive_ratios)
        state = initial_state()
        strategies: List[DownsampleStrategy] = []
        current: Optional[DownsampledPoints] = initial
        points = initial.points
        result: Optional[TriangulationResult] = None
        fallback: Optional[TriangulationResult] = None

        while state.triangulates_directly:
            strategies.append(current.strategy)
            points, result = self._attempt(current.points, state)
            self.stats['total_attempts'] += 1

            succeeded = isinstance(result, TriangulationSuccess)
            if not succeeded:
                logger.warning(
                    "Triangulation attempt %s failed with %d points: %s",
                    state.describe(), len(points), describe_result(result),
                )
            state = advance(state, succeeded, num_ratios)

            if state.phase == RetryPhase.DOWNSAMPLED:
                self.stats['progressive_retries'] += 1
                current = self.downsampler.progressive_sample(validated, state.attempt, bbox)

        if state.phase == RetryPhase.FALLBACK_ATTEMPTED:
            logger.warning(
                "All %d triangulation attempts failed, trying bounding-box corner fallback",
                max_triangulation_attempts(num_ratios),
            )
            fallback = self.adapter.triangulate_with_corners(points, bbox)
            self.stats['fallbacks_used'] += 1
            state = advance(state, isinstance(fallback, TriangulationSuccess), num_ratios)
            if isinstance(fallback, TriangulationSuccess):
                result = fallback

        attempted = unique_strategies(strategies)
        self.last_strategies = attempted
        self.last_state = state

        if state.phase == RetryPhase.SUCCEEDED:
            return points, result

        raise self._exhausted_error(validated, bbox, points, result, fallback, attempted)

    def _attempt(self, points: PointSet, state: RetryState) -> Tuple[PointSet, TriangulationResult]:
        """座標検証・健全性検証を経て1回分の三角形分割を行う"""
        coordinates = self.conditioner.validate_coordinates(points)
        if isinstance(coordinates, CoordinatesInvalid):
            if len(coordinates.points) < 3:
                return points, TriangulationError(
                    len(points),
                    f"Coordinate validation failed: {coordinates.reason}",
                    FailureKind.INVALID_COORDINATES,
                )
            points = coordinates.points

        geometry = self.conditioner.validate_geometry(points)
        if isinstance(geometry, GeometryInvalid):
            points = self.conditioner.ensure_non_degenerate(points)
            geometry = self.conditioner.validate_geometry(points)
            if isinstance(geometry, GeometryInvalid):
                if state.phase == RetryPhase.INITIAL:
                    return points, TriangulationEmpty(
                        len(points), f"Geometry validation failed: {geometry.describe()}"
                    )
                logger.warning(
                    "Geometry still invalid at %s (%s), triangulating anyway",
                    state.describe(), geometry.describe(),
                )

        return points, self.adapter.triangulate(points)

    def _exhausted_error(
        self,
        validated: PointSet,
        bbox: BoundingBox,
        points: PointSet,
        result: Optional[TriangulationResult],
        fallback: Optional[TriangulationResult],
        strategies: Tuple[DownsampleStrategy, ...]
    ) -> TriangulationExhausted:
        coordinate_range = BoundingBox.from_points(points)
        collinear = self.conditioner.check_collinearity(points)
        geometry = self.conditioner.validate_geometry(points)
        result_reason = describe_result(result)
        fallback_reason = describe_result(fallback)
        strategy_details = '; '.join(s.describe() for s in strategies) or 'none'

        logger.error("Triangulation exhausted: %s", result_reason)
        return TriangulationExhausted(
            f"Delaunay triangulation failed after {max_triangulation_attempts(len(self.downsampler.progressive_ratios))} attempts. "
            f"{result_reason}. Fallback triangulation also failed: {fallback_reason}. "
            f"Validated points: {len(validated)}. Final attempt: {len(points)} points. "
            f"Bounding box: width={bbox.width:.6f}, height={bbox.height:.6f}. "
            f"Final coordinate range: {coordinate_range.describe()}. "
            f"Collinear: {collinear}. Geometry validation: {geometry.describe()}. "
            f"Strategies attempted: {strategy_details}. "
            f"Consider adjusting groundHeightTolerance or downsampleRatio parameters.",
            strategies=list(strategies),
            result_reason=result_reason,
            coordinate_range=coordinate_range,
            collinear=collinear,
            geometry_validation=geometry,
            details={
                'validated_count': len(validated),
                'final_count': len(points),
                'bbox_width': bbox.width,
                'bbox_height': bbox.height,
                'fallback_reason': fallback_reason,
            },
        )

    def get_performance_stats(self) -> dict:
        """パフォーマンス統計取得（各段階の統計を含む）"""
        stats = self.stats.copy()
        stats['sanitizer'] = self.sanitizer.get_performance_stats()
        stats['conditioner'] = self.conditioner.get_performance_stats()
        stats['downsampler'] = self.downsampler.get_performance_stats()
        stats['triangulation'] = self.adapter.get_performance_stats()
        stats['assembler'] = self.assembler.get_performance_stats()
        return stats

    def reset_stats(self):
        """統計リセット"""
        for key in self.stats:
            self.stats[key] = 0.0 if isinstance(self.stats[key], float) else 0
        self.sanitizer.reset_stats()
        self.conditioner.reset_stats()
        self.downsampler.reset_stats()
        self.adapter.reset_stats()
        self.assembler.reset_stats()


def ensure_navigable(mesh: Mesh) -> Mesh:
    """
    ナビゲーションメッシュビルダーへ渡せるメッシュか検証

    Args:
        mesh: 検証するメッシュ

    Returns:
        そのままのメッシュ

    Raises:
        MeshGenerationError: 頂点3未満・インデックス3未満・不変条件違反
    """
    if mesh.vertex_count < 3 or mesh.index_count < 3:
        raise MeshGenerationError(
            f"Invalid mesh data for navigation mesh generation: "
            f"{mesh.vertex_count} vertices, {mesh.index_count} indices (minimum 3 each)",
            {'vertex_count': mesh.vertex_count, 'index_count': mesh.index_count},
        )
    mesh.validate()
    return mesh


# 便利関数

def generate_navigable_mesh(
    positions: np.ndarray,
    count: Optional[int] = None,
    heights: Optional[np.ndarray] = None,
    config: Optional[MeshingConfig] = None
) -> Mesh:
    """
    地面点群からナビゲーション用メッシュを生成（簡単なインターフェース）

    Args:
        positions: フラットな位置バッファ
        count: 点数
        heights: 高さ上書き値
        config: メッシュ生成設定（Noneならグローバル設定）

    Returns:
        検証済みメッシュ
    """
    if config is None:
        config = get_config().meshing
    generator = GroundMeshGenerator(config)
    return ensure_navigable(generator.generate(positions, count, heights))
