#!/usr/bin/env python3
"""
共通型定義

パイプラインの各段階で受け渡される点群・バウンディングボックス・
ダウンサンプリング戦略・三角形分割結果・メッシュの型を一元管理し、
モジュール間の循環依存を解消します。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import numpy as np

from .errors import (
    MeshGenerationError,
    InsufficientPointsError,
    InvalidCoordinatesError,
    TriangulationEngineFailure,
    TriangulationEmptyResult,
    TriangulationMalformed,
)


def _frozen_array(values, dtype) -> np.ndarray:
    array = np.array(values, dtype=dtype, copy=True).reshape(-1)
    array.setflags(write=False)
    return array


# =============================================================================
# 点群
# =============================================================================

@dataclass(frozen=True)
class PointSet:
    """地面点の集合（構造体配列ではなく列ごとの配列で保持）

    ``y`` は高さ属性、``x`` / ``z`` が三角形分割平面への投影座標。
    ``original_index`` は入力バッファ内の位置を指す。フォールバックで
    追加されるコーナー点は -1 を持つ。
    """
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    original_index: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'x', _frozen_array(self.x, np.float64))
        object.__setattr__(self, 'y', _frozen_array(self.y, np.float64))
        object.__setattr__(self, 'z', _frozen_array(self.z, np.float64))
        object.__setattr__(self, 'original_index', _frozen_array(self.original_index, np.int64))
        n = len(self.x)
        if not (len(self.y) == len(self.z) == len(self.original_index) == n):
            raise ValueError(
                f"PointSet columns differ in length: x={n}, y={len(self.y)}, "
                f"z={len(self.z)}, original_index={len(self.original_index)}"
            )

    def __len__(self) -> int:
        return len(self.x)

    @classmethod
    def empty(cls) -> "PointSet":
        return cls(np.empty(0), np.empty(0), np.empty(0), np.empty(0, dtype=np.int64))

    @property
    def xz(self) -> np.ndarray:
        """投影平面上の座標 (N, 2)"""
        return np.column_stack([self.x, self.z])

    @property
    def positions(self) -> np.ndarray:
        """3D座標 (N, 3) - (x, y, z)"""
        return np.column_stack([self.x, self.y, self.z])

    def take(self, indices) -> "PointSet":
        """指定インデックスの部分集合を返す"""
        indices = np.asarray(indices, dtype=np.int64)
        return PointSet(
            self.x[indices], self.y[indices], self.z[indices], self.original_index[indices]
        )

    def with_xz(self, x: np.ndarray, z: np.ndarray) -> "PointSet":
        """投影座標だけを置き換えた新しい点群を返す"""
        return PointSet(x, self.y, z, self.original_index)

    def concat(self, other: "PointSet") -> "PointSet":
        return PointSet(
            np.concatenate([self.x, other.x]),
            np.concatenate([self.y, other.y]),
            np.concatenate([self.z, other.z]),
            np.concatenate([self.original_index, other.original_index]),
        )


@dataclass(frozen=True)
class BoundingBox:
    """投影平面 (x, z) 上のバウンディングボックス"""
    min_x: float
    max_x: float
    min_z: float
    max_z: float

    @classmethod
    def from_points(cls, points: PointSet) -> "BoundingBox":
        if len(points) == 0:
            return cls(0.0, 0.0, 0.0, 0.0)
        return cls(
            float(np.min(points.x)), float(np.max(points.x)),
            float(np.min(points.z)), float(np.max(points.z)),
        )

    @classmethod
    def from_coords(cls, coords: np.ndarray) -> "BoundingBox":
        """(N, 2) 座標配列から計算"""
        if len(coords) == 0:
            return cls(0.0, 0.0, 0.0, 0.0)
        return cls(
            float(np.min(coords[:, 0])), float(np.max(coords[:, 0])),
            float(np.min(coords[:, 1])), float(np.max(coords[:, 1])),
        )

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_z - self.min_z

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center_x(self) -> float:
        return (self.min_x + self.max_x) / 2

    @property
    def center_z(self) -> float:
        return (self.min_z + self.max_z) / 2

    @property
    def max_spread(self) -> float:
        return max(self.width, self.height)

    @property
    def min_spread(self) -> float:
        return min(self.width, self.height)

    @property
    def aspect_ratio(self) -> float:
        """短辺/長辺（広がりゼロの場合は1）"""
        max_spread = self.max_spread
        return self.min_spread / max_spread if max_spread > 0 else 1.0

    def corners(self) -> np.ndarray:
        """4隅の (x, z) 座標 (4, 2)"""
        return np.array([
            [self.min_x, self.min_z],
            [self.max_x, self.min_z],
            [self.max_x, self.max_z],
            [self.min_x, self.max_z],
        ])

    def describe(self) -> str:
        return (
            f"x=[{self.min_x:.3f}, {self.max_x:.3f}], z=[{self.min_z:.3f}, {self.max_z:.3f}], "
            f"spread: x={self.width:.3f}, z={self.height:.3f}"
        )


# =============================================================================
# ダウンサンプリング戦略
# =============================================================================

@dataclass(frozen=True)
class NoDownsample:
    point_count: int

    @property
    def key(self) -> str:
        return f"none-{self.point_count}"

    def describe(self) -> str:
        return f"none ({self.point_count} points)"


@dataclass(frozen=True)
class GridDownsample:
    point_count: int
    grid_size: int
    original_count: int

    @property
    def key(self) -> str:
        return f"grid-{self.original_count}-{self.point_count}-{self.grid_size}"

    def describe(self) -> str:
        return f"grid ({self.original_count} -> {self.point_count}, grid={self.grid_size})"


@dataclass(frozen=True)
class ProgressiveDownsample:
    point_count: int
    ratio: float
    original_count: int
    attempt: int

    @property
    def key(self) -> str:
        return f"progressive-{self.ratio}-{self.original_count}-{self.point_count}-{self.attempt}"

    def describe(self) -> str:
        return (
            f"progressive ratio={self.ratio} ({self.original_count} -> {self.point_count}, "
            f"attempt={self.attempt})"
        )


DownsampleStrategy = Union[NoDownsample, GridDownsample, ProgressiveDownsample]


def unique_strategies(strategies) -> Tuple[DownsampleStrategy, ...]:
    """キーで重複を除いた戦略列（最初の出現順）"""
    seen = set()
    unique = []
    for strategy in strategies:
        if strategy.key not in seen:
            seen.add(strategy.key)
            unique.append(strategy)
    return tuple(unique)


@dataclass(frozen=True)
class DownsampledPoints:
    points: PointSet
    strategy: DownsampleStrategy


# =============================================================================
# 検証結果
# =============================================================================

@dataclass(frozen=True)
class CoordinatesValid:
    points: PointSet


@dataclass(frozen=True)
class CoordinatesInvalid:
    reason: str
    invalid_count: int
    points: PointSet  # 有限な部分集合


CoordinateValidation = Union[CoordinatesValid, CoordinatesInvalid]


@dataclass(frozen=True)
class GeometryValid:
    def describe(self) -> str:
        return "valid"


@dataclass(frozen=True)
class GeometryInvalid:
    reason: str
    details: str

    def describe(self) -> str:
        return f"{self.reason} - {self.details}"


GeometryValidation = Union[GeometryValid, GeometryInvalid]


# =============================================================================
# 三角形分割結果
# =============================================================================

class FailureKind(Enum):
    """三角形分割エラーの分類"""
    ENGINE = "engine"                        # プリミティブが例外を送出
    MALFORMED = "malformed"                  # 出力が構造的に不正
    INVALID_COORDINATES = "invalid_coordinates"
    INSUFFICIENT = "insufficient"            # 点数不足


@dataclass(frozen=True)
class TriangulationSuccess:
    triangles: np.ndarray   # (M, 3) 頂点インデックス
    point_count: int

    @property
    def num_triangles(self) -> int:
        return len(self.triangles)


@dataclass(frozen=True)
class TriangulationEmpty:
    point_count: int
    reason: str


@dataclass(frozen=True)
class TriangulationError:
    point_count: int
    message: str
    kind: FailureKind = FailureKind.MALFORMED


TriangulationResult = Union[TriangulationSuccess, TriangulationEmpty, TriangulationError]


def describe_result(result: Optional[TriangulationResult]) -> str:
    if isinstance(result, TriangulationSuccess):
        return f"Success: {result.num_triangles} triangles"
    if isinstance(result, TriangulationEmpty):
        return f"Empty result: {result.reason}"
    if isinstance(result, TriangulationError):
        return f"Error: {result.message}"
    if result is None:
        return "Unknown error"
    raise TypeError(f"Unexpected triangulation result: {result!r}")


def raise_for_result(result: TriangulationResult) -> TriangulationSuccess:
    """失敗結果を対応する例外に変換する。成功ならそのまま返す"""
    if isinstance(result, TriangulationSuccess):
        return result
    details = {'point_count': result.point_count}
    if isinstance(result, TriangulationEmpty):
        raise TriangulationEmptyResult(result.reason, details)
    if isinstance(result, TriangulationError):
        exc_type = {
            FailureKind.ENGINE: TriangulationEngineFailure,
            FailureKind.MALFORMED: TriangulationMalformed,
            FailureKind.INVALID_COORDINATES: InvalidCoordinatesError,
            FailureKind.INSUFFICIENT: InsufficientPointsError,
        }[result.kind]
        raise exc_type(result.message, details)
    raise TypeError(f"Unexpected triangulation result: {result!r}")


# =============================================================================
# 出力メッシュ
# =============================================================================

@dataclass
class Mesh:
    """下流のナビゲーションメッシュビルダーへ渡すメッシュ

    3つの型付きバッファ（頂点・インデックス・法線）のみで構成する。
    """
    vertices: np.ndarray   # float32 (vertex_count * 3,)
    indices: np.ndarray    # uint32 (index_count,)
    normals: np.ndarray    # float32 (vertex_count * 3,)
    vertex_count: int
    index_count: int

    @property
    def num_triangles(self) -> int:
        return self.index_count // 3

    @property
    def positions(self) -> np.ndarray:
        """頂点座標 (N, 3)"""
        return self.vertices.reshape(-1, 3)

    @property
    def triangles(self) -> np.ndarray:
        """三角形インデックス (M, 3)"""
        return self.indices.reshape(-1, 3)

    @property
    def vertex_normals(self) -> np.ndarray:
        """頂点法線 (N, 3)"""
        return self.normals.reshape(-1, 3)

    def validate(self) -> None:
        """メッシュ不変条件を検証（違反時は MeshGenerationError）"""
        problems = []
        if len(self.vertices) != self.vertex_count * 3:
            problems.append(f"vertices length {len(self.vertices)} != vertex_count*3 ({self.vertex_count * 3})")
        if len(self.normals) != len(self.vertices):
            problems.append(f"normals length {len(self.normals)} != vertices length {len(self.vertices)}")
        if len(self.indices) != self.index_count:
            problems.append(f"indices length {len(self.indices)} != index_count {self.index_count}")
        if self.index_count % 3 != 0:
            problems.append(f"index_count {self.index_count} is not a multiple of 3")
        if len(self.indices) > 0 and int(np.max(self.indices)) >= self.vertex_count:
            problems.append(
                f"index {int(np.max(self.indices))} exceeds vertex_count {self.vertex_count}"
            )
        if problems:
            raise MeshGenerationError("Invalid mesh: " + "; ".join(problems),
                                      {'vertex_count': self.vertex_count,
                                       'index_count': self.index_count})


@dataclass
class NavigablePointCloud:
    """地面として抽出された点群（フラットな xyz バッファ）"""
    positions: np.ndarray   # float32 (count * 3,)
    count: int
