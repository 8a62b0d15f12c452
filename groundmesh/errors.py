#!/usr/bin/env python3
"""
メッシュ生成エラー定義

パイプラインが回復できなかった場合に呼び出し側へ送出される例外群です。
すべて ValueError の派生なので、従来どおり ValueError で捕捉できます。
各例外は診断用のコンテキスト（段階ごとの点数、バウンディングボックス、
試行した戦略の履歴など）を ``details`` に保持します。
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .data_types import BoundingBox, DownsampleStrategy, GeometryValidation


class MeshGenerationError(ValueError):
    """メッシュ生成エラーの基底クラス"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class InsufficientPointsError(MeshGenerationError):
    """重複除去・フィルタ後に3点未満しか残らない"""


class InvalidCoordinatesError(MeshGenerationError):
    """NaN/Infinity を含み、有限な点が不足している"""


class DegenerateGeometryError(MeshGenerationError):
    """共線・面積ゼロ・極端に細長い点群で、摂動でも修正できなかった"""


class TriangulationEngineFailure(MeshGenerationError):
    """三角形分割プリミティブが全ての数値表現で例外を送出した"""


class TriangulationEmptyResult(MeshGenerationError):
    """三角形分割が構造的には正しいが空の結果を返した"""


class TriangulationMalformed(MeshGenerationError):
    """三角形分割が構造的に不正な結果を返した"""


class TriangulationExhausted(MeshGenerationError):
    """段階的リトライとフォールバックを全て使い切った（終端エラー）"""

    def __init__(
        self,
        message: str,
        strategies: List["DownsampleStrategy"],
        result_reason: str,
        coordinate_range: Optional["BoundingBox"],
        collinear: bool,
        geometry_validation: "GeometryValidation",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.strategies = list(strategies)
        self.result_reason = result_reason
        self.coordinate_range = coordinate_range
        self.collinear = collinear
        self.geometry_validation = geometry_validation
