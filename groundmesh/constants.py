#!/usr/bin/env python3
"""
共通定数・設定値

メッシュ生成パイプライン全体で使用される許容誤差や上限値を一元管理し、
モジュール間の循環依存を解消します。
"""

from typing import Final, Tuple

# =============================================================================
# 数値精度・許容誤差
# =============================================================================

# 重複判定・一致判定に使う空間ハッシュの刻み幅
POINT_TOLERANCE: Final[float] = 1e-6

# 正規化後にゼロへ丸める閾値
NORMALIZED_ZERO_EPSILON: Final[float] = 1e-10

# =============================================================================
# 幾何条件
# =============================================================================

# 準共線判定の許容誤差（最大広がりに対する比率）
NEAR_COLLINEAR_TOLERANCE: Final[float] = 1e-3
# 準共線とみなす三つ組の割合
COLLINEAR_FRACTION: Final[float] = 0.9

# バウンディングボックスの最小面積
MIN_BOUNDING_BOX_AREA: Final[float] = 1e-6
# 短辺/長辺の最小比率
MIN_POINT_SPREAD_RATIO: Final[float] = 1e-3
# 空間的にユニークな点の最小割合
MIN_DIVERSITY_RATIO: Final[float] = 0.5
# 多様性チェックを行う最小点数（これを超える点数で判定）
DIVERSITY_CHECK_MIN_POINTS: Final[int] = 10

# 共線補正オフセット（バウンディングボックス寸法に対する比率）
COLLINEARITY_OFFSET_FACTOR: Final[float] = 1e-4
# 摂動半径（最大広がりに対する比率）
PERTURBATION_FACTOR: Final[float] = 1e-4
# 摂動の最大リトライ回数
PERTURBATION_MAX_ATTEMPTS: Final[int] = 10
# 黄金角（度）
GOLDEN_ANGLE_DEG: Final[float] = 137.508

# =============================================================================
# 座標正規化
# =============================================================================

LARGE_SPREAD_THRESHOLD: Final[float] = 1e6
LARGE_SPREAD_SCALE: Final[float] = 1e-6
SMALL_SPREAD_THRESHOLD: Final[float] = 1e-3
SMALL_SPREAD_SCALE: Final[float] = 1e3
EXTREME_ASPECT_RATIO: Final[float] = 1e-6

# =============================================================================
# ダウンサンプリング・リトライ
# =============================================================================

# グリッドダウンサンプリングの上限点数
MAX_POINTS_FOR_TRIANGULATION: Final[int] = 100000

# 段階的リトライの比率
PROGRESSIVE_RATIOS: Final[Tuple[float, ...]] = (0.5, 0.25, 0.1, 0.05, 0.01)

# =============================================================================
# 法線・メッシュ
# =============================================================================

# 面法線として採用する外積長の下限
NORMAL_LENGTH_THRESHOLD: Final[float] = 1e-4

# 網羅的三角形化の上限
MAX_POINTS_FOR_MESH: Final[int] = 50000
MAX_TRIANGLES: Final[int] = 10000000
EXHAUSTIVE_MIN_AREA: Final[float] = 1e-4

# =============================================================================
# 地面抽出
# =============================================================================

DEFAULT_GROUND_HEIGHT_TOLERANCE: Final[float] = 0.1
DEFAULT_GROUND_DOWNSAMPLE_RATIO: Final[float] = 0.01
