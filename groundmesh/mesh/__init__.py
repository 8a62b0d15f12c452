"""
GroundMesh 地面メッシュ生成フェーズ

このパッケージは地面点群から、歩行可能面解析に渡す三角形メッシュを生成します。

処理フロー:
1. 重複除去 (sanitize.py)
2. 幾何条件整備 (conditioning.py)
3. ダウンサンプリング (downsample.py)
4. 座標正規化 (normalize.py)
5. Delaunay三角形分割 (delaunay.py, retry.py)
6. 法線計算 (attributes.py)
7. メッシュ組み立て (assembler.py)

網羅的三角形化 (exhaustive.py) は地面以外の任意の点群向けの低保証経路です。
"""

# 重複除去
from .sanitize import (
    PointSanitizer,
    sanitize_points,
    count_unique_positions
)

# 幾何条件整備
from .conditioning import (
    GeometryConditioner,
    ConditionedPoints
)

# ダウンサンプリング
from .downsample import (
    Downsampler,
    grid_downsample
)

# 座標正規化
from .normalize import (
    CoordinateNormalizer,
    NormalizedCoordinates,
    NormalizationTransform,
    normalize_coordinates
)

# Delaunay三角形分割
from .delaunay import (
    TriangulationAdapter,
    PrimitiveOutput,
    scipy_delaunay,
    validate_primitive_output,
    triangulate_points
)

# リトライ状態機械
from .retry import (
    RetryPhase,
    RetryState,
    initial_state,
    advance
)

# 法線
from .attributes import (
    NormalComputer,
    calculate_vertex_normals,
    calculate_face_normals
)

# 組み立て・パイプライン
from .assembler import MeshAssembler, orient_triangles_upward
from .pipeline import GroundMeshGenerator, generate_navigable_mesh, ensure_navigable

# 網羅的三角形化
from .exhaustive import (
    ExhaustiveTriangulator,
    stride_downsample,
    convert_point_cloud_to_mesh
)

__all__ = [
    # 重複除去
    'PointSanitizer',
    'sanitize_points',
    'count_unique_positions',

    # 幾何条件整備
    'GeometryConditioner',
    'ConditionedPoints',

    # ダウンサンプリング
    'Downsampler',
    'grid_downsample',

    # 正規化
    'CoordinateNormalizer',
    'NormalizedCoordinates',
    'NormalizationTransform',
    'normalize_coordinates',

    # 三角形分割
    'TriangulationAdapter',
    'PrimitiveOutput',
    'scipy_delaunay',
    'validate_primitive_output',
    'triangulate_points',

    # リトライ
    'RetryPhase',
    'RetryState',
    'initial_state',
    'advance',

    # 法線
    'NormalComputer',
    'calculate_vertex_normals',
    'calculate_face_normals',

    # 組み立て・パイプライン
    'MeshAssembler',
    'orient_triangles_upward',
    'GroundMeshGenerator',
    'generate_navigable_mesh',
    'ensure_navigable',

    # 網羅的三角形化
    'ExhaustiveTriangulator',
    'stride_downsample',
    'convert_point_cloud_to_mesh'
]
