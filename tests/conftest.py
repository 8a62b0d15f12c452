#!/usr/bin/env python3
"""
pytest共通設定とフィクスチャ

テスト実行時の共通設定、点群生成器、パフォーマンス計測を提供します。
"""

import pytest
import logging
import os
import sys
import numpy as np
from typing import Optional
from dataclasses import dataclass

# groundmesh のパス追加
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from groundmesh import setup_logging, get_logger

# =============================================================================
# テストロギング設定
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """テスト全体のロギング設定"""
    setup_logging(level="DEBUG")
    logger = get_logger("test")
    logger.info("=== テストセッション開始 ===")
    yield
    logger.info("=== テストセッション終了 ===")


@pytest.fixture
def test_logger():
    """テスト用ロガー"""
    return get_logger("test")


# =============================================================================
# パフォーマンス計測
# =============================================================================

@dataclass
class PerformanceMeasurement:
    """パフォーマンス計測結果"""
    execution_time_ms: float
    memory_usage_mb: float
    operations_per_second: Optional[float] = None
    target_met: bool = False

    def log_results(self, logger: logging.Logger, test_name: str, target_ms: float = None):
        """結果をログ出力"""
        logger.info(f"=== {test_name} パフォーマンス結果 ===")
        logger.info(f"実行時間: {self.execution_time_ms:.3f}ms")
        logger.info(f"メモリ使用量: {self.memory_usage_mb:.2f}MB")
        if self.operations_per_second:
            logger.info(f"処理速度: {self.operations_per_second:.1f} points/sec")
        if target_ms:
            self.target_met = self.execution_time_ms <= target_ms
            status = "✓ 達成" if self.target_met else "✗ 未達成"
            logger.info(f"目標時間: {target_ms}ms {status}")


@pytest.fixture
def performance_tracker():
    """パフォーマンス計測ユーティリティ"""
    import time
    import psutil
    import gc

    class PerformanceTracker:
        def __init__(self):
            self.start_time = None
            self.start_memory = None

        def start(self):
            """計測開始"""
            gc.collect()
            self.start_time = time.perf_counter()
            self.start_memory = psutil.Process().memory_info().rss / 1024 / 1024

        def stop(self, operations_count: int = None) -> PerformanceMeasurement:
            """計測終了"""
            end_time = time.perf_counter()
            end_memory = psutil.Process().memory_info().rss / 1024 / 1024

            execution_time_ms = (end_time - self.start_time) * 1000
            memory_usage_mb = end_memory - self.start_memory

            ops_per_sec = None
            if operations_count and execution_time_ms > 0:
                ops_per_sec = operations_count / (execution_time_ms / 1000)

            return PerformanceMeasurement(
                execution_time_ms=execution_time_ms,
                memory_usage_mb=memory_usage_mb,
                operations_per_second=ops_per_sec
            )

    return PerformanceTracker()


# =============================================================================
# テストスイート選択
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """テスト収集時の自動マーカー付与"""
    for item in items:
        if "performance" in item.nodeid:
            item.add_marker(pytest.mark.performance)
            item.add_marker(pytest.mark.slow)
        elif "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# テストデータ生成
# =============================================================================

def make_positions(xyz) -> np.ndarray:
    """(N, 3) 座標をフラットな float32 位置バッファに変換"""
    return np.asarray(xyz, dtype=np.float32).reshape(-1)


@pytest.fixture
def point_cloud_data():
    """地面点群データ生成器（シード固定）"""
    def generate(kind: str = "uniform", n: int = 1000, seed: int = 42, extent: float = 1.0) -> np.ndarray:
        rng = np.random.default_rng(seed)
        if kind == "uniform":
            x = rng.uniform(0, extent, n)
            z = rng.uniform(0, extent, n)
            y = rng.normal(0, 0.01 * extent, n)
        elif kind == "grid":
            side = int(np.ceil(np.sqrt(n)))
            gx, gz = np.meshgrid(np.linspace(0, extent, side), np.linspace(0, extent, side))
            x = gx.reshape(-1)[:n]
            z = gz.reshape(-1)[:n]
            y = np.zeros(n)
        elif kind == "line":
            x = np.linspace(0, extent, n)
            z = np.zeros(n)
            y = np.zeros(n)
        elif kind == "identical":
            x = np.full(n, 0.5 * extent)
            z = np.full(n, 0.5 * extent)
            y = np.zeros(n)
        else:
            raise ValueError(f"Unknown point cloud kind: {kind}")
        return np.column_stack([x, y, z])

    return generate


@pytest.fixture
def unit_square_positions() -> np.ndarray:
    """単位正方形の4隅"""
    return make_positions([
        [0.0, 0.0, 0.0],
        [1.0, 0.0, 0.0],
        [1.0, 0.0, 1.0],
        [0.0, 0.0, 1.0],
    ])
