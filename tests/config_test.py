#!/usr/bin/env python3
"""
設定管理のテスト
"""

import importlib
import logging

import pytest

import groundmesh
import groundmesh.config as config_module
from groundmesh import setup_logging
from groundmesh.config import (
    ConfigManager,
    GroundMeshConfig,
    MeshingConfig,
    apply_logging_config,
    get_config_manager,
)
from groundmesh.constants import MAX_POINTS_FOR_TRIANGULATION, PROGRESSIVE_RATIOS


@pytest.fixture
def manager():
    return ConfigManager()


def test_defaults_match_constants():
    config = GroundMeshConfig()
    assert config.meshing.max_points_for_triangulation == MAX_POINTS_FOR_TRIANGULATION
    assert config.meshing.progressive_ratios == PROGRESSIVE_RATIOS
    assert config.exhaustive.max_points_for_mesh == 50000
    assert config.ground.downsample_ratio == 0.01
    assert config.log_level == "INFO"


def test_missing_file_uses_defaults(manager, tmp_path):
    config = manager.load_config(tmp_path / "missing.yaml")
    assert config == GroundMeshConfig()


def test_save_without_config_fails(manager, tmp_path):
    assert manager.save_config(tmp_path / "out.yaml") is False


def test_save_and_reload(manager, tmp_path):
    config = manager.load_config(tmp_path / "missing.yaml")
    config.meshing.max_points_for_triangulation = 2000
    config.meshing.progressive_ratios = (0.5, 0.2)
    config.log_level = "DEBUG"

    path = tmp_path / "nested" / "groundmesh.yaml"
    assert manager.save_config(path) is True
    assert "!!python/tuple" not in path.read_text(encoding="utf-8")

    reloaded = ConfigManager().load_config(path)
    assert reloaded.meshing.max_points_for_triangulation == 2000
    assert reloaded.meshing.progressive_ratios == (0.5, 0.2)
    assert reloaded.log_level == "DEBUG"
    assert reloaded == config


def test_partial_file_and_unknown_keys(manager, tmp_path):
    path = tmp_path / "partial.yaml"
    path.write_text(
        "meshing:\n"
        "  point_tolerance: 0.001\n"
        "  no_such_option: 3\n"
        "ground:\n"
        "  ground_height_tolerance: 0.5\n",
        encoding="utf-8",
    )
    config = manager.load_config(path)

    assert config.meshing.point_tolerance == 0.001
    assert not hasattr(config.meshing, "no_such_option")
    assert config.ground.ground_height_tolerance == 0.5
    assert config.exhaustive == GroundMeshConfig().exhaustive


@pytest.mark.parametrize("content", ["meshing: [unclosed", "- 1\n- 2\n"])
def test_invalid_file_falls_back_to_defaults(manager, tmp_path, content):
    path = tmp_path / "broken.yaml"
    path.write_text(content, encoding="utf-8")

    assert manager.load_config(path) == GroundMeshConfig()


def test_get_config_caches(manager, tmp_path):
    manager.load_config(tmp_path / "missing.yaml")
    assert manager.get_config() is manager.get_config()


def test_global_manager_is_shared():
    assert get_config_manager() is get_config_manager()


def test_meshing_config_is_standalone():
    config = MeshingConfig(progressive_ratios=())
    assert config.progressive_ratios == ()
    assert config.orient_upward is True


def test_logging_config_applied():
    config = GroundMeshConfig(log_level="WARNING", log_format_style="simple")
    try:
        root = apply_logging_config(config)
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
    finally:
        setup_logging(level="DEBUG")


def test_ensure_default_logging_reads_config_once(monkeypatch):
    monkeypatch.setattr(config_module, "get_config", lambda: GroundMeshConfig(log_level="ERROR"))
    monkeypatch.setattr(groundmesh, "_default_logger_initialized", False)
    try:
        groundmesh.ensure_default_logging()
        assert logging.getLogger().level == logging.ERROR

        monkeypatch.setattr(config_module, "get_config", lambda: GroundMeshConfig(log_level="INFO"))
        groundmesh.ensure_default_logging()
        assert logging.getLogger().level == logging.ERROR
    finally:
        setup_logging(level="DEBUG")


def test_import_leaves_host_logging_alone():
    """パッケージ読み込みはルートロガーのハンドラー・レベルを変更しない"""
    root = logging.getLogger()
    host_handler = logging.NullHandler()
    root.addHandler(host_handler)
    level = root.level
    try:
        importlib.reload(groundmesh)
        assert host_handler in root.handlers
        assert root.level == level
        assert any(
            isinstance(h, logging.NullHandler) for h in logging.getLogger("groundmesh").handlers
        )
    finally:
        root.removeHandler(host_handler)
