#!/usr/bin/env python3
"""
GroundMesh 設定管理システム

メッシュ生成パイプラインで使用される閾値・上限値を統一管理し、
YAMLファイルからの読み込み・保存を提供します。
"""

import logging
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Optional, Dict, Any, Tuple

import yaml

from groundmesh import get_logger, setup_logging
from groundmesh.constants import (
    POINT_TOLERANCE,
    MAX_POINTS_FOR_TRIANGULATION,
    NEAR_COLLINEAR_TOLERANCE,
    COLLINEAR_FRACTION,
    MIN_BOUNDING_BOX_AREA,
    MIN_POINT_SPREAD_RATIO,
    MIN_DIVERSITY_RATIO,
    PROGRESSIVE_RATIOS,
    COLLINEARITY_OFFSET_FACTOR,
    PERTURBATION_FACTOR,
    NORMAL_LENGTH_THRESHOLD,
    MAX_POINTS_FOR_MESH,
    MAX_TRIANGLES,
    EXHAUSTIVE_MIN_AREA,
    DEFAULT_GROUND_HEIGHT_TOLERANCE,
    DEFAULT_GROUND_DOWNSAMPLE_RATIO,
)

logger = get_logger(__name__)


@dataclass
class MeshingConfig:
    """地面メッシュ生成（Delaunay経路）設定"""
    # 重複判定
    point_tolerance: float = POINT_TOLERANCE

    # ダウンサンプリング
    max_points_for_triangulation: int = MAX_POINTS_FOR_TRIANGULATION
    progressive_ratios: Tuple[float, ...] = PROGRESSIVE_RATIOS

    # 共線判定・補正
    near_collinear_tolerance: float = NEAR_COLLINEAR_TOLERANCE
    collinear_fraction: float = COLLINEAR_FRACTION
    collinearity_offset_factor: float = COLLINEARITY_OFFSET_FACTOR

    # 幾何健全性
    min_bounding_box_area: float = MIN_BOUNDING_BOX_AREA
    min_point_spread_ratio: float = MIN_POINT_SPREAD_RATIO
    min_diversity_ratio: float = MIN_DIVERSITY_RATIO
    perturbation_factor: float = PERTURBATION_FACTOR

    # 法線・出力
    normal_length_threshold: float = NORMAL_LENGTH_THRESHOLD
    orient_upward: bool = True


@dataclass
class ExhaustiveConfig:
    """網羅的三角形化（低保証経路）設定"""
    max_points_for_mesh: int = MAX_POINTS_FOR_MESH
    max_triangles: int = MAX_TRIANGLES
    min_area: float = EXHAUSTIVE_MIN_AREA


@dataclass
class GroundConfig:
    """地面点抽出設定"""
    ground_height_tolerance: float = DEFAULT_GROUND_HEIGHT_TOLERANCE
    downsample_ratio: float = DEFAULT_GROUND_DOWNSAMPLE_RATIO


@dataclass
class GroundMeshConfig:
    """プロジェクト全体設定"""
    meshing: MeshingConfig = field(default_factory=MeshingConfig)
    exhaustive: ExhaustiveConfig = field(default_factory=ExhaustiveConfig)
    ground: GroundConfig = field(default_factory=GroundConfig)

    # ログ設定
    log_level: str = "INFO"
    log_format_style: str = "detailed"


_SECTIONS = ("meshing", "exhaustive", "ground")


class ConfigManager:
    """設定管理クラス"""

    def __init__(self):
        self._config: Optional[GroundMeshConfig] = None
        self._config_file_path: Optional[Path] = None

    def load_config(self, config_file: Optional[Path] = None) -> GroundMeshConfig:
        """
        設定ファイルを読み込み

        Args:
            config_file: 設定ファイルパス（Noneの場合はデフォルトパスを探索）

        Returns:
            読み込まれた設定
        """
        if config_file is None:
            project_root = Path(__file__).parent.parent
            default_paths = [
                project_root / "groundmesh.yaml",
                project_root / "config.yaml",
                Path.home() / ".groundmesh" / "config.yaml"
            ]

            for path in default_paths:
                if path.exists():
                    config_file = path
                    break

        if config_file and Path(config_file).exists():
            config_file = Path(config_file)
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    config_dict = yaml.safe_load(f) or {}

                self._config = self._dict_to_config(config_dict)
                self._config_file_path = config_file
                logger.info(f"Configuration loaded from {config_file}")

            except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
                logger.warning(f"Failed to load config from {config_file}: {e}")
                logger.info("Using default configuration")
                self._config = GroundMeshConfig()
        else:
            logger.info("No config file found, using default configuration")
            self._config = GroundMeshConfig()

        return self._config

    def save_config(self, config_file: Optional[Path] = None) -> bool:
        """
        設定をファイルに保存

        Args:
            config_file: 保存先ファイルパス

        Returns:
            保存成功したかどうか
        """
        if self._config is None:
            logger.error("No configuration to save")
            return False

        if config_file is None:
            config_file = self._config_file_path or Path("groundmesh.yaml")
        config_file = Path(config_file)

        try:
            config_dict = self._config_to_dict(self._config)
            config_file.parent.mkdir(parents=True, exist_ok=True)

            with open(config_file, 'w', encoding='utf-8') as f:
                yaml.dump(config_dict, f, default_flow_style=False,
                         allow_unicode=True, indent=2)

            logger.info(f"Configuration saved to {config_file}")
            return True

        except OSError as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False

    def get_config(self) -> GroundMeshConfig:
        """現在の設定を取得"""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> GroundMeshConfig:
        """辞書を設定オブジェクトに変換"""
        if not isinstance(config_dict, dict):
            raise TypeError(f"Config root must be a mapping, got {type(config_dict).__name__}")

        config = GroundMeshConfig()

        for section_name in _SECTIONS:
            section_dict = config_dict.get(section_name)
            if not isinstance(section_dict, dict):
                continue
            section = getattr(config, section_name)
            known = {f.name for f in fields(section)}
            for key, value in section_dict.items():
                if key not in known:
                    logger.warning(f"Unknown config key ignored: {section_name}.{key}")
                    continue
                if key == "progressive_ratios":
                    value = tuple(float(v) for v in value)
                setattr(section, key, value)

        for key in ("log_level", "log_format_style"):
            if key in config_dict:
                setattr(config, key, str(config_dict[key]))

        return config

    def _config_to_dict(self, config: GroundMeshConfig) -> Dict[str, Any]:
        """設定オブジェクトを辞書に変換"""
        config_dict = asdict(config)
        # YAMLにタプルタグを残さない
        config_dict['meshing']['progressive_ratios'] = list(config.meshing.progressive_ratios)
        return config_dict


# グローバル設定マネージャー
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """グローバル設定マネージャーを取得"""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def get_config() -> GroundMeshConfig:
    """現在の設定を取得"""
    return get_config_manager().get_config()

def load_config(config_file: Optional[Path] = None) -> GroundMeshConfig:
    """設定を読み込み"""
    return get_config_manager().load_config(config_file)

def save_config(config_file: Optional[Path] = None) -> bool:
    """設定を保存"""
    return get_config_manager().save_config(config_file)

def apply_logging_config(config: Optional[GroundMeshConfig] = None) -> logging.Logger:
    """
    設定のログレベル・フォーマットでロギングを初期化

    Args:
        config: 全体設定（Noneならグローバル設定）

    Returns:
        設定済みルートロガー
    """
    config = config or get_config()
    return setup_logging(level=config.log_level, format_style=config.log_format_style)
