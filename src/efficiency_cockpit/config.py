"""
設定管理モジュール

YAML（config/config.yaml）を読み込み、セクションごとの dataclass に展開する。
関連クラス:
  - tracking.session_tracker.SessionTracker: tracking / privacy セクション
  - indexing.content_indexer.ContentIndexer: indexing セクション
  - insights.generator.InsightGenerator: insights セクション
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .exceptions import ConfigurationError
from .file_types import (
    CODE_EXTENSIONS,
    CONFIGURATION_EXTENSIONS,
    DOCUMENTATION_EXTENSIONS,
    LANGUAGE_BY_EXTENSION,
)


# 分類テーブルに載っている拡張子すべて
DEFAULT_INDEXABLE_EXTENSIONS = sorted(
    CODE_EXTENSIONS
    | DOCUMENTATION_EXTENSIONS
    | CONFIGURATION_EXTENSIONS
    | frozenset(LANGUAGE_BY_EXTENSION)
)

DEFAULT_SKIP_DIRECTORIES = [
    "node_modules", ".git", ".svn", ".hg", "build", "dist", "target",
    ".build", "DerivedData", "Pods", "vendor", "__pycache__", ".venv",
    "venv", "env", ".idea", ".vscode", ".cache", ".next", ".nuxt",
    "coverage", ".nyc_output", "tmp", "temp", "logs",
]


@dataclass
class DatabaseConfig:
    """データベース設定"""

    path: str = "data/cockpit.db"


@dataclass
class LogConfig:
    """ログ設定"""

    level: str = "INFO"
    file: Optional[str] = "logs/cockpit.log"


@dataclass
class TrackingConfig:
    """トラッキング・フォーカス解析設定"""

    min_dwell_seconds: float = 2.0
    focus_threshold_seconds: float = 900.0
    sampling_interval: float = 1.0
    stats_retention_days: int = 7
    batch_size: int = 10
    timeout_seconds: float = 3.0
    max_queue_size: int = 1000


@dataclass
class PrivacyConfig:
    """プライバシー設定"""

    store_raw_titles: bool = True
    exclude_bundle_ids: list[str] = field(default_factory=list)
    sensitive_keywords: list[str] = field(default_factory=list)


@dataclass
class IndexingConfig:
    """コンテンツインデックス設定"""

    project_paths: list[str] = field(default_factory=list)
    search_paths: list[str] = field(default_factory=list)
    discovery_max_depth: int = 3
    max_file_size: int = 1_000_000  # 1MB
    max_content_length: int = 100_000
    max_files_per_project: int = 10_000
    reindex_threshold_seconds: float = 86400.0
    scan_interval_seconds: int = 1800
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_INDEXABLE_EXTENSIONS))
    skip_directories: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_DIRECTORIES))


@dataclass
class InsightConfig:
    """インサイト生成設定（閾値はすべて調整可能）"""

    interval_seconds: int = 3600
    min_active_minutes: float = 30.0
    max_switches_per_hour: float = 20.0
    min_focus_sessions: int = 2
    trend_baseline_days: int = 7
    trend_change_ratio: float = 0.25
    min_project_files: int = 5
    ai_usage_ratio: float = 0.15
    recommendation_min_active_minutes: float = 120.0
    suppression_window_seconds: float = 3600.0


@dataclass
class SLOConfig:
    """SLO閾値"""

    event_latency_p95_ms: float = 1.0
    db_write_time_p95: float = 50.0
    max_memory_mb: float = 100.0
    max_retained_records: int = 1000


def _section(cls: type, data: Optional[Dict[str, Any]]) -> Any:
    """辞書から dataclass を生成（未知のキーは ConfigurationError）."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{cls.__name__} section must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown keys in {cls.__name__}: {sorted(unknown)}")
    return cls(**data)


@dataclass
class AppConfig:
    """アプリケーション設定クラス"""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    log: LogConfig = field(default_factory=LogConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    insights: InsightConfig = field(default_factory=InsightConfig)
    slo: SLOConfig = field(default_factory=SLOConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AppConfig":
        """
        辞書から設定を構築

        Args:
            data: YAMLを読み込んだ辞書（Noneは全デフォルト）

        Returns:
            AppConfig: 設定インスタンス
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Config root must be a mapping")

        config = cls(
            database=_section(DatabaseConfig, data.get("database")),
            log=_section(LogConfig, data.get("log")),
            tracking=_section(TrackingConfig, data.get("tracking")),
            privacy=_section(PrivacyConfig, data.get("privacy")),
            indexing=_section(IndexingConfig, data.get("indexing")),
            insights=_section(InsightConfig, data.get("insights")),
            slo=_section(SLOConfig, data.get("slo")),
        )

        env_path = os.getenv("COCKPIT_DB_PATH")
        if env_path:
            config.database.path = env_path

        if config.tracking.min_dwell_seconds < 0:
            raise ConfigurationError("tracking.min_dwell_seconds must be >= 0")
        if config.tracking.focus_threshold_seconds <= 0:
            raise ConfigurationError("tracking.focus_threshold_seconds must be > 0")

        return config

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "AppConfig":
        """YAMLファイルから設定を読み込む

        Args:
            config_path: 設定ファイルパス（省略時は config/config.yaml）

        Returns:
            AppConfig: 設定インスタンス
        """
        if config_path is None:
            config_path = Path("config") / "config.yaml"
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        return cls.from_dict(yaml_data)
