"""
efficiency-cockpit: ローカルで動く生産性トラッカー

- tracking: フォアグラウンドアプリのセッション記録とコンテキストスイッチ解析
- indexing: プロジェクトファイルの変更検出付きインデックス
- insights: 定期的なインサイト生成
"""

from .config import AppConfig
from .database import DatabaseManager
from .exceptions import (
    CockpitError,
    ConfigurationError,
    ObserverUnavailableError,
    StorageError,
    StoreUnavailableError,
)

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "CockpitError",
    "ConfigurationError",
    "DatabaseManager",
    "ObserverUnavailableError",
    "StorageError",
    "StoreUnavailableError",
]
