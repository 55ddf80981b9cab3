"""efficiency-cockpit のカスタム例外定義

トラッキング・インデックス・インサイト生成で共通に使う例外クラス。
"""


class CockpitError(Exception):
    """efficiency-cockpit 基底例外"""

    pass


class ConfigurationError(CockpitError):
    """設定エラー"""

    pass


class StoreUnavailableError(CockpitError):
    """起動時にデータベースを開けない（致命的）"""

    pass


class StorageError(CockpitError):
    """通常運用中の書き込み失敗（ディスクフル等）"""

    pass


class ObserverUnavailableError(CockpitError):
    """フォアグラウンド監視が利用できない（権限拒否等）"""

    pass
