"""
SQLite database schema for efficiency-cockpit.

Design: セッション → アクティビティの所有関係、ファイルパス単位で一意なコンテンツ
インデックス、インサイト。時刻は ISO-8601 文字列（ローカル時刻）で保存する。
"""

CREATE_TABLES_SQL = """
-- ========================================
-- app_sessions: アプリ単位のフォーカスセッション
-- ========================================
CREATE TABLE IF NOT EXISTS app_sessions (
    id TEXT PRIMARY KEY,
    app_bundle_id TEXT NOT NULL,
    app_name TEXT NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT,
    total_duration REAL NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    CHECK (end_time IS NULL OR end_time >= start_time)
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON app_sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_sessions_app ON app_sessions(app_bundle_id);
-- 開いているセッションは常に1件まで
CREATE UNIQUE INDEX IF NOT EXISTS idx_sessions_single_active
    ON app_sessions(is_active) WHERE is_active = 1;

-- ========================================
-- activities: セッション内のサブイベント
-- ========================================
CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    session_id TEXT,
    timestamp TEXT NOT NULL,
    type TEXT NOT NULL,
    app_bundle_id TEXT,
    app_name TEXT,
    window_title TEXT,
    duration REAL,
    FOREIGN KEY(session_id) REFERENCES app_sessions(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_activities_session ON activities(session_id);
CREATE INDEX IF NOT EXISTS idx_activities_time ON activities(timestamp);

-- ========================================
-- content_index: ファイル内容のインデックス
-- ========================================
CREATE TABLE IF NOT EXISTS content_index (
    id TEXT PRIMARY KEY,
    file_path TEXT NOT NULL UNIQUE,
    project_path TEXT NOT NULL,
    relative_path TEXT NOT NULL,
    file_name TEXT NOT NULL,
    file_extension TEXT NOT NULL,
    content TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    line_count INTEGER NOT NULL,
    file_type TEXT NOT NULL,
    language TEXT,
    last_modified TEXT NOT NULL,
    last_indexed TEXT NOT NULL,
    is_stale INTEGER NOT NULL DEFAULT 0,
    indexing_failed INTEGER NOT NULL DEFAULT 0,
    failure_reason TEXT
);

CREATE INDEX IF NOT EXISTS idx_content_project ON content_index(project_path);
CREATE INDEX IF NOT EXISTS idx_content_indexed ON content_index(last_indexed);

-- ========================================
-- productivity_insights: 生成済みインサイト
-- ========================================
CREATE TABLE IF NOT EXISTS productivity_insights (
    id TEXT PRIMARY KEY,
    generated_at TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    period_start TEXT,
    period_end TEXT,
    is_read INTEGER NOT NULL DEFAULT 0,
    is_dismissed INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_insights_type ON productivity_insights(type, period_start);
CREATE INDEX IF NOT EXISTS idx_insights_generated ON productivity_insights(generated_at);

"""


def get_pragma_settings() -> list[str]:
    """
    WALモード用のPRAGMA設定を取得.

    Returns:
        PRAGMA設定のSQLリスト
    """
    return [
        "PRAGMA journal_mode=WAL;",
        "PRAGMA synchronous=NORMAL;",
        "PRAGMA temp_store=MEMORY;",
        "PRAGMA cache_size=-20000;",  # 約20MB
        "PRAGMA busy_timeout=5000;",  # 5秒
    ]
