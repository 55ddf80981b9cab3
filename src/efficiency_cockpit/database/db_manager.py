"""
Database manager for efficiency-cockpit.

Design: Thread-local connections with WAL mode optimization.
トラッキング（イベント駆動）・インデックス（バックグラウンド）・インサイト（定期実行）
の3つの実行コンテキストから同時に使われるため、接続はスレッドごとに持つ。
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from ..exceptions import StorageError, StoreUnavailableError
from ..file_types import ContentFileType
from ..models import (
    Activity,
    ActivityType,
    AppSession,
    ContentIndex,
    InsightType,
    ProductivityInsight,
)
from .schema import CREATE_TABLES_SQL, get_pragma_settings


logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="microseconds") if value is not None else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value is not None else None


def escape_like(text: str) -> str:
    """LIKE 検索用にワイルドカード文字をエスケープ."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DatabaseManager:
    """
    SQLiteデータベース管理クラス.

    特徴:
    - WALモードで高頻度書き込みに最適化
    - スレッドローカル接続でスレッドセーフ
    - セッション削除時はアクティビティも同一トランザクションで削除
    - 書き込み失敗は StorageError として呼び出し元へ通知
    """

    def __init__(self, db_path: str = "data/cockpit.db") -> None:
        """
        初期化.

        Args:
            db_path: データベースファイルパス

        Raises:
            StoreUnavailableError: データベースを開けない場合
        """
        self.db_path = str(db_path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._init_database()

    def _init_database(self) -> None:
        """データベースの初期化とPRAGMA設定."""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            conn = sqlite3.connect(self.db_path)
            try:
                for pragma in get_pragma_settings():
                    conn.execute(pragma)
                conn.executescript(CREATE_TABLES_SQL)
                conn.commit()
            finally:
                conn.close()
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(
                f"Cannot open database at {self.db_path}: {e}"
            ) from e

        logger.info(f"Database initialized: {self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        スレッドローカル接続を取得.

        Returns:
            SQLite接続オブジェクト
        """
        if not hasattr(self._local, "conn"):
            conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=5.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            conn.execute("PRAGMA busy_timeout=5000;")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.conn

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """書き込みトランザクション。失敗時はロールバックして StorageError を送出."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"{operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}") from e
        except Exception:
            conn.rollback()
            raise

    # ------------------------------------------------------------------
    # app_sessions / activities
    # ------------------------------------------------------------------

    @staticmethod
    def _session_params(session: AppSession) -> tuple:
        return (
            session.id,
            session.app_bundle_id,
            session.app_name,
            _ts(session.start_time),
            _ts(session.end_time),
            session.total_duration,
            int(session.is_active),
        )

    @staticmethod
    def _activity_params(activity: Activity) -> tuple:
        return (
            activity.id,
            activity.session_id,
            _ts(activity.timestamp),
            activity.type.value,
            activity.app_bundle_id,
            activity.app_name,
            activity.window_title,
            activity.duration,
        )

    _UPSERT_SESSION_SQL = """
        INSERT INTO app_sessions
        (id, app_bundle_id, app_name, start_time, end_time, total_duration, is_active)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            end_time = excluded.end_time,
            total_duration = excluded.total_duration,
            is_active = excluded.is_active
    """

    _UPSERT_ACTIVITY_SQL = """
        INSERT INTO activities
        (id, session_id, timestamp, type, app_bundle_id, app_name, window_title, duration)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            window_title = excluded.window_title,
            duration = excluded.duration
    """

    def save_session(self, session: AppSession) -> None:
        """セッションを作成または更新."""
        with self._transaction("Save session") as conn:
            conn.execute(self._UPSERT_SESSION_SQL, self._session_params(session))

    def save_activity(self, activity: Activity) -> None:
        """アクティビティを作成または更新."""
        with self._transaction("Save activity") as conn:
            conn.execute(self._UPSERT_ACTIVITY_SQL, self._activity_params(activity))

    def bulk_write(self, records: Iterable[Any]) -> int:
        """
        セッション・アクティビティのバルク書き込み（1トランザクション）.

        Args:
            records: AppSession / Activity の列（記録順に適用）

        Returns:
            書き込んだ件数
        """
        count = 0
        with self._transaction("Bulk write") as conn:
            for record in records:
                if isinstance(record, AppSession):
                    conn.execute(self._UPSERT_SESSION_SQL, self._session_params(record))
                elif isinstance(record, Activity):
                    conn.execute(self._UPSERT_ACTIVITY_SQL, self._activity_params(record))
                else:
                    raise TypeError(f"Unsupported record type: {type(record).__name__}")
                count += 1
        logger.debug(f"Bulk wrote {count} records")
        return count

    def _row_to_session(self, row: sqlite3.Row, activity_ids: list[str]) -> AppSession:
        return AppSession(
            id=row["id"],
            app_bundle_id=row["app_bundle_id"],
            app_name=row["app_name"],
            start_time=_dt(row["start_time"]),
            end_time=_dt(row["end_time"]),
            total_duration=row["total_duration"],
            is_active=bool(row["is_active"]),
            activity_ids=activity_ids,
        )

    @staticmethod
    def _row_to_activity(row: sqlite3.Row) -> Activity:
        return Activity(
            id=row["id"],
            session_id=row["session_id"],
            timestamp=_dt(row["timestamp"]),
            type=ActivityType(row["type"]),
            app_bundle_id=row["app_bundle_id"],
            app_name=row["app_name"],
            window_title=row["window_title"],
            duration=row["duration"],
        )

    def _activity_ids(self, session_id: str) -> list[str]:
        rows = self._get_connection().execute(
            "SELECT id FROM activities WHERE session_id = ? ORDER BY timestamp",
            (session_id,),
        ).fetchall()
        return [row["id"] for row in rows]

    def get_session(self, session_id: str) -> Optional[AppSession]:
        row = self._get_connection().execute(
            "SELECT * FROM app_sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return self._row_to_session(row, self._activity_ids(session_id)) if row else None

    def get_active_sessions(self) -> list[AppSession]:
        rows = self._get_connection().execute(
            "SELECT * FROM app_sessions WHERE is_active = 1"
        ).fetchall()
        return [self._row_to_session(row, self._activity_ids(row["id"])) for row in rows]

    def get_sessions_between(self, start: datetime, end: datetime) -> list[AppSession]:
        """
        期間と重なるセッションを取得.

        Args:
            start: 期間開始
            end: 期間終了

        Returns:
            開始時刻順のセッション（activity_ids は含まない）
        """
        rows = self._get_connection().execute(
            """
            SELECT * FROM app_sessions
            WHERE start_time < ? AND (end_time IS NULL OR end_time > ?)
            ORDER BY start_time
            """,
            (_ts(end), _ts(start)),
        ).fetchall()
        return [self._row_to_session(row, []) for row in rows]

    def daily_app_usage(self, day: date, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        """
        アプリ別の日次利用時間.

        セッションは対象日の 0:00〜24:00 に切り詰めて数える。開いている
        セッションは now が与えられたときだけ now までを数える。

        Args:
            day: 対象日
            now: 現在時刻（開いているセッションの終端）

        Returns:
            app_bundle_id / app_name / total_seconds / session_count の辞書
            （利用時間の降順）
        """
        day_start = datetime.combine(day, time.min)
        day_end = day_start + timedelta(days=1)

        usage: dict[str, dict[str, Any]] = {}
        for session in self.get_sessions_between(day_start, day_end):
            end = session.end_time if session.end_time is not None else now
            if end is None:
                continue
            seconds = (min(end, day_end) - max(session.start_time, day_start)).total_seconds()
            if seconds <= 0:
                continue
            row = usage.setdefault(
                session.app_bundle_id,
                {
                    "app_bundle_id": session.app_bundle_id,
                    "app_name": session.app_name,
                    "total_seconds": 0.0,
                    "session_count": 0,
                },
            )
            row["total_seconds"] += seconds
            row["session_count"] += 1

        return sorted(usage.values(), key=lambda r: r["total_seconds"], reverse=True)

    def delete_session(self, session_id: str) -> bool:
        """
        セッションと所有アクティビティを同一トランザクションで削除.

        Returns:
            セッションが存在して削除された場合True
        """
        with self._transaction("Delete session") as conn:
            conn.execute("DELETE FROM activities WHERE session_id = ?", (session_id,))
            cursor = conn.execute("DELETE FROM app_sessions WHERE id = ?", (session_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Deleted session {session_id} with its activities")
        return deleted

    def close_dangling_sessions(self) -> int:
        """
        前回の異常終了で開いたまま残ったセッションを閉じる.

        終了時刻は最後のアクティビティ時刻（なければ開始時刻）とする。

        Returns:
            閉じたセッション数
        """
        closed = 0
        for session in self.get_active_sessions():
            row = self._get_connection().execute(
                "SELECT MAX(timestamp) AS last_ts FROM activities WHERE session_id = ?",
                (session.id,),
            ).fetchone()
            last_ts = _dt(row["last_ts"]) if row and row["last_ts"] else session.start_time
            session.end(last_ts)
            self.save_session(session)
            closed += 1
        if closed:
            logger.warning(f"Closed {closed} dangling session(s) from a previous run")
        return closed

    def get_activities_for_session(self, session_id: str) -> list[Activity]:
        rows = self._get_connection().execute(
            "SELECT * FROM activities WHERE session_id = ? ORDER BY timestamp",
            (session_id,),
        ).fetchall()
        return [self._row_to_activity(row) for row in rows]

    def get_activities_between(self, start: datetime, end: datetime) -> list[Activity]:
        rows = self._get_connection().execute(
            """
            SELECT * FROM activities
            WHERE timestamp >= ? AND timestamp < ?
            ORDER BY timestamp
            """,
            (_ts(start), _ts(end)),
        ).fetchall()
        return [self._row_to_activity(row) for row in rows]

    # ------------------------------------------------------------------
    # content_index
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_index(row: sqlite3.Row) -> ContentIndex:
        return ContentIndex(
            id=row["id"],
            file_path=row["file_path"],
            project_path=row["project_path"],
            relative_path=row["relative_path"],
            file_name=row["file_name"],
            file_extension=row["file_extension"],
            content=row["content"],
            content_hash=row["content_hash"],
            line_count=row["line_count"],
            file_type=ContentFileType(row["file_type"]),
            language=row["language"],
            last_modified=_dt(row["last_modified"]),
            last_indexed=_dt(row["last_indexed"]),
            is_stale=bool(row["is_stale"]),
            indexing_failed=bool(row["indexing_failed"]),
            failure_reason=row["failure_reason"],
        )

    def get_content_index(self, file_path: str) -> Optional[ContentIndex]:
        row = self._get_connection().execute(
            "SELECT * FROM content_index WHERE file_path = ?", (file_path,)
        ).fetchone()
        return self._row_to_index(row) if row else None

    def upsert_content_index(self, entry: ContentIndex) -> None:
        """
        インデックスエントリを書き込み（同一パスは既存行を更新し id を維持）.

        Args:
            entry: インデックスエントリ
        """
        with self._transaction("Upsert content index") as conn:
            conn.execute(
                """
                INSERT INTO content_index
                (id, file_path, project_path, relative_path, file_name, file_extension,
                 content, content_hash, line_count, file_type, language,
                 last_modified, last_indexed, is_stale, indexing_failed, failure_reason)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    project_path = excluded.project_path,
                    relative_path = excluded.relative_path,
                    file_name = excluded.file_name,
                    file_extension = excluded.file_extension,
                    content = excluded.content,
                    content_hash = excluded.content_hash,
                    line_count = excluded.line_count,
                    file_type = excluded.file_type,
                    language = excluded.language,
                    last_modified = excluded.last_modified,
                    last_indexed = excluded.last_indexed,
                    is_stale = excluded.is_stale,
                    indexing_failed = excluded.indexing_failed,
                    failure_reason = excluded.failure_reason
                """,
                (
                    entry.id,
                    entry.file_path,
                    entry.project_path,
                    entry.relative_path,
                    entry.file_name,
                    entry.file_extension,
                    entry.content,
                    entry.content_hash,
                    entry.line_count,
                    entry.file_type.value,
                    entry.language,
                    _ts(entry.last_modified),
                    _ts(entry.last_indexed),
                    int(entry.is_stale),
                    int(entry.indexing_failed),
                    entry.failure_reason,
                ),
            )

    def delete_content_index(self, file_path: str) -> bool:
        with self._transaction("Delete content index") as conn:
            cursor = conn.execute("DELETE FROM content_index WHERE file_path = ?", (file_path,))
            return cursor.rowcount > 0

    def mark_project_stale(self, project_path: str) -> int:
        """プロジェクト配下のエントリを stale にする。更新件数を返す."""
        with self._transaction("Mark project stale") as conn:
            cursor = conn.execute(
                "UPDATE content_index SET is_stale = 1 WHERE project_path = ?",
                (project_path,),
            )
            return cursor.rowcount

    def list_content_index(self, project_path: Optional[str] = None) -> list[ContentIndex]:
        if project_path is None:
            rows = self._get_connection().execute(
                "SELECT * FROM content_index ORDER BY file_path"
            ).fetchall()
        else:
            rows = self._get_connection().execute(
                "SELECT * FROM content_index WHERE project_path = ? ORDER BY file_path",
                (project_path,),
            ).fetchall()
        return [self._row_to_index(row) for row in rows]

    def search_content(
        self, query: str, limit: int = 50, project_path: Optional[str] = None
    ) -> list[ContentIndex]:
        """
        内容・ファイル名の部分一致検索.

        Args:
            query: 検索文字列
            limit: 最大件数
            project_path: プロジェクトで絞り込む場合に指定

        Returns:
            一致したエントリ（最終インデックス日時の新しい順）
        """
        pattern = f"%{escape_like(query)}%"
        sql = """
            SELECT * FROM content_index
            WHERE (content LIKE ? ESCAPE '\\' OR file_name LIKE ? ESCAPE '\\')
        """
        params: list[Any] = [pattern, pattern]
        if project_path is not None:
            sql += " AND project_path = ?"
            params.append(project_path)
        sql += " ORDER BY last_indexed DESC LIMIT ?"
        params.append(limit)

        rows = self._get_connection().execute(sql, params).fetchall()
        return [self._row_to_index(row) for row in rows]

    def content_index_totals(self) -> dict[str, Any]:
        """件数・プロジェクト数・内容サイズの合計と最終インデックス日時を1クエリで取得."""
        row = self._get_connection().execute(
            """
            SELECT COUNT(*) AS total_files,
                   COUNT(DISTINCT project_path) AS total_projects,
                   COALESCE(SUM(LENGTH(content)), 0) AS total_size,
                   MAX(last_indexed) AS last_indexed
            FROM content_index
            """
        ).fetchone()
        return {
            "total_files": row["total_files"],
            "total_projects": row["total_projects"],
            "total_size": row["total_size"],
            "last_indexed": _dt(row["last_indexed"]),
        }

    def count_index_updates_by_project(self, since: datetime) -> dict[str, int]:
        """期間内に（再）インデックスされたファイル数をプロジェクトごとに集計."""
        rows = self._get_connection().execute(
            """
            SELECT project_path, COUNT(*) AS updated
            FROM content_index
            WHERE last_indexed >= ? AND indexing_failed = 0
            GROUP BY project_path
            ORDER BY updated DESC
            """,
            (_ts(since),),
        ).fetchall()
        return {row["project_path"]: row["updated"] for row in rows}

    # ------------------------------------------------------------------
    # productivity_insights
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_insight(row: sqlite3.Row) -> ProductivityInsight:
        return ProductivityInsight(
            id=row["id"],
            generated_at=_dt(row["generated_at"]),
            type=InsightType(row["type"]),
            title=row["title"],
            content=row["content"],
            period_start=_dt(row["period_start"]),
            period_end=_dt(row["period_end"]),
            is_read=bool(row["is_read"]),
            is_dismissed=bool(row["is_dismissed"]),
        )

    def insert_insight(self, insight: ProductivityInsight) -> None:
        with self._transaction("Insert insight") as conn:
            conn.execute(
                """
                INSERT INTO productivity_insights
                (id, generated_at, type, title, content, period_start, period_end,
                 is_read, is_dismissed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    insight.id,
                    _ts(insight.generated_at),
                    insight.type.value,
                    insight.title,
                    insight.content,
                    _ts(insight.period_start),
                    _ts(insight.period_end),
                    int(insight.is_read),
                    int(insight.is_dismissed),
                ),
            )

    def get_insight(self, insight_id: str) -> Optional[ProductivityInsight]:
        row = self._get_connection().execute(
            "SELECT * FROM productivity_insights WHERE id = ?", (insight_id,)
        ).fetchone()
        return self._row_to_insight(row) if row else None

    def list_insights(
        self, include_dismissed: bool = False, limit: int = 50
    ) -> list[ProductivityInsight]:
        sql = "SELECT * FROM productivity_insights"
        if not include_dismissed:
            sql += " WHERE is_dismissed = 0"
        sql += " ORDER BY generated_at DESC LIMIT ?"
        rows = self._get_connection().execute(sql, (limit,)).fetchall()
        return [self._row_to_insight(row) for row in rows]

    def find_insights(
        self, insight_type: InsightType, since: datetime
    ) -> list[ProductivityInsight]:
        """指定種別で、生成日時または期間終了が since 以降のインサイト（重複判定用）."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM productivity_insights
            WHERE type = ? AND (generated_at >= ? OR period_end >= ?)
            """,
            (insight_type.value, _ts(since), _ts(since)),
        ).fetchall()
        return [self._row_to_insight(row) for row in rows]

    def set_insight_flags(
        self,
        insight_id: str,
        *,
        is_read: Optional[bool] = None,
        is_dismissed: Optional[bool] = None,
    ) -> bool:
        """既読・非表示フラグを更新（プレゼンテーション層からの操作）."""
        fields: list[str] = []
        params: list[object] = []
        if is_read is not None:
            fields.append("is_read = ?")
            params.append(int(is_read))
        if is_dismissed is not None:
            fields.append("is_dismissed = ?")
            params.append(int(is_dismissed))
        if not fields:
            return self.get_insight(insight_id) is not None

        params.append(insight_id)
        with self._transaction("Update insight flags") as conn:
            cursor = conn.execute(
                f"UPDATE productivity_insights SET {', '.join(fields)} WHERE id = ?", params
            )
            return cursor.rowcount > 0

    def close(self) -> None:
        """全スレッドのデータベース接続をクローズ."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        if hasattr(self._local, "conn"):
            delattr(self._local, "conn")
