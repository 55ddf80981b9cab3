"""
Content indexer for efficiency-cockpit.

プロジェクト配下のコード・ドキュメントを読み込み、SHA-256 で変更を検出して
検索用インデックスを更新する。
"""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from ..config import IndexingConfig
from ..database.db_manager import DatabaseManager
from ..models import ContentIndex, file_extension
from ..utils.privacy import content_fingerprint
from .filesystem import FileInfo, LocalFileSystem, discover_projects


logger = logging.getLogger(__name__)


class IndexOutcome(str, Enum):
    """ファイル1件の処理結果"""

    INDEXED = "indexed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
    REMOVED = "removed"


@dataclass
class ScanResult:
    """スキャン1回分の集計"""

    indexed: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    removed: int = 0

    def add(self, outcome: IndexOutcome) -> None:
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    def merge(self, other: "ScanResult") -> None:
        for f in dataclasses.fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    @property
    def written(self) -> int:
        return self.indexed + self.failed


@dataclass
class ContentIndexStats:
    """インデックス全体の統計"""

    total_files: int = 0
    total_projects: int = 0
    total_size: int = 0
    last_indexed: Optional[datetime] = None

    @property
    def formatted_size(self) -> str:
        size = float(self.total_size)
        for unit in ("bytes", "KB", "MB"):
            if size < 1000:
                return f"{size:.0f} {unit}" if unit == "bytes" else f"{size:.1f} {unit}"
            size /= 1000
        return f"{size:.1f} GB"


class ContentIndexer:
    """
    コンテンツインデクサー

    変更判定:
        既存エントリのハッシュが一致し、再インデックス不要で、失敗記録もなければ
        書き込まない。それ以外は内容を読み直して上書きする（id は維持）。
    除外:
        extensions にない拡張子（空なら絞らない）、max_file_size を超えるファイル、
        バイナリ（NUL を含むか UTF-8 として読めない）はエントリも失敗記録も作らない。
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[IndexingConfig] = None,
        file_system: Optional[LocalFileSystem] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Args:
            db_manager: データベースマネージャー
            config: インデックス設定
            file_system: walk / stat / read_bytes を持つオブジェクト
            clock: 現在時刻を返す関数
        """
        self.db = db_manager
        self.config = config or IndexingConfig()
        self.fs = file_system or LocalFileSystem(self.config.skip_directories)
        self._clock = clock
        self._extensions = frozenset(ext.lower().lstrip(".") for ext in self.config.extensions)
        self._scan_lock = threading.Lock()

        self.last_index_time: Optional[datetime] = None
        self.current_project: Optional[str] = None

    @property
    def is_indexing(self) -> bool:
        return self._scan_lock.locked()

    def project_roots(self) -> List[str]:
        """設定されたプロジェクトと、検索パスから見つかった git リポジトリ"""
        roots = [os.path.expanduser(p).rstrip("/") or "/" for p in self.config.project_paths]
        if self.config.search_paths:
            roots.extend(
                discover_projects(
                    self.config.search_paths,
                    self.config.discovery_max_depth,
                    self.config.skip_directories,
                )
            )
        return list(dict.fromkeys(roots))

    def scan_all(self) -> ScanResult:
        """
        全プロジェクトをスキャン

        別のスキャンが実行中の場合は何もせず空の結果を返す。
        """
        if not self._scan_lock.acquire(blocking=False):
            logger.info("Indexing already in progress, skipping")
            return ScanResult()
        try:
            result = ScanResult()
            for root in self.project_roots():
                result.merge(self._scan_project(root))
            self.last_index_time = self._clock()
            logger.info(
                f"Indexing finished: {result.indexed} indexed, {result.unchanged} unchanged, "
                f"{result.skipped} skipped, {result.failed} failed"
            )
            return result
        finally:
            self._scan_lock.release()

    def scan_project(self, project_path: str) -> ScanResult:
        """プロジェクト1件をスキャン"""
        if not self._scan_lock.acquire(blocking=False):
            logger.info("Indexing already in progress, skipping")
            return ScanResult()
        try:
            result = self._scan_project(project_path)
            self.last_index_time = self._clock()
            return result
        finally:
            self._scan_lock.release()

    def update_file(self, file_path: str, project_path: Optional[str] = None) -> IndexOutcome:
        """
        ファイル1件をインクリメンタルに更新

        ファイルが存在しなくなっていればエントリを削除する。

        Args:
            file_path: 対象ファイル
            project_path: 所属プロジェクト（省略時は既存エントリか設定から推定）

        Returns:
            処理結果
        """
        info = self.fs.stat(file_path)
        if info is None:
            if self.db.delete_content_index(file_path):
                logger.info(f"Removed index entry for deleted file: {file_path}")
                return IndexOutcome.REMOVED
            return IndexOutcome.SKIPPED

        if project_path is None:
            project_path = self._infer_project(file_path)
        return self._index_file(info, project_path)

    def mark_project_stale(self, project_path: str) -> int:
        """プロジェクトの全エントリを次回スキャンで再インデックスさせる"""
        count = self.db.mark_project_stale(project_path)
        logger.info(f"Marked {count} entries stale in {project_path}")
        return count

    def get_stats(self) -> ContentIndexStats:
        totals = self.db.content_index_totals()
        return ContentIndexStats(**totals)

    def search(
        self, query: str, limit: int = 50, project_path: Optional[str] = None
    ) -> List[ContentIndex]:
        """内容・ファイル名の部分一致検索（空のクエリは空の結果）"""
        if not query.strip():
            return []
        return self.db.search_content(query, limit=limit, project_path=project_path)

    # ------------------------------------------------------------------

    def _scan_project(self, project_path: str) -> ScanResult:
        self.current_project = os.path.basename(project_path.rstrip("/"))
        result = ScanResult()
        try:
            for info in self.fs.walk(project_path):
                if result.written >= self.config.max_files_per_project:
                    logger.warning(
                        f"File limit {self.config.max_files_per_project} reached in {project_path}"
                    )
                    break
                result.add(self._index_file(info, project_path))
        finally:
            self.current_project = None

        logger.debug(f"Scanned {project_path}: {result}")
        return result

    def _index_file(self, info: FileInfo, project_path: str) -> IndexOutcome:
        ext = file_extension(os.path.basename(info.path)).lower()
        if self._extensions and ext not in self._extensions:
            return IndexOutcome.SKIPPED
        if info.size > self.config.max_file_size:
            return IndexOutcome.SKIPPED

        existing = self.db.get_content_index(info.path)
        now = self._clock()

        try:
            data = self.fs.read_bytes(info.path)
        except OSError as e:
            logger.warning(f"Failed to read {info.path}: {e}")
            self._record_failure(info, project_path, existing, now, f"Read error: {e}")
            return IndexOutcome.FAILED

        if len(data) > self.config.max_file_size or b"\x00" in data:
            return IndexOutcome.SKIPPED
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return IndexOutcome.SKIPPED

        content_hash = content_fingerprint(data)
        if (
            existing is not None
            and existing.content_hash == content_hash
            and not existing.needs_reindex(now, self.config.reindex_threshold_seconds)
            and not existing.indexing_failed
        ):
            return IndexOutcome.UNCHANGED

        entry = ContentIndex.create(
            file_path=info.path,
            project_path=project_path,
            content=text[: self.config.max_content_length],
            content_hash=content_hash,
            last_modified=info.modified_time,
            indexed_at=now,
        )
        if existing is not None:
            entry.id = existing.id
        self.db.upsert_content_index(entry)
        return IndexOutcome.INDEXED

    def _record_failure(
        self,
        info: FileInfo,
        project_path: str,
        existing: Optional[ContentIndex],
        now: datetime,
        reason: str,
    ) -> None:
        if existing is not None:
            entry = dataclasses.replace(
                existing, indexing_failed=True, failure_reason=reason, last_indexed=now
            )
        else:
            entry = ContentIndex.create(
                file_path=info.path,
                project_path=project_path,
                content="",
                content_hash="",
                last_modified=info.modified_time,
                indexed_at=now,
            )
            entry.indexing_failed = True
            entry.failure_reason = reason
        self.db.upsert_content_index(entry)

    def _infer_project(self, file_path: str) -> str:
        existing = self.db.get_content_index(file_path)
        if existing is not None:
            return existing.project_path
        for root in sorted(self.project_roots(), key=len, reverse=True):
            if file_path.startswith(root.rstrip("/") + "/"):
                return root
        return os.path.dirname(file_path)
