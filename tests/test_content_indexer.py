"""ContentIndexer のテスト"""

import hashlib
from unittest.mock import MagicMock

import pytest

from efficiency_cockpit.config import IndexingConfig
from efficiency_cockpit.file_types import ContentFileType
from efficiency_cockpit.indexing.content_indexer import ContentIndexer, IndexOutcome
from efficiency_cockpit.indexing.filesystem import FileInfo, LocalFileSystem, discover_projects


@pytest.fixture
def project(tmp_path):
    """小さなプロジェクトツリー"""
    root = tmp_path / "proj"
    (root / "src").mkdir(parents=True)
    (root / "src" / "App.swift").write_text("import SwiftUI\n\nstruct App {}\n")
    (root / "README.md").write_text("# Proj\n")
    (root / "config.yaml").write_text("key: value\n")
    return root


@pytest.fixture
def spy_db(db_manager):
    return MagicMock(wraps=db_manager)


def _indexer(db, clock, **overrides):
    return ContentIndexer(db, IndexingConfig(**overrides), clock=clock)


class TestScan:
    """スキャンと分類"""

    def test_indexes_eligible_files(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock)

        result = indexer.scan_project(str(project))

        assert result.indexed == 3
        entry = db_manager.get_content_index(str(project / "src" / "App.swift"))
        assert entry.relative_path == "src/App.swift"
        assert entry.file_type is ContentFileType.CODE
        assert entry.language == "Swift"
        assert entry.line_count == 4
        assert entry.project_name == "proj"
        assert entry.content_hash == hashlib.sha256(
            (project / "src" / "App.swift").read_bytes()
        ).hexdigest()
        assert entry.last_indexed == clock.now

        readme = db_manager.get_content_index(str(project / "README.md"))
        assert readme.file_type is ContentFileType.DOCUMENTATION

    def test_unchanged_file_is_not_rewritten(self, spy_db, clock, project):
        indexer = _indexer(spy_db, clock)
        indexer.scan_project(str(project))
        writes = spy_db.upsert_content_index.call_count

        clock.advance(3600)
        result = indexer.scan_project(str(project))

        assert result.unchanged == 3
        assert result.indexed == 0
        assert spy_db.upsert_content_index.call_count == writes

    def test_changed_file_is_reindexed_with_same_id(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock)
        indexer.scan_project(str(project))
        path = project / "README.md"
        original = db_manager.get_content_index(str(path))

        path.write_text("# Proj\n\nMore text\n")
        clock.advance(60)
        result = indexer.scan_project(str(project))

        assert result.indexed == 1
        updated = db_manager.get_content_index(str(path))
        assert updated.id == original.id
        assert "More text" in updated.content
        assert updated.line_count == 4
        assert updated.last_indexed == clock.now

    def test_elapsed_threshold_forces_reindex(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock)
        indexer.scan_project(str(project))

        clock.advance(25 * 3600)
        result = indexer.scan_project(str(project))

        assert result.indexed == 3
        entry = db_manager.get_content_index(str(project / "README.md"))
        assert entry.last_indexed == clock.now

    def test_stale_project_is_reindexed(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock)
        indexer.scan_project(str(project))

        assert indexer.mark_project_stale(str(project)) == 3
        clock.advance(60)
        result = indexer.scan_project(str(project))

        assert result.indexed == 3
        assert all(not e.is_stale for e in db_manager.list_content_index(str(project)))

    def test_content_is_truncated(self, db_manager, clock, project):
        (project / "long.txt").write_text("x" * 50)
        indexer = _indexer(db_manager, clock, max_content_length=10)

        indexer.scan_project(str(project))

        entry = db_manager.get_content_index(str(project / "long.txt"))
        assert entry.content == "x" * 10
        assert entry.content_length == 10

    def test_file_limit_per_project(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock, max_files_per_project=2)

        result = indexer.scan_project(str(project))

        assert result.indexed == 2
        assert len(db_manager.list_content_index()) == 2


class TestExclusions:
    """除外ポリシー"""

    def test_binary_and_oversized_files_leave_no_record(self, db_manager, clock, project):
        (project / "data.json").write_bytes(b"{\x00\x01}")
        (project / "latin1.txt").write_bytes("caf\xe9".encode("latin-1"))
        (project / "big.md").write_text("a" * 200)
        indexer = _indexer(db_manager, clock, max_file_size=100)

        result = indexer.scan_project(str(project))

        assert result.skipped == 3
        assert result.failed == 0
        for name in ("data.json", "latin1.txt", "big.md"):
            assert db_manager.get_content_index(str(project / name)) is None

    def test_unknown_extension_is_skipped(self, db_manager, clock, project):
        (project / "notes.xyz").write_text("hello")
        indexer = _indexer(db_manager, clock)

        indexer.scan_project(str(project))

        assert db_manager.get_content_index(str(project / "notes.xyz")) is None

    def test_skip_directories_and_hidden_entries(self, db_manager, clock, project):
        (project / "node_modules").mkdir()
        (project / "node_modules" / "lib.js").write_text("x")
        (project / ".secret").mkdir()
        (project / ".secret" / "key.txt").write_text("x")
        (project / ".env").write_text("TOKEN=1")
        indexer = _indexer(db_manager, clock)

        result = indexer.scan_project(str(project))

        assert result.indexed == 3
        paths = {e.relative_path for e in db_manager.list_content_index()}
        assert paths == {"src/App.swift", "README.md", "config.yaml"}


class TestFailures:
    """読み込み失敗の記録"""

    def _fs(self, clock, files, contents):
        fs = MagicMock(spec=LocalFileSystem)
        fs.walk.return_value = [FileInfo(path, 10, clock.now) for path in files]

        def read_bytes(path):
            value = contents[path]
            if isinstance(value, Exception):
                raise value
            return value

        fs.read_bytes.side_effect = read_bytes
        return fs

    def test_read_error_is_recorded_and_scan_continues(self, db_manager, clock):
        fs = self._fs(
            clock,
            ["/p/proj/a.py", "/p/proj/b.py"],
            {"/p/proj/a.py": PermissionError("denied"), "/p/proj/b.py": b"print(1)\n"},
        )
        indexer = ContentIndexer(db_manager, IndexingConfig(), file_system=fs, clock=clock)

        result = indexer.scan_project("/p/proj")

        assert result.failed == 1
        assert result.indexed == 1
        failed = db_manager.get_content_index("/p/proj/a.py")
        assert failed.indexing_failed is True
        assert "denied" in failed.failure_reason
        assert db_manager.get_content_index("/p/proj/b.py").indexing_failed is False

    def test_failure_keeps_previous_content(self, db_manager, clock):
        contents = {"/p/proj/a.py": b"old = 1\n"}
        fs = self._fs(clock, ["/p/proj/a.py"], contents)
        indexer = ContentIndexer(db_manager, IndexingConfig(), file_system=fs, clock=clock)
        indexer.scan_project("/p/proj")

        contents["/p/proj/a.py"] = OSError("I/O error")
        indexer.scan_project("/p/proj")

        entry = db_manager.get_content_index("/p/proj/a.py")
        assert entry.indexing_failed is True
        assert entry.content == "old = 1\n"
        assert indexer.search("old")[0].file_path == "/p/proj/a.py"

    def test_failed_entry_is_retried_and_cleared(self, db_manager, clock):
        contents = {"/p/proj/a.py": OSError("busy")}
        fs = self._fs(clock, ["/p/proj/a.py"], contents)
        indexer = ContentIndexer(db_manager, IndexingConfig(), file_system=fs, clock=clock)
        indexer.scan_project("/p/proj")

        contents["/p/proj/a.py"] = b"ok = True\n"
        result = indexer.scan_project("/p/proj")

        assert result.indexed == 1
        entry = db_manager.get_content_index("/p/proj/a.py")
        assert entry.indexing_failed is False
        assert entry.failure_reason is None


class TestIncremental:
    """インクリメンタル更新・検索・統計"""

    def test_update_file(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock, project_paths=[str(project)])
        new_file = project / "src" / "util.py"
        new_file.write_text("def helper():\n    pass\n")

        assert indexer.update_file(str(new_file)) is IndexOutcome.INDEXED
        entry = db_manager.get_content_index(str(new_file))
        assert entry.project_path == str(project)
        assert entry.relative_path == "src/util.py"

        new_file.unlink()
        assert indexer.update_file(str(new_file)) is IndexOutcome.REMOVED
        assert db_manager.get_content_index(str(new_file)) is None

    def test_search_and_stats(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock, project_paths=[str(project)])
        indexer.scan_all()

        assert [e.file_name for e in indexer.search("SwiftUI")] == ["App.swift"]
        assert indexer.search("   ") == []

        stats = indexer.get_stats()
        assert stats.total_files == 3
        assert stats.total_projects == 1
        assert stats.last_indexed == clock.now
        assert stats.formatted_size.endswith("bytes")

    def test_concurrent_scan_is_skipped(self, db_manager, clock, project):
        indexer = _indexer(db_manager, clock, project_paths=[str(project)])
        indexer._scan_lock.acquire()
        try:
            assert indexer.is_indexing is True
            result = indexer.scan_all()
        finally:
            indexer._scan_lock.release()

        assert result.indexed == 0
        assert db_manager.list_content_index() == []


def test_discover_projects(tmp_path):
    (tmp_path / "a" / ".git").mkdir(parents=True)
    (tmp_path / "a" / "nested" / ".git").mkdir(parents=True)
    (tmp_path / "group" / "b" / ".git").mkdir(parents=True)
    (tmp_path / "node_modules" / "c" / ".git").mkdir(parents=True)
    (tmp_path / "deep" / "x" / "y" / "z" / ".git").mkdir(parents=True)

    found = discover_projects([str(tmp_path)], max_depth=3, skip_directories=["node_modules"])

    assert found == [str(tmp_path / "a"), str(tmp_path / "group" / "b")]
