"""CLIビューア・コレクターのテスト"""

from datetime import datetime, timedelta

import pytest

from conftest import make_event
from efficiency_cockpit import cli_viewer, main_collector
from efficiency_cockpit.config import AppConfig
from efficiency_cockpit.database.db_manager import DatabaseManager
from efficiency_cockpit.models import AppSession, InsightType, ProductivityInsight
from efficiency_cockpit.tracking.observer import PushObserver


DAY = datetime(2025, 1, 15)


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """設定ファイルとDBパスを用意して作業ディレクトリを移す"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("COCKPIT_DB_PATH", raising=False)
    project = tmp_path / "proj"
    project.mkdir()
    (project / "main.py").write_text("def handler():\n    return 'needle'\n")

    db_path = tmp_path / "cockpit.db"
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"database:\n  path: {db_path}\n"
        f"log:\n  file: null\n"
        f"indexing:\n  project_paths:\n    - {project}\n",
        encoding="utf-8",
    )
    return {"db": str(db_path), "config": str(config_path), "project": project}


def _seed_sessions(db_path):
    db = DatabaseManager(db_path)
    for bundle, hour, minutes in (("com.apple.Safari", 9, 30), ("com.apple.dt.Xcode", 10, 90)):
        session = AppSession(app_bundle_id=bundle, app_name=bundle, start_time=DAY.replace(hour=hour))
        session.end(session.start_time + timedelta(minutes=minutes))
        db.save_session(session)
    db.close()


class TestViewer:
    def test_missing_database(self, workspace, capsys):
        assert cli_viewer.main(["--config", workspace["config"], "summary"]) == 1
        assert "Database not found" in capsys.readouterr().out

    def test_summary(self, workspace, capsys):
        _seed_sessions(workspace["db"])

        code = cli_viewer.main(["--config", workspace["config"], "summary", "--date", "2025-01-15"])

        out = capsys.readouterr().out
        assert code == 0
        assert "com.apple.dt.Xcode" in out
        assert "02:00:00" in out

    def test_summary_splits_session_at_midnight(self, workspace, capsys):
        db = DatabaseManager(workspace["db"])
        late = AppSession(
            app_bundle_id="com.apple.Terminal",
            app_name="com.apple.Terminal",
            start_time=DAY.replace(hour=23, minute=30),
        )
        late.end(late.start_time + timedelta(hours=1))
        db.save_session(late)
        db.close()

        cli_viewer.main(["--config", workspace["config"], "summary", "--date", "2025-01-16"])

        out = capsys.readouterr().out
        assert "com.apple.Terminal" in out
        assert "00:30:00" in out
        assert "01:00:00" not in out

    def test_sessions(self, workspace, capsys):
        _seed_sessions(workspace["db"])

        cli_viewer.main(["--config", workspace["config"], "sessions", "--date", "2025-01-15"])

        out = capsys.readouterr().out
        assert "09:00:00" in out
        assert "1h 30m" in out

    def test_index_scan_then_search(self, workspace, capsys):
        assert cli_viewer.main(["--config", workspace["config"], "index", "--scan"]) == 0
        assert "Indexed 1" in capsys.readouterr().out

        cli_viewer.main(["--config", workspace["config"], "search", "needle"])
        out = capsys.readouterr().out
        assert "proj/main.py" in out
        assert "Python" in out

    def test_insights_read_and_dismiss(self, workspace, capsys):
        db = DatabaseManager(workspace["db"])
        insight = ProductivityInsight(
            type=InsightType.RECOMMENDATION,
            title="Block time for deep work",
            content="...",
            generated_at=DAY,
        )
        db.insert_insight(insight)
        db.close()

        cli_viewer.main(["--config", workspace["config"], "insights", "--read", insight.id])
        assert "Block time for deep work" in capsys.readouterr().out

        cli_viewer.main(["--config", workspace["config"], "insights", "--dismiss", insight.id])
        assert "No insights yet" in capsys.readouterr().out

        cli_viewer.main(["--config", workspace["config"], "insights", "--all"])
        assert insight.id in capsys.readouterr().out

    def test_invalid_config(self, workspace, capsys):
        with open(workspace["config"], "a", encoding="utf-8") as f:
            f.write("tracking:\n  unknown_key: 1\n")

        assert cli_viewer.main(["--config", workspace["config"], "summary"]) == 1
        assert "unknown_key" in capsys.readouterr().out


class TestCollector:
    def test_missing_config_returns_error(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert main_collector.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_collector_lifecycle(self, db_manager, clock, t0):
        observer = PushObserver()
        collector = main_collector.Collector(
            AppConfig.from_dict({}),
            db_manager,
            observer=observer,
            clock=clock,
            enable_indexing=False,
            enable_insights=False,
        )

        collector.start()
        try:
            observer.emit(make_event("com.apple.Safari", t0))
            clock.advance(30)
            observer.emit(make_event("com.google.Chrome", clock.now))

            result = collector.check_health()
            assert "violations" in result
            assert collector.tracker.daily_stats().context_switch_count == 1
        finally:
            collector.stop()

        assert collector.tracker.is_tracking is False
        assert all(not runner.is_running for runner in collector.runners)
        assert db_manager.get_active_sessions() == []
