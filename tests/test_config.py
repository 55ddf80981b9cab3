"""設定読み込みのテスト"""

from pathlib import Path

import pytest

from efficiency_cockpit.config import DEFAULT_INDEXABLE_EXTENSIONS, AppConfig
from efficiency_cockpit.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _no_env_override(monkeypatch):
    monkeypatch.delenv("COCKPIT_DB_PATH", raising=False)


class TestFromDict:
    def test_defaults(self):
        config = AppConfig.from_dict(None)

        assert config.database.path == "data/cockpit.db"
        assert config.tracking.min_dwell_seconds == 2.0
        assert config.tracking.focus_threshold_seconds == 900.0
        assert config.privacy.store_raw_titles is True
        assert config.indexing.extensions == DEFAULT_INDEXABLE_EXTENSIONS
        assert "swift" in config.indexing.extensions
        assert "node_modules" in config.indexing.skip_directories
        assert config.insights.suppression_window_seconds == 3600.0

    def test_partial_sections(self):
        config = AppConfig.from_dict(
            {
                "tracking": {"focus_threshold_seconds": 600},
                "privacy": {"exclude_bundle_ids": ["com.1password.1password"]},
            }
        )

        assert config.tracking.focus_threshold_seconds == 600
        assert config.tracking.min_dwell_seconds == 2.0
        assert config.privacy.exclude_bundle_ids == ["com.1password.1password"]

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="focus_treshold"):
            AppConfig.from_dict({"tracking": {"focus_treshold": 10}})

    @pytest.mark.parametrize("data", [["a", "b"], {"database": "cockpit.db"}])
    def test_non_mapping(self, data):
        with pytest.raises(ConfigurationError):
            AppConfig.from_dict(data)

    @pytest.mark.parametrize(
        "tracking",
        [{"min_dwell_seconds": -1}, {"focus_threshold_seconds": 0}],
    )
    def test_invalid_thresholds(self, tracking):
        with pytest.raises(ConfigurationError):
            AppConfig.from_dict({"tracking": tracking})

    def test_env_overrides_db_path(self, monkeypatch):
        monkeypatch.setenv("COCKPIT_DB_PATH", "/tmp/other.db")
        config = AppConfig.from_dict({"database": {"path": "data/cockpit.db"}})
        assert config.database.path == "/tmp/other.db"


class TestFromYaml:
    def test_load_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "database:\n"
            "  path: data/test.db\n"
            "insights:\n"
            "  min_focus_sessions: 3\n",
            encoding="utf-8",
        )

        config = AppConfig.from_yaml(path)

        assert config.database.path == "data/test.db"
        assert config.insights.min_focus_sessions == 3

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert AppConfig.from_yaml(path).database.path == "data/cockpit.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            AppConfig.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("tracking: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            AppConfig.from_yaml(path)

    def test_sample_config_is_valid(self):
        sample = Path(__file__).resolve().parent.parent / "config" / "config.yaml"
        config = AppConfig.from_yaml(sample)
        assert config.tracking.focus_threshold_seconds > 0
