"""InsightGenerator のテスト"""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from efficiency_cockpit.config import InsightConfig
from efficiency_cockpit.exceptions import StorageError
from efficiency_cockpit.insights.generator import (
    InsightGenerator,
    periods_overlap,
    usage_between,
)
from efficiency_cockpit.models import (
    Activity,
    ActivityType,
    AppSession,
    ContentIndex,
    DailyStats,
    InsightType,
    ProductivityInsight,
)


NOW = datetime(2025, 1, 15, 12, 0)
DAY_START = datetime(2025, 1, 15)


def _stats(active_minutes=0.0, focus=0, switches=0, day=NOW.date()):
    stats = DailyStats(date=day)
    if active_minutes:
        stats.add_usage("com.apple.dt.Xcode", active_minutes * 60)
    stats.focus_session_count = focus
    stats.context_switch_count = switches
    return stats


def _generator(db_manager, stats=None, **config):
    provider = (lambda day: stats) if stats is not None else None
    return InsightGenerator(
        db_manager, InsightConfig(**config), stats_provider=provider, clock=lambda: NOW
    )


def _closed_session(db_manager, bundle_id, start, minutes):
    session = AppSession(app_bundle_id=bundle_id, app_name=bundle_id, start_time=start)
    session.end(start + timedelta(minutes=minutes))
    db_manager.save_session(session)
    return session


def _types(insights):
    return [i.type for i in insights]


class TestRules:
    """各ルールの閾値"""

    def test_focus_pattern(self, db_manager):
        created = _generator(db_manager, _stats(active_minutes=10, focus=2)).generate()
        assert _types(created) == [InsightType.FOCUS_PATTERN]
        assert "com.apple.dt.Xcode" in created[0].content
        assert created[0].period_start == DAY_START
        assert created[0].period_end == NOW

    def test_focus_pattern_below_threshold(self, db_manager):
        assert _generator(db_manager, _stats(active_minutes=10, focus=1)).generate() == []

    @pytest.mark.parametrize(
        "switches,active_minutes,expected",
        [
            (21, 60, True),
            (20, 60, False),
            (40, 20, False),
        ],
    )
    def test_context_switch_warning(self, db_manager, switches, active_minutes, expected):
        stats = _stats(active_minutes=active_minutes, focus=1, switches=switches)
        created = _generator(db_manager, stats).generate()
        assert (InsightType.CONTEXT_SWITCH_WARNING in _types(created)) is expected

    def test_recommendation_without_focus(self, db_manager):
        created = _generator(db_manager, _stats(active_minutes=121)).generate()
        assert _types(created) == [InsightType.RECOMMENDATION]

    def test_no_recommendation_with_focus(self, db_manager):
        created = _generator(db_manager, _stats(active_minutes=121, focus=1)).generate()
        assert InsightType.RECOMMENDATION not in _types(created)

    def test_ai_usage_pattern(self, db_manager):
        session = _closed_session(db_manager, "com.google.Chrome", DAY_START + timedelta(hours=9), 30)
        activity = Activity(
            type=ActivityType.AI_TOOL_USE,
            timestamp=session.start_time,
            session_id=session.id,
            window_title="ChatGPT",
            duration=600.0,
        )
        db_manager.save_activity(activity)

        created = _generator(db_manager, _stats(active_minutes=60, focus=1)).generate()

        (insight,) = [i for i in created if i.type is InsightType.AI_USAGE_PATTERN]
        assert "17%" in insight.title

    def test_ai_usage_below_ratio(self, db_manager):
        session = _closed_session(db_manager, "com.google.Chrome", DAY_START + timedelta(hours=9), 30)
        db_manager.save_activity(
            Activity(
                type=ActivityType.AI_TOOL_USE,
                timestamp=session.start_time,
                session_id=session.id,
                duration=60.0,
            )
        )
        created = _generator(db_manager, _stats(active_minutes=60, focus=1)).generate()
        assert InsightType.AI_USAGE_PATTERN not in _types(created)

    def test_project_progress(self, db_manager):
        for i in range(5):
            db_manager.upsert_content_index(
                ContentIndex.create(
                    file_path=f"/work/app/src/file{i}.py",
                    project_path="/work/app",
                    content="x = 1\n",
                    content_hash=str(i),
                    last_modified=NOW,
                    indexed_at=NOW - timedelta(hours=1),
                )
            )

        created = _generator(db_manager, _stats()).generate()

        (insight,) = created
        assert insight.type is InsightType.PROJECT_PROGRESS
        assert "app (5 files)" in insight.content

    def test_productivity_trend(self, db_manager):
        yesterday = DAY_START - timedelta(days=1)
        _closed_session(db_manager, "a", yesterday + timedelta(hours=9), 240)
        _closed_session(db_manager, "a", yesterday - timedelta(days=1, hours=-9), 120)
        _closed_session(db_manager, "a", yesterday - timedelta(days=2, hours=-9), 120)

        created = _generator(db_manager, _stats()).generate()

        (insight,) = created
        assert insight.type is InsightType.PRODUCTIVITY_TREND
        assert insight.title == "Active time up 100%"
        assert insight.period_start == yesterday
        assert insight.period_end == DAY_START

    def test_trend_needs_baseline(self, db_manager):
        _closed_session(db_manager, "a", DAY_START - timedelta(hours=15), 240)
        assert _generator(db_manager, _stats()).generate() == []

    def test_zero_activity_generates_nothing(self, db_manager):
        assert _generator(db_manager, _stats()).generate() == []


class TestSuppression:
    """重複抑制"""

    def test_same_period_is_not_regenerated(self, db_manager):
        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        assert len(generator.generate()) == 1
        assert generator.generate(NOW + timedelta(hours=1)) == []

    def test_dismissed_and_read_still_suppress(self, db_manager):
        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        (first,) = generator.generate()
        generator.dismiss(first.id)
        generator.mark_read(first.id)

        assert generator.generate(NOW + timedelta(minutes=30)) == []

    def test_next_day_generates_again(self, db_manager):
        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        generator.generate()

        created = generator.generate(NOW + timedelta(days=1))
        assert _types(created) == [InsightType.FOCUS_PATTERN]

    def test_insight_without_period_uses_window(self, db_manager):
        recent = ProductivityInsight(
            type=InsightType.FOCUS_PATTERN,
            title="manual",
            content="",
            generated_at=NOW - timedelta(minutes=30),
        )
        db_manager.insert_insight(recent)

        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        assert generator.generate() == []

    def test_old_insight_without_period_does_not_suppress(self, db_manager):
        old = ProductivityInsight(
            type=InsightType.FOCUS_PATTERN,
            title="manual",
            content="",
            generated_at=DAY_START - timedelta(minutes=30),
        )
        db_manager.insert_insight(old)

        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        assert _types(generator.generate()) == [InsightType.FOCUS_PATTERN]


class TestStatsFallback:
    """stats_provider なしの集計"""

    def test_stats_from_stored_sessions(self, db_manager):
        _closed_session(db_manager, "a", DAY_START + timedelta(hours=8), 60)
        _closed_session(db_manager, "b", DAY_START + timedelta(hours=9), 90)
        _closed_session(db_manager, "a", DAY_START + timedelta(hours=10, minutes=30), 30)

        created = _generator(db_manager).generate()

        (insight,) = created
        assert insight.type is InsightType.RECOMMENDATION
        assert "3h 0m" in insight.content


class TestManagement:
    """既読・非表示・一覧"""

    def test_mark_read_and_dismiss(self, db_manager):
        generator = _generator(db_manager, _stats(active_minutes=10, focus=2))
        (insight,) = generator.generate()

        assert generator.mark_read(insight.id) is True
        assert db_manager.get_insight(insight.id).is_read is True

        assert generator.dismiss(insight.id) is True
        assert generator.list_insights() == []
        assert [i.id for i in generator.list_insights(include_dismissed=True)] == [insight.id]

    def test_unknown_id(self, db_manager):
        generator = _generator(db_manager)
        assert generator.mark_read("missing") is False
        assert generator.dismiss("missing") is False

    def test_write_failure_propagates(self, db_manager):
        spy = MagicMock(wraps=db_manager)
        spy.insert_insight.side_effect = StorageError("locked")
        generator = _generator(spy, _stats(active_minutes=10, focus=2))

        with pytest.raises(StorageError):
            generator.generate()


class TestHelpers:
    def test_periods_overlap(self):
        a = (datetime(2025, 1, 1, 9), datetime(2025, 1, 1, 10))
        assert periods_overlap(a, (datetime(2025, 1, 1, 9, 30), datetime(2025, 1, 1, 11)))
        assert not periods_overlap(a, (datetime(2025, 1, 1, 10), datetime(2025, 1, 1, 11)))

    def test_usage_between_clips_sessions(self):
        start = datetime(2025, 1, 15)
        end = start + timedelta(days=1)
        spanning = AppSession(app_bundle_id="a", app_name="a", start_time=start - timedelta(hours=1))
        spanning.end(start + timedelta(hours=1))
        open_session = AppSession(app_bundle_id="b", app_name="b", start_time=end - timedelta(hours=2))

        usage = usage_between([spanning, open_session], start, end)

        assert usage == {"a": 3600.0, "b": 7200.0}
