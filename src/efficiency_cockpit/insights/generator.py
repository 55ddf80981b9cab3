"""
Insight generator for efficiency-cockpit.

ストアに蓄積されたセッション・アクティビティ・インデックス更新と日次集計から
6種類のインサイトを生成する。閾値はすべて InsightConfig で調整できる。

重複抑制:
    同じ種別で期間が重なるインサイトが既にあれば、既読・非表示に関係なく
    書き込まない。期間を持たないインサイトは
    [generated_at - suppression_window_seconds, generated_at] を期間とみなす。

関連:
- tracking.session_tracker.SessionTracker.daily_stats: stats_provider の実装
- database.db_manager.DatabaseManager: 読み込みは1回ずつの有限クエリ
"""

from __future__ import annotations

import logging
import os
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..config import InsightConfig
from ..database.db_manager import DatabaseManager
from ..models import ActivityType, AppSession, DailyStats, InsightType, ProductivityInsight
from ..utils.timeutil import format_duration, start_of_day


logger = logging.getLogger(__name__)

StatsProvider = Callable[[date], DailyStats]
Period = Tuple[datetime, datetime]


def usage_between(sessions: List[AppSession], start: datetime, end: datetime) -> Dict[str, float]:
    """
    期間内に切り詰めたアプリ別利用秒数

    開いているセッションは end まで続いているとみなす。
    """
    usage: Dict[str, float] = {}
    for session in sessions:
        session_end = session.end_time or end
        overlap = (min(session_end, end) - max(session.start_time, start)).total_seconds()
        if overlap > 0:
            usage[session.app_bundle_id] = usage.get(session.app_bundle_id, 0.0) + overlap
    return usage


def periods_overlap(a: Period, b: Period) -> bool:
    return a[0] < b[1] and b[0] < a[1]


class InsightGenerator:
    """インサイト生成器"""

    def __init__(
        self,
        db_manager: DatabaseManager,
        config: Optional[InsightConfig] = None,
        stats_provider: Optional[StatsProvider] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        初期化

        Args:
            db_manager: データベースマネージャー
            config: 閾値設定
            stats_provider: 日付 → DailyStats（省略時はストアのセッションから集計）
            clock: 現在時刻を返す関数（テスト用にDI可能）
        """
        self.db = db_manager
        self.config = config or InsightConfig()
        self.stats_provider = stats_provider
        self._clock = clock

    def generate(self, now: Optional[datetime] = None) -> List[ProductivityInsight]:
        """
        インサイトを評価して新規分を書き込む

        Args:
            now: 評価時刻（省略時は clock()）

        Returns:
            書き込んだインサイト

        Raises:
            StorageError: 書き込みに失敗した場合
        """
        now = now or self._clock()
        day_start = start_of_day(now)
        today: Period = (day_start, now)

        sessions = self.db.get_sessions_between(day_start, now)
        stats = self._daily_stats(now.date(), sessions, day_start, now)

        candidates = [
            self._focus_pattern(stats, today, now),
            self._context_switch_warning(stats, today, now),
            self._productivity_trend(now),
            self._project_progress(today, now),
            self._ai_usage_pattern(stats, today, now),
            self._recommendation(stats, today, now),
        ]

        created: List[ProductivityInsight] = []
        for insight in candidates:
            if insight is None:
                continue
            if self._is_suppressed(insight):
                logger.debug(f"Suppressed {insight.type.value} insight")
                continue
            self.db.insert_insight(insight)
            created.append(insight)
            logger.info(f"Generated insight: [{insight.type.value}] {insight.title}")

        return created

    def list_insights(
        self, include_dismissed: bool = False, limit: int = 50
    ) -> List[ProductivityInsight]:
        return self.db.list_insights(include_dismissed=include_dismissed, limit=limit)

    def mark_read(self, insight_id: str) -> bool:
        return self.db.set_insight_flags(insight_id, is_read=True)

    def dismiss(self, insight_id: str) -> bool:
        return self.db.set_insight_flags(insight_id, is_dismissed=True)

    # ------------------------------------------------------------------
    # 集計
    # ------------------------------------------------------------------

    def _daily_stats(
        self, day: date, sessions: List[AppSession], start: datetime, end: datetime
    ) -> DailyStats:
        if self.stats_provider is not None:
            return self.stats_provider(day)

        # トラッカーがない場合（ビューアなど）はストアのセッションから概算する
        stats = DailyStats(date=day)
        for bundle_id, seconds in usage_between(sessions, start, end).items():
            stats.add_usage(bundle_id, seconds)
        stats.context_switch_count = sum(
            1 for prev, cur in zip(sessions, sessions[1:]) if prev.app_bundle_id != cur.app_bundle_id
        )
        return stats

    def _suppression_period(self, insight: ProductivityInsight) -> Period:
        if insight.period_start is not None and insight.period_end is not None:
            return (insight.period_start, insight.period_end)
        window = timedelta(seconds=self.config.suppression_window_seconds)
        return (insight.generated_at - window, insight.generated_at)

    def _is_suppressed(self, candidate: ProductivityInsight) -> bool:
        period = self._suppression_period(candidate)
        for existing in self.db.find_insights(candidate.type, since=period[0]):
            if periods_overlap(period, self._suppression_period(existing)):
                return True
        return False

    # ------------------------------------------------------------------
    # ルール
    # ------------------------------------------------------------------

    def _focus_pattern(
        self, stats: DailyStats, period: Period, now: datetime
    ) -> Optional[ProductivityInsight]:
        if stats.focus_session_count < self.config.min_focus_sessions:
            return None
        top = stats.top_apps(1)
        where = f" Most time went to {top[0][0]}." if top else ""
        return ProductivityInsight(
            type=InsightType.FOCUS_PATTERN,
            title=f"{stats.focus_session_count} focus sessions today",
            content=(
                f"You held focus for long stretches {stats.focus_session_count} times today."
                f"{where}"
            ),
            generated_at=now,
            period_start=period[0],
            period_end=period[1],
        )

    def _context_switch_warning(
        self, stats: DailyStats, period: Period, now: datetime
    ) -> Optional[ProductivityInsight]:
        active_minutes = stats.total_active_time / 60
        if stats.total_active_time <= 0 or active_minutes < self.config.min_active_minutes:
            return None
        per_hour = stats.context_switch_count / (stats.total_active_time / 3600)
        if per_hour <= self.config.max_switches_per_hour:
            return None
        return ProductivityInsight(
            type=InsightType.CONTEXT_SWITCH_WARNING,
            title="Frequent context switching",
            content=(
                f"{stats.context_switch_count} app switches in "
                f"{format_duration(stats.total_active_time)} of activity "
                f"({per_hour:.1f} per hour). Batching similar tasks may help."
            ),
            generated_at=now,
            period_start=period[0],
            period_end=period[1],
        )

    def _productivity_trend(self, now: datetime) -> Optional[ProductivityInsight]:
        """前日の稼働時間を、それ以前の baseline 日数の平均と比較"""
        today_start = start_of_day(now)
        day_start = today_start - timedelta(days=1)
        baseline_start = day_start - timedelta(days=self.config.trend_baseline_days)

        sessions = self.db.get_sessions_between(baseline_start, today_start)
        target = sum(usage_between(sessions, day_start, today_start).values())

        baseline_totals = []
        for offset in range(1, self.config.trend_baseline_days + 1):
            start = day_start - timedelta(days=offset)
            total = sum(usage_between(sessions, start, start + timedelta(days=1)).values())
            if total > 0:
                baseline_totals.append(total)

        if not baseline_totals or target / 60 < self.config.min_active_minutes:
            return None

        baseline = sum(baseline_totals) / len(baseline_totals)
        change = (target - baseline) / baseline
        if abs(change) < self.config.trend_change_ratio:
            return None

        direction = "up" if change > 0 else "down"
        return ProductivityInsight(
            type=InsightType.PRODUCTIVITY_TREND,
            title=f"Active time {direction} {abs(change):.0%}",
            content=(
                f"Yesterday you were active for {format_duration(target)}, compared with a "
                f"{len(baseline_totals)}-day average of {format_duration(baseline)}."
            ),
            generated_at=now,
            period_start=day_start,
            period_end=today_start,
        )

    def _project_progress(self, period: Period, now: datetime) -> Optional[ProductivityInsight]:
        updates = self.db.count_index_updates_by_project(since=period[0])
        active = {
            project: count
            for project, count in updates.items()
            if count >= self.config.min_project_files
        }
        if not active:
            return None

        names = [
            f"{os.path.basename(project.rstrip('/'))} ({count} files)"
            for project, count in active.items()
        ]
        return ProductivityInsight(
            type=InsightType.PROJECT_PROGRESS,
            title=f"Progress in {len(active)} project(s)",
            content="Files changed today: " + ", ".join(names),
            generated_at=now,
            period_start=period[0],
            period_end=period[1],
        )

    def _ai_usage_pattern(
        self, stats: DailyStats, period: Period, now: datetime
    ) -> Optional[ProductivityInsight]:
        if stats.total_active_time <= 0:
            return None
        if stats.total_active_time / 60 < self.config.min_active_minutes:
            return None

        activities = self.db.get_activities_between(period[0], period[1])
        ai_seconds = sum(
            a.duration or 0.0 for a in activities if a.type == ActivityType.AI_TOOL_USE
        )
        share = ai_seconds / stats.total_active_time
        if share < self.config.ai_usage_ratio:
            return None

        return ProductivityInsight(
            type=InsightType.AI_USAGE_PATTERN,
            title=f"AI tools took {share:.0%} of your active time",
            content=(
                f"{format_duration(ai_seconds)} was spent in AI assistants and chat tools today."
            ),
            generated_at=now,
            period_start=period[0],
            period_end=period[1],
        )

    def _recommendation(
        self, stats: DailyStats, period: Period, now: datetime
    ) -> Optional[ProductivityInsight]:
        if stats.total_active_time / 60 < self.config.recommendation_min_active_minutes:
            return None
        if stats.focus_session_count > 0:
            return None
        return ProductivityInsight(
            type=InsightType.RECOMMENDATION,
            title="Block time for deep work",
            content=(
                f"You have been active for {format_duration(stats.total_active_time)} today "
                "without a single focus session. Try reserving an uninterrupted block."
            ),
            generated_at=now,
            period_start=period[0],
            period_end=period[1],
        )
