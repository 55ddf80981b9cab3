"""
Context-switch & focus analyzer for efficiency-cockpit.

フォアグラウンド変化の列から、デバウンス済みのコンテキストスイッチ数と
フォーカスセッション数を日別に集計する。

デバウンス:
    アプリ変化は到着時点で暫定的にスイッチとして数える。新しいアプリが
    min_dwell_seconds 未満で元の安定アプリに戻った場合はノイズとみなし、
    暫定カウントを取り消して元の滞在を継続扱いにする。
フォーカス:
    安定アプリへの連続滞在が focus_threshold_seconds を超えた瞬間に1回だけ数える。
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from ..models import ForegroundEvent


logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    """安定アプリから離れた直後の、まだ確定していない移動先"""

    bundle_id: str
    since: datetime
    left_stable_at: datetime
    counted_on: date


@dataclass
class DayCounters:
    context_switch_count: int = 0
    focus_session_count: int = 0


class ContextAnalyzer:
    """コンテキストスイッチ・フォーカス解析クラス"""

    def __init__(
        self,
        min_dwell_seconds: float = 2.0,
        focus_threshold_seconds: float = 900.0,
        retention_days: int = 7,
    ) -> None:
        """
        初期化.

        Args:
            min_dwell_seconds: これ未満の滞在はノイズとみなす秒数
            focus_threshold_seconds: フォーカスセッションとみなす連続滞在秒数
            retention_days: 日別カウンタを保持する日数
        """
        self.min_dwell_seconds = min_dwell_seconds
        self.focus_threshold_seconds = focus_threshold_seconds
        self.retention_days = retention_days

        self._counters: dict[date, DayCounters] = {}
        self._stable_bundle: Optional[str] = None
        self._stable_since: Optional[datetime] = None
        self._focus_counted = False
        self._candidate: Optional[_Candidate] = None
        self._last_ts: Optional[datetime] = None
        self._lock = threading.RLock()

    @property
    def stable_bundle_id(self) -> Optional[str]:
        with self._lock:
            return self._stable_bundle

    def observe(self, event: ForegroundEvent) -> bool:
        """
        フォアグラウンド変化を1件処理.

        Args:
            event: フォアグラウンド変化イベント

        Returns:
            この変化でコンテキストスイッチを（暫定的に）数えた場合True
        """
        with self._lock:
            ts = event.timestamp
            if self._last_ts is not None and ts < self._last_ts:
                ts = self._last_ts
            self._last_ts = ts

            self._advance(ts)
            bundle = event.bundle_id

            if self._stable_bundle is None:
                self._start_dwell(bundle, ts)
                return False

            candidate = self._candidate
            if candidate is not None:
                if bundle == candidate.bundle_id:
                    return False
                if bundle == self._stable_bundle:
                    self._day(candidate.counted_on).context_switch_count -= 1
                    self._candidate = None
                    logger.debug(f"Debounced flicker to {candidate.bundle_id}")
                    return False
                self._candidate = _Candidate(
                    bundle_id=bundle,
                    since=ts,
                    left_stable_at=candidate.left_stable_at,
                    counted_on=candidate.counted_on,
                )
                return False

            if bundle == self._stable_bundle:
                return False

            self._candidate = _Candidate(
                bundle_id=bundle, since=ts, left_stable_at=ts, counted_on=ts.date()
            )
            self._day(ts.date()).context_switch_count += 1
            self._prune(ts.date())
            return True

    def tick(self, now: datetime) -> None:
        """イベントなしで時間を進める（確定待ちの移動先とフォーカス到達を評価）."""
        with self._lock:
            if self._last_ts is not None and now < self._last_ts:
                return
            self._advance(now)

    def end_dwell(self, at: datetime) -> None:
        """現在の滞在を打ち切る（トラッキング停止時・除外アプリへの移動時）."""
        with self._lock:
            self.tick(at)
            self._stable_bundle = None
            self._stable_since = None
            self._candidate = None
            self._focus_counted = False

    def counters_for(self, day: date, now: Optional[datetime] = None) -> DayCounters:
        """
        日別カウンタのコピーを取得.

        Args:
            day: 対象日
            now: 指定時はその時刻まで時間を進めてから集計

        Returns:
            カウンタ
        """
        with self._lock:
            if now is not None:
                self.tick(now)
            counters = self._counters.get(day, DayCounters())
            return DayCounters(
                context_switch_count=counters.context_switch_count,
                focus_session_count=counters.focus_session_count,
            )

    def focus_elapsed(self, now: datetime) -> float:
        """現在の安定アプリへの連続滞在秒数."""
        with self._lock:
            if self._stable_since is None:
                return 0.0
            until = self._candidate.left_stable_at if self._candidate else now
            return max(0.0, (until - self._stable_since).total_seconds())

    def _advance(self, now: datetime) -> None:
        candidate = self._candidate
        if candidate is not None:
            self._check_focus(min(now, candidate.left_stable_at))
            if (now - candidate.since).total_seconds() >= self.min_dwell_seconds:
                self._start_dwell(candidate.bundle_id, candidate.since)
                self._candidate = None
        if self._candidate is None:
            self._check_focus(now)

    def _start_dwell(self, bundle_id: str, since: datetime) -> None:
        self._stable_bundle = bundle_id
        self._stable_since = since
        self._focus_counted = False

    def _check_focus(self, until: datetime) -> None:
        if self._stable_since is None or self._focus_counted:
            return
        if (until - self._stable_since).total_seconds() > self.focus_threshold_seconds:
            crossing = self._stable_since + timedelta(seconds=self.focus_threshold_seconds)
            self._day(crossing.date()).focus_session_count += 1
            self._focus_counted = True
            logger.info(f"Focus session reached on {self._stable_bundle}")

    def _day(self, day: date) -> DayCounters:
        if day not in self._counters:
            self._counters[day] = DayCounters()
        return self._counters[day]

    def _prune(self, today: date) -> None:
        cutoff = today - timedelta(days=self.retention_days)
        for day in [d for d in self._counters if d < cutoff]:
            del self._counters[day]
