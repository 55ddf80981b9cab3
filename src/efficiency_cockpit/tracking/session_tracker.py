"""
Session tracker for efficiency-cockpit.

状態遷移:
    Idle --start_tracking()--> Tracking --stop_tracking()--> Idle
Tracking 中は開いているセッションが高々1つ。

アプリの移動は min_dwell_seconds 滞在するまで保留する。保留中に元のアプリへ
戻った場合はセッションを閉じずにそのまま続け、滞在が確定した場合は
元のセッションを移動先の開始時刻で閉じる。

フォアグラウンド変化はオブザーバーのコールバック上で同期的に処理する。
この経路ではファイル・ネットワーク I/O を行わず、永続化は SessionWriter の
キューに積むだけにする。
"""

import copy
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from ..config import PrivacyConfig
from ..database.db_manager import DatabaseManager
from ..exceptions import ObserverUnavailableError, StorageError
from ..models import Activity, AppSession, DailyStats, ForegroundEvent, TrackingState
from ..utils.privacy import is_excluded_app, stable_hash
from ..utils.timeutil import split_by_day
from .analyzer import ContextAnalyzer
from .app_identifiers import classify_activity
from .health_monitor import HealthMonitor
from .observer import BaseObserver
from .writer import SessionWriter


logger = logging.getLogger(__name__)

StateCallback = Callable[[TrackingState], None]


@dataclass
class _PendingSwitch:
    """滞在が確定していない移動先（セッション・アクティビティは未送信）"""

    session: AppSession
    title: Optional[str]
    activities: list[Activity] = field(default_factory=list)

    @property
    def activity(self) -> Activity:
        return self.activities[-1]


class SessionTracker:
    """
    セッショントラッキングクラス.

    AppSession / Activity の唯一の書き込み元。現在の状態は subscribe() による
    プッシュ通知と state プロパティによるプルの両方で公開する。
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        observer: BaseObserver,
        analyzer: Optional[ContextAnalyzer] = None,
        writer: Optional[SessionWriter] = None,
        privacy: Optional[PrivacyConfig] = None,
        clock: Callable[[], datetime] = datetime.now,
        health_monitor: Optional[HealthMonitor] = None,
        usage_retention_days: int = 7,
    ) -> None:
        """
        初期化.

        Args:
            db_manager: データベースマネージャー
            observer: フォアグラウンド変化のイベントソース
            analyzer: コンテキストスイッチ解析器
            writer: 永続化キュー（省略時は db_manager から生成）
            privacy: プライバシー設定
            clock: 現在時刻を返す関数（テスト用にDI可能）
            health_monitor: ヘルスモニター
            usage_retention_days: 日別利用時間を保持する日数
        """
        self.db = db_manager
        self.observer = observer
        self.analyzer = analyzer or ContextAnalyzer()
        self.health_monitor = health_monitor or HealthMonitor()
        self.writer = writer or SessionWriter(db_manager, health_monitor=self.health_monitor)
        self.privacy = privacy or PrivacyConfig()
        self.usage_retention_days = usage_retention_days
        self._clock = clock

        self._lock = threading.RLock()
        self._tracking = False
        self._session: Optional[AppSession] = None
        self._activity: Optional[Activity] = None
        self._current_title: Optional[str] = None
        self._pending: Optional[_PendingSwitch] = None
        self._last_event_ts: Optional[datetime] = None
        self._unavailable_reason: Optional[str] = None
        self._last_error: Optional[str] = None
        self._usage: dict[date, dict[str, float]] = {}
        self._subscribers: list[StateCallback] = []

    # ------------------------------------------------------------------
    # 公開状態
    # ------------------------------------------------------------------

    @property
    def is_tracking(self) -> bool:
        with self._lock:
            return self._tracking

    @property
    def current_session(self) -> Optional[AppSession]:
        with self._lock:
            return copy.deepcopy(self._foreground_session())

    @property
    def current_activity(self) -> Optional[Activity]:
        with self._lock:
            return copy.deepcopy(self._foreground_activity())

    @property
    def state(self) -> TrackingState:
        with self._lock:
            return self._snapshot()

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        状態変化の通知を購読.

        Args:
            callback: TrackingState を受け取る関数

        Returns:
            購読解除用の関数
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # 状態遷移
    # ------------------------------------------------------------------

    def start_tracking(self) -> None:
        """Idle → Tracking。トラッキング中に呼んでも何もしない."""
        with self._lock:
            if self._tracking:
                return

            self.db.close_dangling_sessions()

            try:
                self.observer.subscribe(self.on_foreground_change)
            except ObserverUnavailableError as e:
                self._unavailable_reason = str(e)
                logger.warning(f"Tracking unavailable: {e}")
                state = self._snapshot()
            else:
                self._unavailable_reason = None
                self._tracking = True
                self.writer.start()
                logger.info("Activity tracking started")
                state = self._snapshot()

        self._notify(state)

    def stop_tracking(self) -> None:
        """
        開いているセッションを現在時刻で閉じて Tracking → Idle。Idle なら何もしない.

        保留中の移動先は滞在時間にかかわらず確定させてから閉じる。

        Raises:
            StorageError: 保留中の書き込みに失敗した場合（状態遷移は完了済み）
        """
        error: Optional[StorageError] = None
        with self._lock:
            if not self._tracking:
                return

        # サンプリングスレッドの終了を待つのでロックの外で解除する
        self.observer.unsubscribe(self.on_foreground_change)

        with self._lock:
            if not self._tracking:
                return

            now = self._effective_time(self._clock())
            self._commit_pending()
            self._close_current(now)
            self.analyzer.end_dwell(now)
            self._tracking = False
            self._last_event_ts = None

            self.writer.stop()
            try:
                self.writer.flush()
                self._last_error = None
            except StorageError as e:
                self._last_error = str(e)
                error = e

            logger.info("Activity tracking stopped")
            state = self._snapshot()

        self._notify(state)
        if error is not None:
            raise error

    def on_foreground_change(self, event: ForegroundEvent) -> None:
        """
        フォアグラウンド変化を処理（オブザーバーの配信スレッドから呼ばれる）.

        Args:
            event: フォアグラウンド変化イベント
        """
        started = time.perf_counter()
        state: Optional[TrackingState] = None

        with self._lock:
            if not self._tracking:
                return

            ts = self._effective_time(event.timestamp)
            self._last_event_ts = ts

            excluded = self._is_excluded(event.bundle_id)
            if self._apply(event, ts, excluded):
                state = self._snapshot()
            if excluded:
                # 除外アプリは滞在として数えない
                self.analyzer.end_dwell(ts)
            else:
                self.analyzer.observe(dataclasses.replace(event, timestamp=ts))

        self.health_monitor.record_event_latency((time.perf_counter() - started) * 1000)
        if state is not None:
            self._notify(state)

    def flush(self) -> int:
        """保留中のセッション・アクティビティを書き込む（失敗時は StorageError）."""
        with self._lock:
            if self._tracking:
                self._settle(self._clock())
        try:
            written = self.writer.flush()
        except StorageError as e:
            with self._lock:
                self._last_error = str(e)
            raise
        with self._lock:
            self._last_error = None
        return written

    def delete_session(self, session_id: str) -> bool:
        """
        セッションと所有アクティビティを削除.

        Raises:
            ValueError: 開いているセッション（確定前の移動先を含む）を指定した場合
        """
        with self._lock:
            if self._tracking:
                self._settle(self._clock())
            open_ids = {s.id for s in (self._session, self._foreground_session()) if s is not None}
            if session_id in open_ids:
                raise ValueError("Cannot delete the open session")
        self.flush()
        return self.db.delete_session(session_id)

    # ------------------------------------------------------------------
    # 日次集計
    # ------------------------------------------------------------------

    def daily_stats(self, day: Optional[date] = None) -> DailyStats:
        """
        日次集計を取得.

        閉じたセッションの利用時間に、開いているセッションの経過時間と
        解析器のカウンタを合わせる。0時をまたぐセッションは日付境界で分割する。

        Args:
            day: 対象日（省略時は今日）

        Returns:
            DailyStats
        """
        with self._lock:
            now = self._clock()
            day = day or now.date()
            stats = DailyStats(date=day)
            if self._tracking:
                self._settle(now)

            for bundle_id, seconds in self._usage.get(day, {}).items():
                stats.add_usage(bundle_id, seconds)

            pending = self._pending
            if self._session is not None:
                until = pending.session.start_time if pending is not None else now
                self._add_open_usage(stats, self._session, until)
            if pending is not None:
                self._add_open_usage(stats, pending.session, now)

            counters = self.analyzer.counters_for(day, now=now if self._tracking else None)
            stats.context_switch_count = counters.context_switch_count
            stats.focus_session_count = counters.focus_session_count
            return stats

    # ------------------------------------------------------------------
    # 内部処理
    # ------------------------------------------------------------------

    def _effective_time(self, ts: datetime) -> datetime:
        """順序が前後したイベントは最後に受け付けた時刻に丸める."""
        if self._last_event_ts is not None and ts < self._last_event_ts:
            return self._last_event_ts
        return ts

    def _is_excluded(self, bundle_id: str) -> bool:
        return is_excluded_app(
            bundle_id, self.privacy.exclude_bundle_ids, self.privacy.sensitive_keywords
        )

    def _apply(self, event: ForegroundEvent, ts: datetime, excluded: bool) -> bool:
        if excluded:
            if self._session is None:
                return False
            logger.debug(f"Excluded app in foreground: {event.bundle_id}")
            self._commit_pending()
            self._close_current(ts)
            return True

        self._settle(ts)
        pending = self._pending
        if pending is not None:
            return self._apply_pending(pending, event, ts)

        if self._session is None:
            self._open_session(event, ts)
            return True

        if self._session.app_bundle_id != event.bundle_id:
            self._pending = self._new_pending(event, ts)
            return True

        if event.window_title != self._current_title:
            self._record_activity(event, ts, is_title_change=True)
            return True

        return False

    def _apply_pending(self, pending: _PendingSwitch, event: ForegroundEvent, ts: datetime) -> bool:
        if event.bundle_id == self._session.app_bundle_id:
            self._pending = None
            logger.debug(f"Returned to {event.bundle_id} before the dwell, keeping its session")
            if event.window_title != self._current_title:
                self._record_activity(event, ts, is_title_change=True)
            return True

        if event.bundle_id != pending.session.app_bundle_id:
            self._pending = self._new_pending(event, ts)
            return True

        if event.window_title != pending.title:
            pending.activity.close(ts)
            pending.activities.append(
                self._make_activity(event, ts, pending.session, is_title_change=True)
            )
            pending.title = event.window_title
            return True

        return False

    def _new_pending(self, event: ForegroundEvent, ts: datetime) -> _PendingSwitch:
        session = AppSession(
            app_bundle_id=event.bundle_id,
            app_name=event.app_name,
            start_time=ts,
        )
        pending = _PendingSwitch(session=session, title=event.window_title)
        pending.activities.append(self._make_activity(event, ts, session, is_title_change=False))
        return pending

    def _settle(self, now: datetime) -> None:
        """滞在時間を満たした移動先を確定."""
        pending = self._pending
        if pending is None:
            return
        if (now - pending.session.start_time).total_seconds() >= self.analyzer.min_dwell_seconds:
            self._commit_pending()

    def _commit_pending(self) -> None:
        """元のセッションを移動先の開始時刻で閉じ、移動先を開いているセッションにする."""
        pending = self._pending
        if pending is None:
            return
        self._pending = None

        self._close_current(pending.session.start_time)
        self._session = pending.session
        self.writer.submit(pending.session)
        for activity in pending.activities:
            self.writer.submit(activity)
        self._activity = pending.activity
        self._current_title = pending.title
        logger.debug(f"Opened session for {pending.session.app_bundle_id}")

    def _open_session(self, event: ForegroundEvent, ts: datetime) -> None:
        self._session = AppSession(
            app_bundle_id=event.bundle_id,
            app_name=event.app_name,
            start_time=ts,
        )
        self.writer.submit(self._session)
        self._record_activity(event, ts, is_title_change=False)
        logger.debug(f"Opened session for {event.bundle_id}")

    def _make_activity(
        self, event: ForegroundEvent, ts: datetime, session: AppSession, is_title_change: bool
    ) -> Activity:
        title = event.window_title
        if title is not None and not self.privacy.store_raw_titles:
            title = stable_hash(title)

        activity = Activity(
            type=classify_activity(event.bundle_id, event.window_title, is_title_change),
            timestamp=ts,
            session_id=session.id,
            app_bundle_id=event.bundle_id,
            app_name=event.app_name,
            window_title=title,
        )
        session.activity_ids.append(activity.id)
        return activity

    def _record_activity(self, event: ForegroundEvent, ts: datetime, is_title_change: bool) -> None:
        if self._activity is not None:
            self._activity.close(ts)
            self.writer.submit(self._activity)

        self._activity = self._make_activity(event, ts, self._session, is_title_change)
        self._current_title = event.window_title
        self.writer.submit(self._activity)

    def _close_current(self, ts: datetime) -> None:
        if self._activity is not None:
            self._activity.close(ts)
            self.writer.submit(self._activity)

        session = self._session
        if session is not None:
            session.end(ts)
            self.writer.submit(session)
            self._add_usage(session)
            logger.debug(
                f"Closed session for {session.app_bundle_id} ({session.total_duration:.1f}s)"
            )

        self._session = None
        self._activity = None
        self._current_title = None

    def _add_usage(self, session: AppSession) -> None:
        if session.end_time is None:
            return
        for day, seconds in split_by_day(session.start_time, session.end_time):
            usage = self._usage.setdefault(day, {})
            usage[session.app_bundle_id] = usage.get(session.app_bundle_id, 0.0) + seconds

        cutoff = session.end_time.date() - timedelta(days=self.usage_retention_days)
        for day in [d for d in self._usage if d < cutoff]:
            del self._usage[day]

    def _add_open_usage(self, stats: DailyStats, session: AppSession, until: datetime) -> None:
        for part_day, seconds in split_by_day(session.start_time, until):
            if part_day == stats.date:
                stats.add_usage(session.app_bundle_id, seconds)

    def _foreground_session(self) -> Optional[AppSession]:
        if self._pending is not None:
            return self._pending.session
        return self._session

    def _foreground_activity(self) -> Optional[Activity]:
        if self._pending is not None:
            return self._pending.activity
        return self._activity

    def _snapshot(self) -> TrackingState:
        return TrackingState(
            is_tracking=self._tracking,
            current_session=copy.deepcopy(self._foreground_session()),
            current_activity=copy.deepcopy(self._foreground_activity()),
            unavailable_reason=self._unavailable_reason,
            last_error=self._last_error or self.writer.last_error,
        )

    def _notify(self, state: TrackingState) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"State subscriber failed: {e}", exc_info=True)
