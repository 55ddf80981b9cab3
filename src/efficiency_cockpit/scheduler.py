"""
定期実行スケジューラーモジュール

関連クラス:
  - indexing.content_indexer.ContentIndexer: scan_all を定期実行
  - insights.generator.InsightGenerator: generate を定期実行
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional


class PeriodicRunner:
    """タスクを一定間隔と明示的なトリガーで実行するスケジューラークラス"""

    def __init__(
        self,
        name: str,
        task: Callable[[], Any],
        interval_seconds: float = 3600,
        run_on_start: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        初期化

        Args:
            name: ログに出すタスク名
            task: 実行する関数
            interval_seconds: 実行間隔（秒）
            run_on_start: 開始直後に1回実行するか
            clock: 現在時刻を返す関数
        """
        if interval_seconds <= 0:
            raise ValueError("Interval must be positive")

        self.name = name
        self.task = task
        self.interval_seconds = interval_seconds
        self.run_on_start = run_on_start
        self.logger = logging.getLogger(__name__)
        self._clock = clock

        # 状態管理
        self._running = False
        self._lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._trigger = False

        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.run_count = 0

        # スレッド
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """スケジューラーを開始（バックグラウンドスレッド起動）"""
        with self._lock:
            if self._running:
                self.logger.warning(f"{self.name} runner is already running")
                return

            self._running = True
            self._trigger = self.run_on_start
            self._wakeup.clear()
            self._thread = threading.Thread(target=self._run_loop, daemon=True)
            self._thread.start()
            self.logger.info(f"{self.name} runner started (interval: {self.interval_seconds}s)")

    def stop(self) -> None:
        """スケジューラーを停止"""
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._wakeup.set()

        # スレッドの終了を待機
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self.logger.info(f"{self.name} runner stopped")

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def trigger(self) -> None:
        """次の間隔を待たずにバックグラウンドで実行させる"""
        with self._lock:
            self._trigger = True
            self._wakeup.set()

    def run_now(self) -> Any:
        """
        呼び出しスレッドでタスクを1回実行

        Returns:
            タスクの戻り値

        Raises:
            タスクが送出した例外
        """
        with self._run_lock:
            try:
                result = self.task()
            except Exception as e:
                self.last_error = str(e)
                raise
            finally:
                self.last_run = self._clock()
                self.run_count += 1
            self.last_error = None
            return result

    def set_interval(self, interval_seconds: float) -> None:
        """実行間隔を変更"""
        if interval_seconds <= 0:
            raise ValueError("Interval must be positive")

        with self._lock:
            self.interval_seconds = interval_seconds
            self._wakeup.set()
            self.logger.info(f"{self.name} interval changed to {interval_seconds} seconds")

    def get_status(self) -> Dict[str, Any]:
        """現在の状態を取得"""
        with self._lock:
            return {
                "name": self.name,
                "running": self._running,
                "interval_seconds": self.interval_seconds,
                "last_run": self.last_run.isoformat() if self.last_run else None,
                "last_error": self.last_error,
                "run_count": self.run_count,
            }

    def _run_loop(self) -> None:
        """
        メインループ（バックグラウンドスレッドで実行）

        interval_seconds ごと、または trigger() で _run_task を呼び出す
        """
        while True:
            with self._lock:
                if not self._running:
                    break
                triggered = self._trigger
                self._trigger = False
                interval = self.interval_seconds

            if not triggered:
                woke = self._wakeup.wait(interval)
                self._wakeup.clear()
                with self._lock:
                    if not self._running:
                        break
                    # 間隔変更による起床ではタスクを実行しない
                    if woke and not self._trigger:
                        continue
                    self._trigger = False

            self._run_task()

        self.logger.info(f"{self.name} runner loop exited")

    def _run_task(self) -> None:
        try:
            self.run_now()
        except Exception as e:
            self.logger.error(f"{self.name} task failed: {e}", exc_info=True)
