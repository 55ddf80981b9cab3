"""
Foreground observers for efficiency-cockpit.

OS 側のフォアグラウンド変化をイベントとして購読者へプッシュする。
- PushObserver: 外部のイベントソースが emit() で流し込む
- PollingForegroundObserver: psutil による簡易実装（Linux/WSL2 互換）
"""

import logging
import threading
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

import psutil

from ..exceptions import ObserverUnavailableError
from ..models import ForegroundEvent


logger = logging.getLogger(__name__)

ForegroundCallback = Callable[[ForegroundEvent], None]


class BaseObserver:
    """購読者リストを持つオブザーバー基底クラス"""

    def __init__(self) -> None:
        self._subscribers: list[ForegroundCallback] = []
        self._subscribers_lock = threading.Lock()

    def subscribe(self, callback: ForegroundCallback) -> None:
        """
        購読を開始.

        Raises:
            ObserverUnavailableError: 監視が利用できない場合
        """
        with self._subscribers_lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: ForegroundCallback) -> None:
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    @property
    def subscriber_count(self) -> int:
        with self._subscribers_lock:
            return len(self._subscribers)

    def _dispatch(self, event: ForegroundEvent) -> None:
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Foreground subscriber failed: {e}", exc_info=True)


class PushObserver(BaseObserver):
    """外部ソースからイベントを受け取って配信するオブザーバー"""

    def emit(self, event: ForegroundEvent) -> None:
        self._dispatch(event)


@lru_cache(maxsize=1024)
def pid_to_app_info(pid: int) -> dict[str, str]:
    """
    PID → アプリ情報の変換（LRUキャッシュで高速化）.

    Args:
        pid: プロセスID

    Returns:
        アプリ情報
    """
    try:
        proc = psutil.Process(pid)
        return {"process_name": proc.name(), "process_path": proc.exe()}
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return {"process_name": "Unknown", "process_path": ""}


def get_foreground_info() -> Optional[dict[str, str]]:
    """
    現在のフォアグラウンド情報を取得（簡易実装）.

    ウィンドウ情報を取得できない環境では、CPU使用率が最も高いプロセスを
    アクティブとみなす。

    Returns:
        フォアグラウンド情報（取得できない場合はNone）

    Raises:
        psutil.AccessDenied: プロセス一覧の取得自体が拒否された場合
    """
    processes = []
    for proc in psutil.process_iter(["pid", "name", "cpu_percent"]):
        try:
            processes.append(proc.info)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    if not processes:
        return None

    processes.sort(key=lambda p: p.get("cpu_percent") or 0.0, reverse=True)
    app_info = pid_to_app_info(processes[0]["pid"])

    return {
        "bundle_id": app_info["process_name"],
        "app_name": app_info["process_name"],
        "window_title": app_info["process_name"],
    }


class PollingForegroundObserver(BaseObserver):
    """
    フォアグラウンドを定期サンプリングし、変化したときだけイベントをプッシュする.

    最初の購読でサンプリングスレッドを開始し、購読者がいなくなると停止して
    スレッドの終了を待つ。サンプリングスレッドは常に高々1つ。
    """

    def __init__(
        self,
        sampling_interval: float = 1.0,
        source: Callable[[], Optional[dict[str, str]]] = get_foreground_info,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        super().__init__()
        self.sampling_interval = sampling_interval
        self._source = source
        self._clock = clock
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_lock = threading.Lock()
        self._last: Optional[tuple[str, Optional[str]]] = None

    @property
    def is_sampling(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def subscribe(self, callback: ForegroundCallback) -> None:
        try:
            self._source()
        except psutil.Error as e:
            raise ObserverUnavailableError(f"Foreground observation unavailable: {e}") from e

        super().subscribe(callback)
        with self._lifecycle_lock:
            if self.is_sampling:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._sampling_loop,
                args=(self._stop_event,),
                name="foreground-sampler",
                daemon=True,
            )
            self._thread.start()
        logger.info("Foreground sampling started")

    def unsubscribe(self, callback: ForegroundCallback) -> None:
        super().unsubscribe(callback)
        if self.subscriber_count > 0:
            return

        with self._lifecycle_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            self._thread = None
            # 配信中のコールバックから呼ばれた場合は自分自身を待たない
            if thread is not threading.current_thread():
                thread.join(timeout=self.sampling_interval + 5.0)
        logger.info("Foreground sampling stopped")

    def poll_once(self) -> Optional[ForegroundEvent]:
        """1回サンプリングし、前回から変化していればイベントを配信して返す."""
        info = self._source()
        if info is None:
            return None

        key = (info["bundle_id"], info.get("window_title"))
        with self._last_lock:
            if key == self._last:
                return None
            self._last = key

        event = ForegroundEvent(
            bundle_id=info["bundle_id"],
            app_name=info.get("app_name") or info["bundle_id"],
            window_title=info.get("window_title"),
            timestamp=self._clock(),
        )
        self._dispatch(event)
        return event

    def _sampling_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Foreground sampling error: {e}", exc_info=True)
            stop_event.wait(self.sampling_interval)
