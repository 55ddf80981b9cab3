"""
Session writer for efficiency-cockpit.

イベント駆動 + バルク書き込みのハイブリッド実装。
イベント経路ではキューに積むだけで、DB書き込みは専用スレッドか flush() で行う。
"""

import copy
import logging
import queue
import threading
import time
from typing import Any, Optional, Union

from ..database.db_manager import DatabaseManager
from ..exceptions import StorageError
from ..models import Activity, AppSession
from .health_monitor import HealthMonitor


logger = logging.getLogger(__name__)

Record = Union[AppSession, Activity]


class SessionWriter:
    """
    セッション・アクティビティの書き込みキュー.

    書き込みに失敗したバッチは保持され、次のバッチと一緒に書き込まれる
    （自動リトライのループは持たない）。
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        batch_size: int = 10,
        timeout_seconds: float = 3.0,
        max_queue_size: int = 1000,
        health_monitor: Optional[HealthMonitor] = None,
    ) -> None:
        """
        初期化.

        Args:
            db_manager: データベースマネージャー
            batch_size: この件数たまったら書き込む
            timeout_seconds: 最後の書き込みからこの秒数経過したら書き込む
            max_queue_size: キューの最大長（超えた分は保持リストへ移して次回書き込む）
            health_monitor: ヘルスモニター
        """
        self.db = db_manager
        self.batch_size = batch_size
        self.timeout_seconds = timeout_seconds
        self.queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self.health_monitor = health_monitor or HealthMonitor()
        self.last_error: Optional[str] = None

        self._retained: list[Record] = []
        self._write_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def pending_count(self) -> int:
        return self.queue.qsize() + len(self._retained)

    def start(self) -> None:
        """バルク書き込みスレッドを開始."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._bulk_write_loop, daemon=True)
        self._thread.start()
        logger.info("Session writer started")

    def stop(self) -> None:
        """スレッドを停止（残りは flush() で書き込むこと）."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        logger.info("Session writer stopped")

    def submit(self, record: Record) -> None:
        """
        レコードのスナップショットをキューに追加.

        イベント経路から呼ばれるため例外を送出しない。キューが満杯の場合は
        キューの中身を保持リストへ移し、書き込みはスレッドか flush() に任せる。
        """
        snapshot = copy.deepcopy(record)
        try:
            self.queue.put_nowait(snapshot)
            return
        except queue.Full:
            pass

        self.health_monitor.record_overflow()
        with self._write_lock:
            self._retained.extend(self._drain())
            retained = len(self._retained)
            self.last_error = f"Write queue overflow, {retained} records deferred"
            self.queue.put_nowait(snapshot)
        self.health_monitor.record_retained(retained)
        logger.warning(f"Write queue full, deferred {retained} records to the next write")

    def flush(self) -> int:
        """
        キューと保持中のレコードをすべて書き込む.

        Returns:
            書き込んだ件数

        Raises:
            StorageError: 書き込みに失敗した場合（レコードは次回に持ち越す）
        """
        with self._write_lock:
            batch = self._drain()
            return self._write(batch)

    def _drain(self) -> list[Record]:
        batch: list[Record] = []
        while True:
            try:
                batch.append(self.queue.get_nowait())
            except queue.Empty:
                return batch

    def _write(self, batch: list[Any]) -> int:
        records = self._retained + batch
        if not records:
            return 0

        start_time = time.time()
        try:
            written = self.db.bulk_write(records)
        except StorageError as e:
            self._retained = records
            self.last_error = str(e)
            self.health_monitor.record_write_failure()
            self.health_monitor.record_retained(len(records))
            logger.warning(f"Write failed, {len(records)} records retained: {e}")
            raise

        self._retained = []
        self.last_error = None
        self.health_monitor.record_retained(0)
        self.health_monitor.record_write_time((time.time() - start_time) * 1000)
        return written

    def _bulk_write_loop(self) -> None:
        """キューの長さと経過時間を見てバルク書き込み（新規レコードがなければ書かない）."""
        last_write = time.time()

        while not self._stop_event.wait(0.2):
            depth = self.queue.qsize()
            if depth == 0:
                continue
            if depth < self.batch_size and time.time() - last_write <= self.timeout_seconds:
                continue

            try:
                self.flush()
            except StorageError as e:
                logger.error(f"Bulk write failed, keeping {len(self._retained)} records: {e}")
            last_write = time.time()
