"""
Health monitoring for efficiency-cockpit.

イベント処理遅延・DB書き込み時間・書き込み失敗の観測
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Any

import psutil


logger = logging.getLogger(__name__)


def _percentile(values: list[float], ratio: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    return ordered[min(int(len(ordered) * ratio), len(ordered) - 1)]


class HealthMonitor:
    """
    ヘルスモニタリングクラス.

    SLO指標を収集・監視する。
    """

    def __init__(self) -> None:
        """初期化."""
        self.event_latencies: deque[float] = deque(maxlen=1000)
        self.write_times: deque[float] = deque(maxlen=1000)
        self.failed_writes = 0
        self.queue_overflows = 0
        self.retained_records = 0
        self._lock = threading.Lock()

    def record_event_latency(self, latency_ms: float) -> None:
        """
        イベント受信→状態更新までの処理時間を記録.

        Args:
            latency_ms: 処理時間（ミリ秒）
        """
        with self._lock:
            self.event_latencies.append(latency_ms)

    def record_write_time(self, time_ms: float) -> None:
        """
        DB書込時間を記録.

        Args:
            time_ms: 書込時間（ミリ秒）
        """
        with self._lock:
            self.write_times.append(time_ms)

    def record_write_failure(self) -> None:
        """書き込み失敗をカウント."""
        with self._lock:
            self.failed_writes += 1

    def record_overflow(self) -> None:
        """キュー満杯による書き込みの先送りをカウント."""
        with self._lock:
            self.queue_overflows += 1

    def record_retained(self, count: int) -> None:
        """書き込み待ちで保持しているレコード数を記録."""
        with self._lock:
            self.retained_records = count

    def get_metrics(self, queue_depth: int = 0) -> dict[str, Any]:
        """
        現在のメトリクスを取得.

        Args:
            queue_depth: 書き込み待ちキューの長さ

        Returns:
            メトリクスデータ
        """
        with self._lock:
            latencies = list(self.event_latencies)
            writes = list(self.write_times)
            failed = self.failed_writes
            overflows = self.queue_overflows
            retained = self.retained_records

        return {
            "timestamp": datetime.now(),
            "cpu_percent": psutil.cpu_percent(interval=None),
            "mem_mb": psutil.Process().memory_info().rss / 1024 / 1024,
            "queue_depth": queue_depth,
            "event_latency_p50": _percentile(latencies, 0.5),
            "event_latency_p95": _percentile(latencies, 0.95),
            "db_write_time_p95": _percentile(writes, 0.95),
            "failed_writes": failed,
            "queue_overflows": overflows,
            "retained_records": retained,
        }

    def check_slo(self, config: dict[str, Any], queue_depth: int = 0) -> dict[str, Any]:
        """
        SLO違反をチェック.

        Args:
            config: SLO設定

        Returns:
            チェック結果
        """
        metrics = self.get_metrics(queue_depth)
        violations = []

        if metrics["event_latency_p95"] > config.get("event_latency_p95_ms", 1.0):
            violations.append(f"Event latency P95 > {config.get('event_latency_p95_ms', 1.0)}ms")

        if metrics["failed_writes"] > 0:
            violations.append(f"Failed writes: {metrics['failed_writes']}")

        if metrics["db_write_time_p95"] > config.get("db_write_time_p95", 50):
            violations.append(f"DB write time P95 > {config.get('db_write_time_p95', 50)}ms")

        max_retained = config.get("max_retained_records", 1000)
        if metrics["retained_records"] > max_retained:
            violations.append(f"Retained records > {max_retained}")

        if metrics["mem_mb"] > config.get("max_memory_mb", 100):
            violations.append(f"Memory usage > {config.get('max_memory_mb', 100)}MB")

        return {"healthy": len(violations) == 0, "violations": violations, "metrics": metrics}
