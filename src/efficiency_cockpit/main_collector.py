#!/usr/bin/env python3
"""
Main collector for efficiency-cockpit.

トラッカー・インデクサー・インサイト生成を1プロセスで動かす。

Usage:
    cockpit-collector [--config CONFIG_PATH] [--duration SECONDS] [--no-index] [--no-insights]
"""

import argparse
import dataclasses
import logging
import signal
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from .config import AppConfig
from .database.db_manager import DatabaseManager
from .exceptions import ConfigurationError, StorageError, StoreUnavailableError
from .indexing.content_indexer import ContentIndexer
from .insights.generator import InsightGenerator
from .logger import setup_logger
from .scheduler import PeriodicRunner
from .tracking.analyzer import ContextAnalyzer
from .tracking.health_monitor import HealthMonitor
from .tracking.observer import BaseObserver, PollingForegroundObserver
from .tracking.session_tracker import SessionTracker
from .tracking.writer import SessionWriter
from .utils.timeutil import format_duration


logger = logging.getLogger(__name__)

HEALTH_CHECK_INTERVAL = 60


class Collector:
    """トラッキング・定期インデックス・定期インサイト生成をまとめて起動・停止する"""

    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        observer: Optional[BaseObserver] = None,
        clock: Callable[[], datetime] = datetime.now,
        enable_indexing: bool = True,
        enable_insights: bool = True,
    ):
        self.config = config
        self.db = db_manager
        self.health_monitor = HealthMonitor()

        tracking = config.tracking
        self.analyzer = ContextAnalyzer(
            min_dwell_seconds=tracking.min_dwell_seconds,
            focus_threshold_seconds=tracking.focus_threshold_seconds,
            retention_days=tracking.stats_retention_days,
        )
        self.writer = SessionWriter(
            db_manager,
            batch_size=tracking.batch_size,
            timeout_seconds=tracking.timeout_seconds,
            max_queue_size=tracking.max_queue_size,
            health_monitor=self.health_monitor,
        )
        self.tracker = SessionTracker(
            db_manager,
            observer or PollingForegroundObserver(tracking.sampling_interval, clock=clock),
            analyzer=self.analyzer,
            writer=self.writer,
            privacy=config.privacy,
            clock=clock,
            health_monitor=self.health_monitor,
            usage_retention_days=tracking.stats_retention_days,
        )
        self.indexer = ContentIndexer(db_manager, config.indexing, clock=clock)
        self.insights = InsightGenerator(
            db_manager, config.insights, stats_provider=self.tracker.daily_stats, clock=clock
        )

        self.runners: List[PeriodicRunner] = []
        if enable_indexing:
            self.runners.append(
                PeriodicRunner(
                    "indexer",
                    self.indexer.scan_all,
                    config.indexing.scan_interval_seconds,
                    run_on_start=True,
                    clock=clock,
                )
            )
        if enable_insights:
            self.runners.append(
                PeriodicRunner(
                    "insights", self.insights.generate, config.insights.interval_seconds, clock=clock
                )
            )
        self.runners.append(
            PeriodicRunner("health", self.check_health, HEALTH_CHECK_INTERVAL, clock=clock)
        )

    def start(self) -> None:
        self.tracker.start_tracking()
        state = self.tracker.state
        if not state.is_tracking:
            logger.warning(f"Tracking is not available: {state.unavailable_reason}")
        for runner in self.runners:
            runner.start()

    def stop(self) -> None:
        for runner in self.runners:
            runner.stop()
        try:
            self.tracker.stop_tracking()
        except StorageError as e:
            logger.error(f"Failed to persist pending sessions on shutdown: {e}")

    def check_health(self) -> dict:
        """SLO をチェックし、違反があれば警告ログを出す"""
        result = self.health_monitor.check_slo(
            dataclasses.asdict(self.config.slo), queue_depth=self.writer.pending_count
        )
        if not result["healthy"]:
            logger.warning(f"SLO violations: {', '.join(result['violations'])}")

        stats = self.tracker.daily_stats()
        logger.info(
            f"Today: active {format_duration(stats.total_active_time)}, "
            f"{stats.context_switch_count} switches, {stats.focus_session_count} focus sessions"
        )
        return result


def setup_signal_handlers(collector: Collector) -> None:
    """シグナルハンドラーを設定."""

    def signal_handler(sig, frame):
        logger.info("Received shutdown signal, stopping collection...")
        collector.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def main(argv: Optional[List[str]] = None) -> int:
    """メインエントリーポイント."""
    parser = argparse.ArgumentParser(description="Efficiency Cockpit Collector")
    parser.add_argument(
        "--config", type=str, default="config/config.yaml", help="Config file path"
    )
    parser.add_argument(
        "--duration", type=int, default=None, help="Run duration in seconds (default: infinite)"
    )
    parser.add_argument("--no-index", action="store_true", help="Disable periodic indexing")
    parser.add_argument(
        "--no-insights", action="store_true", help="Disable periodic insight generation"
    )
    args = parser.parse_args(argv)

    # 設定読み込み
    try:
        config = AppConfig.from_yaml(Path(args.config))
    except ConfigurationError as e:
        setup_logger()
        logger.error(f"Invalid configuration: {e}")
        return 1

    setup_logger(config.log.level, config.log.file)

    # データベース初期化
    try:
        db_manager = DatabaseManager(config.database.path)
    except StoreUnavailableError as e:
        logger.error(f"Store unavailable: {e}")
        return 1

    collector = Collector(
        config,
        db_manager,
        enable_indexing=not args.no_index,
        enable_insights=not args.no_insights,
    )
    setup_signal_handlers(collector)

    logger.info("Starting efficiency cockpit collector...")
    collector.start()

    try:
        if args.duration:
            logger.info(f"Running for {args.duration} seconds...")
            time.sleep(args.duration)
        else:
            logger.info("Running indefinitely (Ctrl+C to stop)...")
            while True:
                time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Collection stopped by user")
    finally:
        collector.stop()
        db_manager.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
