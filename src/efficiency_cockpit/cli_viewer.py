#!/usr/bin/env python3
"""
CLI Viewer for efficiency-cockpit.

Usage:
    cockpit-viewer summary [--date DATE]
    cockpit-viewer sessions [--date DATE] [--limit N]
    cockpit-viewer search QUERY [--project PATH] [--limit N]
    cockpit-viewer insights [--all] [--read ID] [--dismiss ID] [--generate]
    cockpit-viewer index [--scan] [--stale PROJECT]
"""

import argparse
import sys
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import List, Optional

from .config import AppConfig
from .database.db_manager import DatabaseManager
from .exceptions import ConfigurationError, StorageError, StoreUnavailableError
from .indexing.content_indexer import ContentIndexer
from .insights.generator import InsightGenerator
from .utils.timeutil import format_clock, format_duration


def _parse_date(value: Optional[str]) -> date:
    if value is None:
        return datetime.now().date()
    return datetime.strptime(value, "%Y-%m-%d").date()


def show_daily_summary(db: DatabaseManager, day: Optional[str] = None) -> None:
    """日別サマリーを表示."""
    target = _parse_date(day)

    rows = db.daily_app_usage(target, now=datetime.now())[:20]

    if not rows:
        print(f"\nNo data found for {target}")
        return

    print(f"\n=== Daily Summary for {target} ===\n")
    print(f"{'App':<40} {'Total Time':<12} {'Sessions':<8}")
    print("-" * 62)

    total_seconds = 0.0
    for row in rows:
        name = (row["app_name"] or row["app_bundle_id"])[:38]
        total_seconds += row["total_seconds"]
        print(f"{name:<40} {format_clock(row['total_seconds']):<12} {row['session_count']:<8}")

    print("-" * 62)
    print(f"{'TOTAL':<40} {format_clock(total_seconds):<12}")


def show_sessions(db: DatabaseManager, day: Optional[str] = None, limit: int = 50) -> None:
    """セッション一覧を表示."""
    target = _parse_date(day)
    start = datetime.combine(target, time.min)
    sessions = db.get_sessions_between(start, start + timedelta(days=1))[-limit:]

    if not sessions:
        print(f"\nNo sessions found for {target}")
        return

    print(f"\n=== Sessions for {target} ===\n")
    print(f"{'Start':<10} {'End':<10} {'Duration':<10} {'App':<40}")
    print("-" * 72)
    for session in sessions:
        end = session.end_time.strftime("%H:%M:%S") if session.end_time else "(open)"
        duration = format_duration(session.total_duration) if session.end_time else "-"
        print(
            f"{session.start_time.strftime('%H:%M:%S'):<10} {end:<10} "
            f"{duration:<10} {session.app_name[:40]:<40}"
        )


def show_search(
    indexer: ContentIndexer, query: str, project: Optional[str] = None, limit: int = 20
) -> None:
    """インデックスを検索して表示."""
    results = indexer.search(query, limit=limit, project_path=project)
    if not results:
        print(f"\nNo matches for '{query}'")
        return

    print(f"\n=== {len(results)} match(es) for '{query}' ===\n")
    for entry in results:
        language = entry.language or entry.file_type.display_name
        print(f"{entry.project_name}/{entry.relative_path}  [{language}, {entry.line_count} lines]")


def show_insights(generator: InsightGenerator, include_dismissed: bool = False) -> None:
    """インサイト一覧を表示."""
    insights = generator.list_insights(include_dismissed=include_dismissed)
    if not insights:
        print("\nNo insights yet")
        return

    print("\n=== Insights ===\n")
    for insight in insights:
        marker = " " if insight.is_read else "*"
        if insight.is_dismissed:
            marker = "x"
        print(
            f"{marker} {insight.generated_at.strftime('%Y-%m-%d %H:%M')} "
            f"[{insight.type.display_name}] {insight.title}  ({insight.id})"
        )
        print(f"    {insight.content}")


def show_index_stats(indexer: ContentIndexer) -> None:
    """インデックス統計を表示."""
    stats = indexer.get_stats()
    last = stats.last_indexed.strftime("%Y-%m-%d %H:%M:%S") if stats.last_indexed else "never"
    print("\n=== Content Index ===\n")
    print(f"Files:        {stats.total_files}")
    print(f"Projects:     {stats.total_projects}")
    print(f"Size:         {stats.formatted_size}")
    print(f"Last indexed: {last}")


def main(argv: Optional[List[str]] = None) -> int:
    """メインエントリーポイント."""
    parser = argparse.ArgumentParser(description="Efficiency Cockpit CLI Viewer")
    parser.add_argument(
        "--config", type=str, default="config/config.yaml", help="Config file path"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # summary コマンド
    summary_parser = subparsers.add_parser("summary", help="Show daily app usage")
    summary_parser.add_argument("--date", type=str, help="Date (YYYY-MM-DD, default: today)")

    # sessions コマンド
    sessions_parser = subparsers.add_parser("sessions", help="List sessions of a day")
    sessions_parser.add_argument("--date", type=str, help="Date (YYYY-MM-DD, default: today)")
    sessions_parser.add_argument("--limit", type=int, default=50, help="Max rows (default: 50)")

    # search コマンド
    search_parser = subparsers.add_parser("search", help="Search indexed content")
    search_parser.add_argument("query", type=str, help="Text to search for")
    search_parser.add_argument("--project", type=str, help="Restrict to a project path")
    search_parser.add_argument("--limit", type=int, default=20, help="Max results (default: 20)")

    # insights コマンド
    insights_parser = subparsers.add_parser("insights", help="List and manage insights")
    insights_parser.add_argument("--all", action="store_true", help="Include dismissed insights")
    insights_parser.add_argument("--read", type=str, metavar="ID", help="Mark an insight read")
    insights_parser.add_argument("--dismiss", type=str, metavar="ID", help="Dismiss an insight")
    insights_parser.add_argument("--generate", action="store_true", help="Generate insights now")

    # index コマンド
    index_parser = subparsers.add_parser("index", help="Show or update the content index")
    index_parser.add_argument("--scan", action="store_true", help="Scan configured projects now")
    index_parser.add_argument("--stale", type=str, metavar="PROJECT", help="Mark a project stale")

    args = parser.parse_args(argv)

    config_path = Path(args.config)
    try:
        config = AppConfig.from_yaml(config_path) if config_path.exists() else AppConfig.from_dict({})
    except ConfigurationError as e:
        print(f"Error: {e}")
        return 1

    # データベース接続
    db_path = config.database.path
    if not Path(db_path).exists() and not (args.command == "index" and args.scan):
        print(f"Error: Database not found: {db_path}")
        print("Please run the collector first to generate data.")
        return 1

    try:
        db = DatabaseManager(db_path)
    except StoreUnavailableError as e:
        print(f"Error: {e}")
        return 1

    indexer = ContentIndexer(db, config.indexing)
    generator = InsightGenerator(db, config.insights)

    # コマンド実行
    try:
        if args.command == "summary":
            show_daily_summary(db, args.date)
        elif args.command == "sessions":
            show_sessions(db, args.date, args.limit)
        elif args.command == "search":
            show_search(indexer, args.query, args.project, args.limit)
        elif args.command == "insights":
            if args.read and not generator.mark_read(args.read):
                print(f"Insight not found: {args.read}")
            if args.dismiss and not generator.dismiss(args.dismiss):
                print(f"Insight not found: {args.dismiss}")
            if args.generate:
                created = generator.generate()
                print(f"Generated {len(created)} insight(s)")
            show_insights(generator, args.all)
        elif args.command == "index":
            if args.stale:
                count = indexer.mark_project_stale(args.stale)
                print(f"Marked {count} file(s) stale")
            if args.scan:
                result = indexer.scan_all()
                print(
                    f"Indexed {result.indexed}, unchanged {result.unchanged}, "
                    f"skipped {result.skipped}, failed {result.failed}"
                )
            show_index_stats(indexer)
    except StorageError as e:
        print(f"Error: {e}")
        return 1
    finally:
        db.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
