"""日付境界の計算と時間表示のヘルパー."""

from datetime import date, datetime, time, timedelta


def start_of_day(ts: datetime) -> datetime:
    return datetime.combine(ts.date(), time.min)


def split_by_day(start: datetime, end: datetime) -> list[tuple[date, float]]:
    """
    区間をローカル日付の境界（0時）で分割.

    Args:
        start: 開始時刻
        end: 終了時刻

    Returns:
        (日付, 秒数) のリスト。end <= start の場合は空
    """
    parts: list[tuple[date, float]] = []
    cursor = start
    while cursor < end:
        boundary = start_of_day(cursor) + timedelta(days=1)
        segment_end = min(boundary, end)
        parts.append((cursor.date(), (segment_end - cursor).total_seconds()))
        cursor = segment_end
    return parts


def format_duration(seconds: float) -> str:
    """秒を "Xh Ym" / "Ym" 形式に変換."""
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_clock(seconds: float) -> str:
    """秒を時間:分:秒に変換."""
    total = int(seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    secs = total % 60
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
