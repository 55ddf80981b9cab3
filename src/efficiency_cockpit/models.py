"""
Data models for efficiency-cockpit.

セッション・アクティビティ・コンテンツインデックス・インサイトの表現。
時刻はローカルタイムの naive datetime で扱う。
"""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from .file_types import ContentFileType, detect_file_type, detect_language


DEFAULT_REINDEX_THRESHOLD_SECONDS = 86400.0


def new_id() -> str:
    """エンティティID（uuid4 の16進文字列）を生成."""
    return uuid.uuid4().hex


class ActivityType(str, Enum):
    """アクティビティ種別"""

    APP_SWITCH = "appSwitch"
    WINDOW_FOCUS = "windowFocus"
    BROWSER_NAVIGATION = "browserNavigation"
    FILE_OPEN = "fileOpen"
    FILE_EDIT = "fileEdit"
    TERMINAL_COMMAND = "terminalCommand"
    GIT_COMMIT = "gitCommit"
    GIT_BRANCH = "gitBranch"
    AI_TOOL_USE = "aiToolUse"


class InsightType(str, Enum):
    """インサイト種別"""

    FOCUS_PATTERN = "focusPattern"
    CONTEXT_SWITCH_WARNING = "contextSwitchWarning"
    PRODUCTIVITY_TREND = "productivityTrend"
    PROJECT_PROGRESS = "projectProgress"
    AI_USAGE_PATTERN = "aiUsagePattern"
    RECOMMENDATION = "recommendation"

    @property
    def display_name(self) -> str:
        return {
            InsightType.FOCUS_PATTERN: "Focus Pattern",
            InsightType.CONTEXT_SWITCH_WARNING: "Context Switching",
            InsightType.PRODUCTIVITY_TREND: "Productivity Trend",
            InsightType.PROJECT_PROGRESS: "Project Progress",
            InsightType.AI_USAGE_PATTERN: "AI Usage",
            InsightType.RECOMMENDATION: "Recommendation",
        }[self]


@dataclass(frozen=True)
class ForegroundEvent:
    """OS監視から届くフォアグラウンド変化イベント"""

    bundle_id: str
    app_name: str
    window_title: Optional[str]
    timestamp: datetime


@dataclass
class AppSession:
    """
    アプリケーションセッション

    Attributes:
        app_bundle_id: アプリ識別子
        app_name: 表示名
        start_time: 開始時刻
        end_time: 終了時刻（未終了は None）
        total_duration: 終了時に end_time - start_time（秒）
        is_active: 開いているセッションか
        activity_ids: このセッションが所有するアクティビティID
        id: 主キー
    """

    app_bundle_id: str
    app_name: str
    start_time: datetime
    end_time: Optional[datetime] = None
    total_duration: float = 0.0
    is_active: bool = True
    activity_ids: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    def end(self, at: datetime) -> None:
        """セッションを終了（end_time が start_time より前にはならない）."""
        self.end_time = max(at, self.start_time)
        self.total_duration = (self.end_time - self.start_time).total_seconds()
        self.is_active = False

    def elapsed(self, now: datetime) -> float:
        """開始からの経過秒数（終了済みなら total_duration）."""
        if self.end_time is not None:
            return self.total_duration
        return max(0.0, (now - self.start_time).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "app_bundle_id": self.app_bundle_id,
            "app_name": self.app_name,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_duration": self.total_duration,
            "is_active": self.is_active,
        }


@dataclass
class Activity:
    """セッション内のサブイベント（ウィンドウタイトル変化など）"""

    type: ActivityType
    timestamp: datetime
    session_id: Optional[str] = None
    app_bundle_id: Optional[str] = None
    app_name: Optional[str] = None
    window_title: Optional[str] = None
    duration: Optional[float] = None
    id: str = field(default_factory=new_id)

    def close(self, at: datetime) -> None:
        self.duration = max(0.0, (at - self.timestamp).total_seconds())


def compute_relative_path(file_path: str, project_path: str) -> str:
    """
    プロジェクトルートからの相対パスを計算.

    file_path が project_path で始まる場合はその部分と先頭の "/" を取り除き、
    そうでなければ file_path をそのまま返す。
    """
    if file_path.startswith(project_path):
        relative = file_path[len(project_path):]
        if relative.startswith("/"):
            relative = relative[1:]
        return relative
    return file_path


def file_extension(file_name: str) -> str:
    """拡張子（ドットなし）を返す。".gitignore" のようなドットファイルは名前自体を拡張子とみなす."""
    if file_name.startswith(".") and file_name.count(".") == 1:
        return file_name[1:]
    return os.path.splitext(file_name)[1].lstrip(".")


def count_lines(content: str) -> int:
    """改行で区切った要素数（空文字列は1行）."""
    return content.count("\n") + 1


@dataclass
class ContentIndex:
    """
    ファイル1件分のインデックスエントリ

    同じパスの再スキャンは新規作成ではなく既存エントリの更新になる。
    """

    file_path: str
    project_path: str
    relative_path: str
    file_name: str
    file_extension: str
    content: str
    content_hash: str
    line_count: int
    file_type: ContentFileType
    language: Optional[str]
    last_modified: datetime
    last_indexed: datetime
    is_stale: bool = False
    indexing_failed: bool = False
    failure_reason: Optional[str] = None
    id: str = field(default_factory=new_id)

    @classmethod
    def create(
        cls,
        file_path: str,
        project_path: str,
        content: str,
        content_hash: str,
        last_modified: datetime,
        indexed_at: datetime,
    ) -> "ContentIndex":
        """パスと内容から派生フィールドを計算してエントリを作成."""
        name = os.path.basename(file_path)
        ext = file_extension(name)
        return cls(
            file_path=file_path,
            project_path=project_path,
            relative_path=compute_relative_path(file_path, project_path),
            file_name=name,
            file_extension=ext,
            content=content,
            content_hash=content_hash,
            line_count=count_lines(content),
            file_type=detect_file_type(ext),
            language=detect_language(ext),
            last_modified=last_modified,
            last_indexed=indexed_at,
        )

    @property
    def content_length(self) -> int:
        return len(self.content)

    @property
    def project_name(self) -> str:
        return os.path.basename(self.project_path.rstrip("/"))

    def needs_reindex(
        self,
        now: datetime,
        threshold_seconds: float = DEFAULT_REINDEX_THRESHOLD_SECONDS,
    ) -> bool:
        """stale フラグ、または最終インデックスからの経過が閾値を超えたら True."""
        return self.is_stale or (now - self.last_indexed).total_seconds() > threshold_seconds


@dataclass
class ProductivityInsight:
    """生成されたインサイト"""

    type: InsightType
    title: str
    content: str
    generated_at: datetime
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    is_read: bool = False
    is_dismissed: bool = False
    id: str = field(default_factory=new_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "content": self.content,
            "generated_at": self.generated_at.isoformat(),
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "is_read": self.is_read,
            "is_dismissed": self.is_dismissed,
        }


@dataclass
class DailyStats:
    """日次集計（永続化しない）"""

    date: date
    total_active_time: float = 0.0
    app_usage: dict[str, float] = field(default_factory=dict)
    focus_session_count: int = 0
    context_switch_count: int = 0

    def add_usage(self, bundle_id: str, seconds: float) -> None:
        self.total_active_time += seconds
        self.app_usage[bundle_id] = self.app_usage.get(bundle_id, 0.0) + seconds

    def top_apps(self, limit: int = 5) -> list[tuple[str, float]]:
        return sorted(self.app_usage.items(), key=lambda kv: kv[1], reverse=True)[:limit]

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "total_active_time": self.total_active_time,
            "app_usage": dict(self.app_usage),
            "focus_session_count": self.focus_session_count,
            "context_switch_count": self.context_switch_count,
        }


@dataclass(frozen=True)
class TrackingState:
    """プレゼンテーション層に公開するトラッキング状態のスナップショット"""

    is_tracking: bool = False
    current_session: Optional[AppSession] = None
    current_activity: Optional[Activity] = None
    unavailable_reason: Optional[str] = None
    last_error: Optional[str] = None
