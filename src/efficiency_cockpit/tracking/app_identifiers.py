"""
アプリ識別子の分類とアクティビティ種別の判定.
"""

from typing import Optional

from ..models import ActivityType
from ..utils.privacy import extract_domain


BROWSERS: frozenset[str] = frozenset(
    [
        "com.google.Chrome",
        "com.google.Chrome.canary",
        "com.apple.Safari",
        "company.thebrowser.Browser",
        "org.mozilla.firefox",
        "com.microsoft.edgemac",
        "com.brave.Browser",
        # Linux / Windows のプロセス名
        "chrome", "chrome.exe", "firefox", "firefox.exe", "msedge.exe", "brave", "brave.exe",
    ]
)

IDES: frozenset[str] = frozenset(
    [
        "com.microsoft.VSCode",
        "com.microsoft.VSCodeInsiders",
        "com.todesktop.230313mzl4w4u92",  # Cursor
        "com.apple.dt.Xcode",
        "com.sublimetext.4",
        "com.sublimetext.3",
        "dev.zed.Zed",
        "code", "code.exe", "cursor", "zed",
    ]
)

JETBRAINS_PREFIX = "com.jetbrains."

TERMINALS: frozenset[str] = frozenset(
    [
        "com.apple.Terminal",
        "com.googlecode.iterm2",
        "dev.warp.Warp-Stable",
        "net.kovidgoyal.kitty",
        "co.zeit.hyper",
        "com.github.wez.wezterm",
        "io.alacritty",
        "gnome-terminal-server", "konsole", "kitty", "alacritty", "wezterm-gui",
        "windowsterminal.exe",
    ]
)

AI_TOOLS: frozenset[str] = frozenset(
    [
        "com.anthropic.claudefordesktop",
        "com.openai.chat",
        "ai.perplexity.mac",
        "com.lencx.chatgpt",
        "com.github.Copilot",
    ]
)

AI_DOMAINS: tuple[str, ...] = (
    "chat.openai.com",
    "chatgpt.com",
    "claude.ai",
    "perplexity.ai",
    "gemini.google.com",
    "copilot.github.com",
    "poe.com",
    "phind.com",
)

AI_CLI_KEYWORDS: tuple[str, ...] = ("claude", "codex", "gemini", "copilot", "aider", "gpt")

IDE_AI_KEYWORDS: tuple[str, ...] = ("composer", "chat", "copilot")


def is_ide(bundle_id: str) -> bool:
    return bundle_id in IDES or bundle_id.startswith(JETBRAINS_PREFIX)


def is_ai_site(title: Optional[str]) -> bool:
    """ブラウザのタイトルから AI サービス利用を推定."""
    if not title:
        return False
    lower = title.lower()
    domain = extract_domain(title)
    if domain and any(domain.endswith(d) for d in AI_DOMAINS):
        return True
    return any(d in lower for d in AI_DOMAINS)


def classify_activity(
    bundle_id: str, window_title: Optional[str], is_title_change: bool
) -> ActivityType:
    """
    フォアグラウンド変化をアクティビティ種別に分類.

    Args:
        bundle_id: アプリ識別子
        window_title: ウィンドウタイトル
        is_title_change: 同一アプリ内のタイトル変化か

    Returns:
        アクティビティ種別
    """
    title = (window_title or "").lower()

    if bundle_id in AI_TOOLS:
        return ActivityType.AI_TOOL_USE

    if bundle_id in BROWSERS:
        if is_ai_site(window_title):
            return ActivityType.AI_TOOL_USE
        return ActivityType.BROWSER_NAVIGATION

    if bundle_id in TERMINALS:
        if any(keyword in title for keyword in AI_CLI_KEYWORDS):
            return ActivityType.AI_TOOL_USE
        return ActivityType.TERMINAL_COMMAND

    if is_ide(bundle_id):
        if any(keyword in title for keyword in IDE_AI_KEYWORDS):
            return ActivityType.AI_TOOL_USE
        return ActivityType.WINDOW_FOCUS if is_title_change else ActivityType.FILE_OPEN

    return ActivityType.WINDOW_FOCUS if is_title_change else ActivityType.APP_SWITCH
