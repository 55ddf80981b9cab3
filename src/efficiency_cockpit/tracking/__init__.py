"""Foreground activity tracking: observers, session tracker, analyzer and writer."""

from .analyzer import ContextAnalyzer, DayCounters
from .health_monitor import HealthMonitor
from .observer import BaseObserver, PollingForegroundObserver, PushObserver
from .session_tracker import SessionTracker
from .writer import SessionWriter

__all__ = [
    "BaseObserver",
    "ContextAnalyzer",
    "DayCounters",
    "HealthMonitor",
    "PollingForegroundObserver",
    "PushObserver",
    "SessionTracker",
    "SessionWriter",
]
