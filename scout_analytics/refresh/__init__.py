"""
Refresh Scheduler Module
"""
from .view_store import PublishedView, ViewStore, get_view_store
from .publisher import ViewPublisher
from .scheduler import (
    RefreshRunReport,
    RefreshScheduler,
    RefreshTrigger,
    ViewRefreshOutcome,
    init_refresh_scheduler,
)

__all__ = [
    "PublishedView",
    "ViewStore",
    "get_view_store",
    "ViewPublisher",
    "RefreshRunReport",
    "RefreshScheduler",
    "RefreshTrigger",
    "ViewRefreshOutcome",
    "init_refresh_scheduler",
]
