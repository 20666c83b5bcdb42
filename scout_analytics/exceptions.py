"""
Exception hierarchy for the analytics pipeline.

Data-integrity problems are not exceptions: malformed rows are excluded and
counted during aggregation. Everything here is either surfaced to a caller
(access and view lookups) or caught at a run boundary (refresh, detection).
"""

from typing import Optional


class ScoutAnalyticsError(Exception):
    """Base class for pipeline errors"""


class AccessDenied(ScoutAnalyticsError):
    """Caller asked for rows outside their role, grants or time window."""

    def __init__(self, reason: str, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or reason
        super().__init__(f"{reason}: {self.detail}")


class UnknownViewError(ScoutAnalyticsError):
    """No view is registered under the requested name"""

    def __init__(self, view_name: str):
        self.view_name = view_name
        super().__init__(f"Unknown view: {view_name}")


class ViewNotReadyError(ScoutAnalyticsError):
    """View is registered but has never been published"""

    def __init__(self, view_name: str):
        self.view_name = view_name
        super().__init__(f"View has not been published yet: {view_name}")


class RefreshTimeoutError(ScoutAnalyticsError):
    """A view rebuild or detection run exceeded its time bound"""

    def __init__(self, target: str, timeout_seconds: float):
        self.target = target
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{target} exceeded {timeout_seconds}s")


class ImmutableAuditError(ScoutAnalyticsError):
    """Audit entries are append-only"""


class InvalidQueryError(ScoutAnalyticsError):
    """A view query uses a filter the view does not support"""

    def __init__(self, view_name: str, detail: str):
        self.view_name = view_name
        self.detail = detail
        super().__init__(f"{view_name}: {detail}")
