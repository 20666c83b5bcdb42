"""
Serving Module
"""
from .queries import AnomalyPage, AnomalyQuery, ViewPage, ViewQuery, query_anomalies, query_view

__all__ = [
    "AnomalyPage",
    "AnomalyQuery",
    "ViewPage",
    "ViewQuery",
    "query_anomalies",
    "query_view",
]
