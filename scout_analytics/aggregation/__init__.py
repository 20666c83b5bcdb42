"""
Aggregation Engine
"""
from .snapshot import FactSnapshot, load_fact_snapshot, recompute_transaction_totals
from .integrity import IntegrityReport, PreparedFacts, prepare_facts
from .registry import (
    VIEW_REGISTRY,
    RefreshCadence,
    ViewDefinition,
    get_view_definition,
    resolve_refresh_order,
    views_for_cadence,
)
from .insights import customer_insights, market_share

__all__ = [
    "FactSnapshot",
    "load_fact_snapshot",
    "recompute_transaction_totals",
    "IntegrityReport",
    "PreparedFacts",
    "prepare_facts",
    "VIEW_REGISTRY",
    "RefreshCadence",
    "ViewDefinition",
    "get_view_definition",
    "resolve_refresh_order",
    "views_for_cadence",
    "customer_insights",
    "market_share",
]
