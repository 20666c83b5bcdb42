"""
Maintenance Module
"""
from .retention import PurgeResult, purge_old_data, run_retention_purge, subtract_months
from .housekeeping import flag_fmcg_transactions

__all__ = [
    "PurgeResult",
    "purge_old_data",
    "run_retention_purge",
    "subtract_months",
    "flag_fmcg_transactions",
]
