"""
Access Control Module
"""
from .context import CallerContext, Role, StoreGrant, to_naive_utc
from .policy import AccessPolicy, AccessScope
from .grants import (
    build_caller_context,
    grant_store_access,
    load_store_grants,
    revoke_store_access,
    sweep_expired_grants,
)

__all__ = [
    "CallerContext",
    "Role",
    "StoreGrant",
    "to_naive_utc",
    "AccessPolicy",
    "AccessScope",
    "build_caller_context",
    "grant_store_access",
    "load_store_grants",
    "revoke_store_access",
    "sweep_expired_grants",
]
