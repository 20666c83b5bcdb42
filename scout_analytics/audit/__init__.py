"""
Audit Module
"""
from .recorder import (
    build_audit_entry,
    install_audit_listener,
    record_audit,
    remove_audit_listener,
    row_snapshot,
)

__all__ = [
    "build_audit_entry",
    "install_audit_listener",
    "record_audit",
    "remove_audit_listener",
    "row_snapshot",
]
