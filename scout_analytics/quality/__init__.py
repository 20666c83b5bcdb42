"""
Data Quality Module
"""
from .anomaly_detector import AnomalyDetector, AnomalyFinding, AnomalyReport
from .anomaly_store import DetectionRunResult, persist_findings, run_anomaly_detection
from .alerts import SystemAlert, check_system_alerts, system_health

__all__ = [
    "AnomalyDetector",
    "AnomalyFinding",
    "AnomalyReport",
    "DetectionRunResult",
    "persist_findings",
    "run_anomaly_detection",
    "SystemAlert",
    "check_system_alerts",
    "system_health",
]
