"""
Scout Retail Analytics Pipeline

Aggregation, refresh, anomaly detection and access control over retail
transaction facts.
"""

__version__ = "1.0.0"
