"""
Anomaly Detection Module

Rule-based and statistical detection over prepared transactions.
Implements:
- Suspicious transactions (amount above mean + z × sample stddev)
- Unusual store patterns (store average far from the network average)
- High substitution rates per store

Rules are pure functions of (transactions, as_of, settings). Persistence
and lifecycle of findings live in anomaly_store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import polars as pl
import structlog

from scout_analytics.aggregation.expressions import in_window
from scout_analytics.aggregation.integrity import PreparedFacts
from scout_analytics.config.settings import AnomalySettings, get_settings
from scout_analytics.database.models import AnomalySeverity, AnomalyType

logger = structlog.get_logger(__name__)


@dataclass
class AnomalyFinding:
    """Single anomaly detected in one run"""
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    subject: str
    window: str
    store_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> str:
        """Stable identity across runs"""
        return f"{self.anomaly_type.value}:{self.subject}:{self.window}"

    @property
    def is_high_severity(self) -> bool:
        return self.severity == AnomalySeverity.HIGH


@dataclass
class AnomalyReport:
    """Complete anomaly detection report"""
    as_of: datetime
    started_at: datetime
    completed_at: datetime
    types_checked: List[AnomalyType]
    findings: List[AnomalyFinding] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)

    @property
    def anomalies_found(self) -> int:
        return len(self.findings)

    @property
    def high_severity_count(self) -> int:
        return sum(1 for f in self.findings if f.is_high_severity)

    @property
    def has_high_severity(self) -> bool:
        return self.high_severity_count > 0

    def counts_by_type(self) -> Dict[str, int]:
        counts = {t.value: 0 for t in self.types_checked}
        for finding in self.findings:
            counts[finding.anomaly_type.value] += 1
        return counts


def _window_label(days: int) -> str:
    return f"{days}d"


def _store_subject(store_id: int) -> str:
    return f"store:{store_id}"


# =============================================================================
# RULES
# =============================================================================

def detect_suspicious_transactions(
    transactions: pl.DataFrame,
    as_of: datetime,
    settings: AnomalySettings,
) -> Tuple[List[AnomalyFinding], Dict[str, Any]]:
    """
    Flag recent transactions whose amount is strictly above
    mean + z_threshold × sample stddev of the baseline window.

    Severity is high above high_severity_multiplier × threshold. No
    findings when the baseline holds fewer than two transactions.
    """
    baseline = in_window(transactions, "transaction_ts", as_of, settings.baseline_days)
    amounts = baseline["total_amount"].to_numpy().astype(float)

    if len(amounts) < 2:
        logger.debug("Baseline too small for amount threshold", baseline_transactions=len(amounts))
        return [], {"baseline_transactions": len(amounts), "high_value_threshold": None}

    mean = float(np.mean(amounts))
    std = float(np.std(amounts, ddof=1))
    threshold = mean + settings.z_threshold * std
    high_threshold = threshold * settings.high_severity_multiplier

    scan = in_window(transactions, "transaction_ts", as_of, settings.scan_days).filter(
        pl.col("total_amount") > threshold
    )

    window = _window_label(settings.scan_days)
    findings = [
        AnomalyFinding(
            anomaly_type=AnomalyType.SUSPICIOUS_TRANSACTION,
            severity=AnomalySeverity.HIGH if row["total_amount"] > high_threshold else AnomalySeverity.MEDIUM,
            subject=row["transaction_id"],
            window=window,
            store_id=row["store_id"],
            details={
                "transaction_id": row["transaction_id"],
                "store_id": row["store_id"],
                "amount": round(row["total_amount"], 2),
                "threshold": round(threshold, 2),
                "transaction_ts": row["transaction_ts"].isoformat(),
            },
        )
        for row in scan.sort(["transaction_ts", "transaction_id"]).iter_rows(named=True)
    ]

    stats = {
        "baseline_transactions": len(amounts),
        "baseline_mean": round(mean, 2),
        "baseline_std": round(std, 2),
        "high_value_threshold": round(threshold, 2),
    }
    return findings, stats


def _store_activity(transactions: pl.DataFrame, as_of: datetime, days: int) -> pl.DataFrame:
    return (
        in_window(transactions, "transaction_ts", as_of, days)
        .group_by("store_id")
        .agg([
            pl.len().alias("transaction_count"),
            pl.col("total_amount").mean().alias("avg_amount"),
            pl.col("substitution_occurred").sum().alias("substitutions"),
        ])
        .sort("store_id")
    )


def detect_unusual_patterns(
    transactions: pl.DataFrame,
    as_of: datetime,
    settings: AnomalySettings,
) -> Tuple[List[AnomalyFinding], Dict[str, Any]]:
    """
    Flag stores whose average amount deviates from the network mean by
    more than store_deviation_sigma population standard deviations.

    Only stores with at least pattern_min_transactions in the scan window
    take part, both in the statistics and as candidates.
    """
    stores = _store_activity(transactions, as_of, settings.scan_days).filter(
        pl.col("transaction_count") >= settings.pattern_min_transactions
    )
    averages = stores["avg_amount"].to_numpy().astype(float)

    if len(averages) < 2:
        return [], {"eligible_stores": len(averages)}

    mean = float(np.mean(averages))
    std = float(np.std(averages, ddof=0))
    stats = {"eligible_stores": len(averages), "store_avg_mean": round(mean, 2), "store_avg_std": round(std, 2)}
    if std == 0:
        return [], stats

    window = _window_label(settings.scan_days)
    findings = []
    for row in stores.iter_rows(named=True):
        deviation = abs(row["avg_amount"] - mean)
        if deviation > settings.store_deviation_sigma * std:
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.UNUSUAL_PATTERN,
                severity=AnomalySeverity.MEDIUM,
                subject=_store_subject(row["store_id"]),
                window=window,
                store_id=row["store_id"],
                details={
                    "store_id": row["store_id"],
                    "store_avg_amount": round(row["avg_amount"], 2),
                    "overall_avg_amount": round(mean, 2),
                    "deviation_factor": round(deviation / std, 2),
                    "transaction_count": row["transaction_count"],
                },
            ))
    return findings, stats


def detect_high_substitution(
    transactions: pl.DataFrame,
    as_of: datetime,
    settings: AnomalySettings,
) -> Tuple[List[AnomalyFinding], Dict[str, Any]]:
    """Flag stores whose substitution rate is above the configured percent."""
    stores = _store_activity(transactions, as_of, settings.scan_days).filter(
        pl.col("transaction_count") >= settings.substitution_min_transactions
    )

    window = _window_label(settings.scan_days)
    findings = []
    for row in stores.iter_rows(named=True):
        rate = row["substitutions"] * 100 / row["transaction_count"]
        if rate > settings.substitution_rate_percent:
            findings.append(AnomalyFinding(
                anomaly_type=AnomalyType.HIGH_SUBSTITUTION_RATE,
                severity=AnomalySeverity.LOW,
                subject=_store_subject(row["store_id"]),
                window=window,
                store_id=row["store_id"],
                details={
                    "store_id": row["store_id"],
                    "substitution_rate": round(rate, 2),
                    "transaction_count": row["transaction_count"],
                },
            ))
    return findings, {"eligible_stores": stores.height}


Rule = Callable[[pl.DataFrame, datetime, AnomalySettings], Tuple[List[AnomalyFinding], Dict[str, Any]]]

RULES: Dict[AnomalyType, Rule] = {
    AnomalyType.SUSPICIOUS_TRANSACTION: detect_suspicious_transactions,
    AnomalyType.UNUSUAL_PATTERN: detect_unusual_patterns,
    AnomalyType.HIGH_SUBSTITUTION_RATE: detect_high_substitution,
}


class AnomalyDetector:
    """
    Runs the registered anomaly rules over a set of prepared facts.

    Example:
        detector = AnomalyDetector()
        report = detector.detect(prepared, as_of=datetime.utcnow())
    """

    def __init__(self, settings: Optional[AnomalySettings] = None):
        self.settings = settings or get_settings().anomaly

    @property
    def lookback_days(self) -> int:
        """Widest window the rules read"""
        return max(self.settings.baseline_days, self.settings.scan_days)

    def detect(
        self,
        facts: PreparedFacts,
        as_of: Optional[datetime] = None,
        types: Optional[Iterable[AnomalyType]] = None,
    ) -> AnomalyReport:
        """
        Run detection.

        Args:
            facts: Prepared facts covering at least lookback_days
            as_of: Evaluation time (defaults to the facts' as_of)
            types: Rule types to run (default: all)
        """
        started_at = datetime.utcnow()
        as_of = as_of or facts.as_of
        selected = list(types) if types is not None else list(RULES)

        findings: List[AnomalyFinding] = []
        statistics: Dict[str, Any] = {}
        for anomaly_type in selected:
            rule_findings, rule_stats = RULES[anomaly_type](facts.transactions, as_of, self.settings)
            findings.extend(rule_findings)
            statistics[anomaly_type.value] = rule_stats
            logger.debug("Rule evaluated", rule=anomaly_type.value, findings=len(rule_findings))

        report = AnomalyReport(
            as_of=as_of,
            started_at=started_at,
            completed_at=datetime.utcnow(),
            types_checked=selected,
            findings=findings,
            statistics=statistics,
        )

        if report.has_high_severity:
            logger.warning(
                "High severity anomalies detected",
                high_severity=report.high_severity_count,
                total_anomalies=report.anomalies_found,
            )
        else:
            logger.info("Anomaly detection complete", anomalies=report.anomalies_found, **report.counts_by_type())

        return report
