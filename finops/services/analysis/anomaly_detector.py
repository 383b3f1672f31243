"""
Cost Anomaly Detector

Interquartile-range outlier test over daily cost records, one partition per
service. Quartiles are positional picks from the ascending cost list rather
than interpolated, so results are stable for small samples.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Sequence
import pandas as pd
import structlog

from finops.schemas.costs import CostRecord
from finops.schemas.insights import Anomaly, AnomalySeverity, AnomalyType

logger = structlog.get_logger()

MIN_SAMPLES = 3
IQR_MULTIPLIER = Decimal("1.5")
CRITICAL_MULTIPLIER = Decimal("2")


class IQRBounds:
    __slots__ = ("median", "q1", "q3", "lower", "upper")

    def __init__(self, costs: Sequence[Decimal]):
        ordered = sorted(costs)
        n = len(ordered)
        self.median = ordered[n // 2]
        self.q1 = ordered[n // 4]
        self.q3 = ordered[(3 * n) // 4]
        iqr = self.q3 - self.q1
        self.lower = self.q1 - IQR_MULTIPLIER * iqr
        self.upper = self.q3 + IQR_MULTIPLIER * iqr

    @property
    def iqr(self) -> Decimal:
        return self.q3 - self.q1


class AnomalyDetector:
    """
    Flags cost records outside [Q1 - 1.5 IQR, Q3 + 1.5 IQR] within their service.

    Severity only sharpens for spikes: a spike above twice the upper bound is
    critical, everything else (drops included) is medium.
    """

    @staticmethod
    def detect(records: Sequence[CostRecord], now: datetime) -> List[Anomaly]:
        if not records:
            return []

        df = pd.DataFrame([
            {
                "service_name": r.service_name,
                "service_id": r.service_id,
                "project_id": r.project_id,
                "cost": r.cost,
                "usage_date": r.usage_date,
                "currency": r.currency,
            }
            for r in records
        ])

        anomalies: List[Anomaly] = []
        for service_name, group in df.groupby("service_name", sort=False):
            if len(group) < MIN_SAMPLES:
                continue

            bounds = IQRBounds(group["cost"].tolist())
            for row in group.itertuples(index=False):
                cost = row.cost
                if cost > bounds.upper:
                    anomaly_type = AnomalyType.SPIKE
                    severity = (
                        AnomalySeverity.CRITICAL
                        if cost > CRITICAL_MULTIPLIER * bounds.upper
                        else AnomalySeverity.MEDIUM
                    )
                elif cost < bounds.lower:
                    anomaly_type = AnomalyType.DROP
                    severity = AnomalySeverity.MEDIUM
                else:
                    continue

                variance = cost - bounds.median
                anomalies.append(Anomaly(
                    service_name=service_name,
                    service_id=row.service_id,
                    project_id=row.project_id,
                    anomaly_type=anomaly_type,
                    severity=severity,
                    actual_cost=cost,
                    expected_cost=bounds.median,
                    variance_amount=variance,
                    variance_percent=float(variance / bounds.median * 100) if bounds.median else 0.0,
                    period=row.usage_date,
                    detected_at=now,
                    currency=row.currency,
                ))

        logger.info(
            "anomaly_detection_complete",
            records=len(records),
            services=int(df["service_name"].nunique()),
            anomalies=len(anomalies),
            critical=sum(1 for a in anomalies if a.severity == AnomalySeverity.CRITICAL),
        )
        return anomalies
