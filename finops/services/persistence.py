"""
Snapshot Persistence - publishing boundary

The engine never owns storage. A ``SnapshotSink`` implementation (database,
document store, ...) receives entity rows keyed by ``(user_id, natural key)``
and upserts them; recommendations are replaced wholesale on every run so stale
suggestions never accumulate.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Tuple
import structlog

from finops.shared.core.periods import month_key
from finops.schemas.snapshot import KPISnapshot

logger = structlog.get_logger()

BATCH_SIZE = 500

# entity -> natural key fields (user_id is always part of the key)
NATURAL_KEYS: Dict[str, Tuple[str, ...]] = {
    "billing_accounts": ("name",),
    "projects": ("project_id",),
    "cost_by_project": ("project_id", "month"),
    "cost_by_service": ("service_id", "month"),
    "carbon_by_project": ("project_id", "usage_month"),
    "budgets": ("name",),
    "budget_utilization": ("budget_name", "month"),
    "anomalies": ("service_name", "project_id", "period"),
}


class SnapshotSink(ABC):
    @abstractmethod
    async def upsert(
        self,
        user_id: str,
        entity: str,
        rows: Sequence[Dict[str, Any]],
        key_fields: Tuple[str, ...]
    ) -> int:
        """Insert or update ``rows``; returns the number of rows written."""

    @abstractmethod
    async def replace_recommendations(self, user_id: str, rows: Sequence[Dict[str, Any]]) -> int:
        """Delete every stored recommendation for ``user_id``, then insert ``rows``."""


class SnapshotPublisher:
    def __init__(self, sink: SnapshotSink):
        self.sink = sink

    @staticmethod
    def entity_rows(snapshot: KPISnapshot) -> Dict[str, List[Dict[str, Any]]]:
        month = month_key(snapshot.performance_metrics.data_freshness.date())
        usage_month = snapshot.carbon_kpis.usage_month.isoformat() if snapshot.carbon_kpis.usage_month else None

        def dump(items, **extra) -> List[Dict[str, Any]]:
            return [{**item.model_dump(mode="json"), **extra} for item in items]

        return {
            "billing_accounts": dump(snapshot.billing_accounts),
            "projects": dump(snapshot.projects),
            "cost_by_project": dump(snapshot.cost_kpis.cost_by_project, month=month),
            "cost_by_service": dump(snapshot.cost_kpis.cost_by_service, month=month),
            "carbon_by_project": dump(snapshot.carbon_kpis.carbon_by_project, usage_month=usage_month),
            "budgets": dump(snapshot.budgets),
            "budget_utilization": dump(snapshot.budget_utilization, month=month),
            "anomalies": dump(snapshot.anomalies),
        }

    async def publish(self, user_id: str, snapshot: KPISnapshot) -> Dict[str, int]:
        written: Dict[str, int] = {}
        for entity, rows in self.entity_rows(snapshot).items():
            count = 0
            for i in range(0, len(rows), BATCH_SIZE):
                count += await self.sink.upsert(user_id, entity, rows[i : i + BATCH_SIZE], NATURAL_KEYS[entity])
            written[entity] = count

        # Replace-all, never merged with the previous run's set
        written["recommendations"] = await self.sink.replace_recommendations(
            user_id,
            [r.model_dump(mode="json") for r in snapshot.optimization_recommendations],
        )

        logger.info("snapshot_published", user_id=user_id, partial=snapshot.is_partial, **written)
        return written
