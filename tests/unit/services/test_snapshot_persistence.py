"""
Tests for snapshot publishing (upsert entities, replace-all recommendations).
"""
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from finops.schemas.accounts import AccountInfo
from finops.schemas.costs import CarbonSummary, CostSummary, ProjectCostSummary
from finops.schemas.insights import Recommendation, RecommendationType
from finops.schemas.snapshot import KPISnapshot, PerformanceMetrics
from finops.services.persistence import NATURAL_KEYS, SnapshotPublisher, SnapshotSink


class InMemorySink(SnapshotSink):
    def __init__(self):
        self.tables = {}
        self.recommendations = {}

    async def upsert(self, user_id, entity, rows, key_fields):
        table = self.tables.setdefault(entity, {})
        for row in rows:
            table[(user_id,) + tuple(row[k] for k in key_fields)] = row
        return len(rows)

    async def replace_recommendations(self, user_id, rows):
        self.recommendations[user_id] = list(rows)
        return len(rows)


def snapshot_with(recommendations, project_cost="100"):
    return KPISnapshot(
        account_info=AccountInfo(email="ops@example.com"),
        cost_kpis=CostSummary(
            total_monthly_cost=Decimal(project_cost),
            cost_by_project=[ProjectCostSummary(project_id="web", project_name="Web", total_cost=Decimal(project_cost))],
        ),
        carbon_kpis=CarbonSummary(usage_month=date(2026, 8, 1)),
        optimization_recommendations=recommendations,
        performance_metrics=PerformanceMetrics(
            data_freshness=datetime(2026, 9, 24, tzinfo=timezone.utc),
            api_calls_count=1,
            processing_time_ms=5,
        ),
    )


def rec(rec_id):
    return Recommendation(id=rec_id, type=RecommendationType.COST, title=rec_id, description="")


@pytest.mark.asyncio
async def test_recommendations_are_replaced_not_merged():
    sink = InMemorySink()
    publisher = SnapshotPublisher(sink)

    await publisher.publish("u1", snapshot_with([rec("cost-opt-0"), rec("service-opt-0")]))
    await publisher.publish("u1", snapshot_with([rec("carbon-opt-0")]))

    assert [r["id"] for r in sink.recommendations["u1"]] == ["carbon-opt-0"]


@pytest.mark.asyncio
async def test_entities_upsert_on_natural_key():
    sink = InMemorySink()
    publisher = SnapshotPublisher(sink)

    await publisher.publish("u1", snapshot_with([], project_cost="100"))
    written = await publisher.publish("u1", snapshot_with([], project_cost="250"))

    rows = sink.tables["cost_by_project"]
    assert list(rows) == [("u1", "web", "2026-09")]
    assert rows[("u1", "web", "2026-09")]["total_cost"] == "250"
    assert written["cost_by_project"] == 1
    assert written["recommendations"] == 0


def test_every_entity_has_a_natural_key():
    rows = SnapshotPublisher.entity_rows(snapshot_with([]))

    assert set(rows) == set(NATURAL_KEYS)
    assert rows["cost_by_project"][0]["month"] == "2026-09"
