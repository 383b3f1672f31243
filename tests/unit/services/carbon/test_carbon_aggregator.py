"""
Tests for the carbon footprint aggregator (lagged month, per-account isolation).
"""
import pytest
from datetime import date
from decimal import Decimal

from finops.schemas.costs import Trend
from finops.services.carbon.aggregator import CarbonAggregator

ACCOUNT_1 = "AAAAAA-111111-000001"
ACCOUNT_2 = "AAAAAA-222222-000002"
CARBON_TABLE = "greenops-ai-dashboard.carbon_footprint.carbon_footprint"


def carbon_responder(per_account, query_account):
    def responder(tag, table, sql):
        assert table == CARBON_TABLE
        data = per_account.get(query_account(sql))
        if data is None or isinstance(data, Exception):
            return data or RuntimeError("404 Not found: Table carbon_footprint")
        return data.get(tag, [])
    return responder


def carbon_data(total, projects=(), services=(), months=()):
    return {
        "carbon_total": [{"total_carbon": total}],
        "carbon_by_project": [
            {"project_id": pid, "project_number": "", "total_carbon": kg, "prior_carbon": prior}
            for pid, kg, prior in projects
        ],
        "carbon_by_service": [
            {"service_id": sid, "service_name": name, "total_carbon": kg, "projects_count": count}
            for sid, name, kg, count in services
        ],
        "carbon_monthly": [{"usage_month": m, "total_carbon": kg} for m, kg in months],
    }


@pytest.mark.asyncio
async def test_carbon_uses_previous_month(ctx, settings, now, make_account, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({ACCOUNT_1: carbon_data(50)}, query_account))

    collection = await CarbonAggregator(queries, settings).collect(ctx, [make_account(ACCOUNT_1)], [], now)

    assert collection.summary.usage_month == date(2026, 8, 1)
    total_query = next(q for q in queries.queries if "finops:carbon_total" in q)
    assert "usage_month = DATE('2026-08-01')" in total_query
    assert f"billing_account_id = '{ACCOUNT_1}'" in total_query
    assert "market_based" in total_query


@pytest.mark.asyncio
async def test_carbon_percentages_relative_to_carbon_total(ctx, settings, now, make_account, make_project, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({
        ACCOUNT_1: carbon_data(
            "80",
            projects=[("web", "60", "60"), ("batch", "20", "10")],
            services=[("svc-gce", "Compute Engine", "70", 2), ("svc-gcs", "Cloud Storage", "10", 1)],
        ),
    }, query_account))
    projects = [make_project("web", ACCOUNT_1, name="Web Frontend")]

    collection = await CarbonAggregator(queries, settings).collect(ctx, [make_account(ACCOUNT_1)], projects, now)
    summary = collection.summary

    assert summary.total_monthly_carbon == Decimal("80")
    assert [p.project_id for p in summary.carbon_by_project] == ["web", "batch"]
    assert summary.carbon_by_project[0].percentage_of_total == pytest.approx(75.0)
    assert summary.carbon_by_project[0].project_name == "Web Frontend"
    assert summary.carbon_by_project[1].project_name == "batch"
    assert summary.carbon_by_project[0].trend == Trend.STABLE
    assert summary.carbon_by_project[1].trend == Trend.INCREASING
    assert summary.carbon_by_service[0].percentage_of_total == pytest.approx(87.5)
    assert collection.carbon_by_account == {ACCOUNT_1: Decimal("80")}


@pytest.mark.asyncio
async def test_carbon_failure_is_isolated_per_account(ctx, settings, now, make_account, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({
        ACCOUNT_1: RuntimeError("Access Denied: Table carbon_footprint"),
        ACCOUNT_2: carbon_data(12, projects=[("p2", 12, 0)]),
    }, query_account))

    collection = await CarbonAggregator(queries, settings).collect(
        ctx, [make_account(ACCOUNT_1), make_account(ACCOUNT_2)], [], now
    )

    assert len(collection.errors) == 1
    assert collection.errors[0].startswith(f"carbon: billing account {ACCOUNT_1}:")
    assert [p.project_id for p in collection.summary.carbon_by_project] == ["p2"]
    assert collection.summary.carbon_by_project[0].percentage_of_total == pytest.approx(100.0)


@pytest.mark.asyncio
async def test_closed_accounts_still_report_carbon(ctx, settings, now, make_account, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({ACCOUNT_1: carbon_data(5)}, query_account))

    collection = await CarbonAggregator(queries, settings).collect(ctx, [make_account(ACCOUNT_1, open=False)], [], now)

    assert collection.summary.total_monthly_carbon == Decimal("5")


@pytest.mark.asyncio
async def test_carbon_monthly_trends(ctx, settings, now, make_account, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({
        ACCOUNT_1: carbon_data(40, months=[("2026-06-01", 20), (date(2026, 7, 1), 40), ("2026-08-01", 40)]),
    }, query_account))

    collection = await CarbonAggregator(queries, settings).collect(ctx, [make_account(ACCOUNT_1)], [], now)
    trends = collection.summary.carbon_trends

    assert [t.month for t in trends] == ["2026-06", "2026-07", "2026-08"]
    assert trends[1].change_from_previous == pytest.approx(100.0)
    assert trends[2].change_from_previous == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_no_accounts_means_empty_summary(ctx, settings, now, fake_queries, sql_helpers):
    _, _, query_account = sql_helpers
    queries = fake_queries(carbon_responder({}, query_account))

    collection = await CarbonAggregator(queries, settings).collect(ctx, [], [], now)

    assert queries.queries == []
    assert collection.summary.total_monthly_carbon == Decimal("0")
    assert collection.errors == []
