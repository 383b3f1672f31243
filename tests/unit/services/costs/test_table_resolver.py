"""
Tests for billing export table resolution.
"""
import pytest

from finops.services.costs.table_resolver import (
    candidate_tables,
    normalize_account_id,
    probe_query,
    resolve_table,
)
from finops.shared.core.exceptions import ConfigurationError


def test_normalize_account_id_replaces_separators():
    assert normalize_account_id("012345-ABCDEF-678901") == "012345_ABCDEF_678901"


def test_candidate_tables_preserve_template_order(settings):
    candidates = candidate_tables(
        "012345-ABCDEF-678901",
        settings.BILLING_EXPORT_TABLE_TEMPLATES,
        "greenops-ai-dashboard",
    )

    assert len(candidates) == 4
    assert candidates[0] == "greenops-ai-dashboard.billing_export.gcp_billing_export_v1_012345_ABCDEF_678901"
    assert candidates[1].startswith("greenops-ai-dashboard.finops_reports.")
    assert candidates[2].startswith("greenops-ai-dashboard.billing_data.")
    assert candidates[3] == "greenops-ai-dashboard.all_billing_data.gcp_billing_export_resource_v1_012345_ABCDEF_678901"


def test_unknown_template_placeholder_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        candidate_tables("A-B-C", ["{query_project}.{dataset}.export_{account_id}"], "p")


@pytest.mark.asyncio
async def test_resolution_stops_at_first_successful_probe():
    candidates = ["t1", "t2", "t3", "t4"]
    probed = []

    async def probe(table):
        probed.append(table)
        if table in ("t1", "t2"):
            raise RuntimeError("Not found: Table")
        return [{"ok": 1}]

    table = await resolve_table(candidates, probe)

    assert table == "t3"
    assert probed == ["t1", "t2", "t3"]


@pytest.mark.asyncio
async def test_resolution_first_candidate_wins_even_if_later_ones_work():
    probed = []

    async def probe(table):
        probed.append(table)
        return []

    assert await resolve_table(["a", "b", "c"], probe) == "a"
    assert probed == ["a"]


@pytest.mark.asyncio
async def test_resolution_returns_none_when_every_probe_fails():
    async def probe(table):
        raise PermissionError("Access Denied")

    assert await resolve_table(["a", "b"], probe) is None


@pytest.mark.asyncio
async def test_resolution_with_no_candidates():
    async def probe(table):
        raise AssertionError("must not be called")

    assert await resolve_table([], probe) is None


def test_probe_query_is_minimal_and_targets_table():
    sql = probe_query("p.ds.tbl")
    assert "FROM `p.ds.tbl`" in sql
    assert "LIMIT 1" in sql
