"""
Tests for budget utilization, projection and health classification.
"""
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from finops.schemas.budgets import Budget, BudgetHealth
from finops.schemas.costs import CostSummary, ProjectCostSummary
from finops.services.budgets.utilization import budget_status, calculate_utilization, next_threshold


def cost_summary(total, projects=()):
    return CostSummary(
        total_monthly_cost=Decimal(str(total)),
        cost_by_project=[
            ProjectCostSummary(project_id=pid, project_name=pid, total_cost=Decimal(str(cost)))
            for pid, cost in projects
        ],
    )


@pytest.mark.parametrize("utilization,expected", [
    (0.0, BudgetHealth.ON_TRACK),
    (74.9, BudgetHealth.ON_TRACK),
    (75.0, BudgetHealth.WARNING),
    (89.99, BudgetHealth.WARNING),
    (90.0, BudgetHealth.CRITICAL),
    (99.9, BudgetHealth.CRITICAL),
    (100.0, BudgetHealth.OVER_BUDGET),
    (250.0, BudgetHealth.OVER_BUDGET),
])
def test_budget_status_boundaries(utilization, expected):
    assert budget_status(utilization) == expected


def test_warning_scenario_day_24_of_30(make_budget, now):
    budget = make_budget("team", 120, thresholds=(0.5, 0.9, 1.0))

    [result] = calculate_utilization([budget], cost_summary(96), [], now)

    assert result.current_spend == Decimal("96")
    assert result.utilization_percentage == pytest.approx(80.0)
    assert result.projected_spend == Decimal("120")
    assert result.status == BudgetHealth.WARNING
    assert result.days_remaining == 6
    assert result.next_threshold == pytest.approx(90.0)
    assert result.budget_amount == Decimal("120")


def test_project_filter_limits_spend_to_listed_projects(make_budget, make_project, now):
    budget = make_budget("scoped", 100, projects=["projects/alpha", "projects/222222"])
    projects = [make_project("alpha", number="111111"), make_project("beta", number="222222")]
    summary = cost_summary(500, projects=[("alpha", 30), ("beta", 20), ("gamma", 450)])

    [result] = calculate_utilization([budget], summary, projects, now)

    assert result.current_spend == Decimal("50")
    assert result.utilization_percentage == pytest.approx(50.0)


def test_project_listed_by_id_and_number_counts_once(make_budget, make_project, now):
    budget = make_budget("dup", 100, projects=["projects/alpha", "projects/111111"])
    projects = [make_project("alpha", number="111111")]

    [result] = calculate_utilization([budget], cost_summary(40, projects=[("alpha", 40)]), projects, now)

    assert result.current_spend == Decimal("40")


def test_unfiltered_budget_uses_grand_total(make_budget, now):
    [result] = calculate_utilization([make_budget("all", 1000)], cost_summary(250, projects=[("a", 10)]), [], now)

    assert result.current_spend == Decimal("250")


def test_next_threshold_absent_when_all_crossed(make_budget, now):
    [result] = calculate_utilization([make_budget("hot", 100, thresholds=(0.5, 1.0))], cost_summary(110), [], now)

    assert result.status == BudgetHealth.OVER_BUDGET
    assert result.next_threshold is None


def test_next_threshold_is_strictly_above_utilization(make_budget):
    budget = make_budget("edge", 100, thresholds=(1.0, 0.5, 0.9))

    assert next_threshold(budget, 50.0) == pytest.approx(90.0)
    assert next_threshold(budget, 49.0) == pytest.approx(50.0)


def test_next_threshold_skips_threshold_equal_to_utilization(make_budget):
    budget = make_budget("exact", 100, thresholds=(0.07, 0.5))

    assert next_threshold(budget, 7.0) == 50.0


def test_next_threshold_returns_clean_percent(make_budget):
    assert next_threshold(make_budget("a", 100, thresholds=(0.29,)), 10.0) == 29.0
    assert next_threshold(make_budget("b", 100, thresholds=(0.57,)), 10.0) == 57.0


def test_budgets_without_amount_are_skipped(make_budget, now):
    results = calculate_utilization([make_budget("last-period", None), make_budget("zero", 0)], cost_summary(10), [], now)

    assert results == []


def test_first_day_of_month_projection():
    first = datetime(2026, 2, 1, 8, 0, tzinfo=timezone.utc)

    budget_cost = cost_summary(10)
    budget = Budget(name="b", amount_units=Decimal("100"))

    [result] = calculate_utilization([budget], budget_cost, [], first)

    assert result.projected_spend == Decimal("280")
    assert result.days_remaining == 27
