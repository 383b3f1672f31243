"""
Budget Utilization Calculator

Spend-to-date against each budget, linear month-end projection and a health
classification. No I/O; ``now`` is injected so results are reproducible.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Sequence
import structlog

from finops.schemas.accounts import Project
from finops.schemas.budgets import Budget, BudgetHealth, BudgetUtilization
from finops.schemas.costs import CostSummary
from finops.shared.core.periods import days_in_month

logger = structlog.get_logger()

# Ordered: first matching floor wins
STATUS_THRESHOLDS = (
    (100.0, BudgetHealth.OVER_BUDGET),
    (90.0, BudgetHealth.CRITICAL),
    (75.0, BudgetHealth.WARNING),
)

CENTS = Decimal("0.01")


def budget_status(utilization_percentage: float) -> BudgetHealth:
    for floor, status in STATUS_THRESHOLDS:
        if utilization_percentage >= floor:
            return status
    return BudgetHealth.ON_TRACK


def threshold_as_percent(fraction: float) -> float:
    # 0.07 * 100 is 7.000000000000001 in float math
    return float(Decimal(str(fraction)) * 100)


def next_threshold(budget: Budget, utilization_percentage: float) -> Optional[float]:
    """Smallest configured threshold (in percent) strictly above current utilization."""
    percents = [threshold_as_percent(rule.threshold_percent) for rule in budget.threshold_rules]
    remaining = [p for p in percents if p > utilization_percentage]
    return min(remaining) if remaining else None


def project_aliases(projects: Sequence[Project]) -> Dict[str, str]:
    """Map both project ids and project numbers to the project id."""
    aliases = {p.project_id: p.project_id for p in projects}
    aliases.update({p.project_number: p.project_id for p in projects if p.project_number})
    return aliases


def current_spend_for(budget: Budget, cost: CostSummary, aliases: Dict[str, str]) -> Decimal:
    scoped = budget.budget_filter.projects
    if not scoped:
        return cost.total_monthly_cost

    # A project may be listed by id and by number; count it once
    project_ids = {aliases.get(ref.split("/", 1)[-1], ref.split("/", 1)[-1]) for ref in scoped}
    return sum(
        (row.total_cost for row in cost.cost_by_project if row.project_id in project_ids),
        Decimal("0"),
    )


def calculate_utilization(
    budgets: Sequence[Budget],
    cost: CostSummary,
    projects: Sequence[Project],
    now: datetime
) -> List[BudgetUtilization]:
    month_days = days_in_month(now.date())
    elapsed_days = max(now.day, 1)
    aliases = project_aliases(projects)

    results = []
    for budget in budgets:
        amount = budget.amount_units
        if amount is None or amount <= 0:
            logger.info("budget_without_fixed_amount_skipped", budget=budget.name)
            continue

        spend = current_spend_for(budget, cost, aliases)
        utilization = float(spend / amount * 100)
        projected = (spend * month_days / elapsed_days).quantize(CENTS, rounding=ROUND_HALF_UP)

        results.append(BudgetUtilization(
            budget_name=budget.name,
            display_name=budget.display_name,
            budget_amount=amount,
            current_spend=spend,
            utilization_percentage=utilization,
            projected_spend=projected,
            days_remaining=month_days - now.day,
            status=budget_status(utilization),
            next_threshold=next_threshold(budget, utilization),
        ))

    logger.info(
        "budget_utilization_calculated",
        budgets=len(results),
        over_budget=sum(1 for r in results if r.status == BudgetHealth.OVER_BUDGET),
    )
    return results
