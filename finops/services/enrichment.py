"""
Account & project enrichment: fold the collected KPIs back onto the
identity entities so the snapshot can be browsed per account or per project.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Sequence

from finops.schemas.accounts import BillingAccount, Project
from finops.schemas.costs import CostRecord
from finops.services.carbon.aggregator import CarbonCollection
from finops.services.costs.aggregator import CostCollection
from finops.shared.core.periods import month_start

TOP_SERVICES_PER_PROJECT = 3


def enrich_billing_accounts(
    accounts: Sequence[BillingAccount],
    cost: CostCollection,
    carbon: CarbonCollection
) -> List[BillingAccount]:
    return [
        account.model_copy(update={
            "total_monthly_cost": cost.cost_by_account.get(account.billing_account_id, Decimal("0")),
            "total_monthly_carbon": carbon.carbon_by_account.get(account.billing_account_id, Decimal("0")),
            "currency": cost.summary.currency,
        })
        for account in accounts
    ]


def top_services_by_project(records: Sequence[CostRecord], since) -> Dict[str, List[str]]:
    """Highest-spend service names per project, from records on or after ``since``."""
    spend: Dict[str, Dict[str, Decimal]] = defaultdict(lambda: defaultdict(Decimal))
    for record in records:
        if record.usage_date >= since:
            spend[record.project_id][record.service_name] += record.cost

    return {
        project_id: [
            name for name, _ in sorted(services.items(), key=lambda item: item[1], reverse=True)
        ][:TOP_SERVICES_PER_PROJECT]
        for project_id, services in spend.items()
    }


def enrich_projects(
    projects: Sequence[Project],
    cost: CostCollection,
    carbon: CarbonCollection,
    now
) -> List[Project]:
    costs = {p.project_id: p.total_cost for p in cost.summary.cost_by_project}
    carbons = {p.project_id: p.total_carbon for p in carbon.summary.carbon_by_project}
    services = top_services_by_project(cost.records, month_start(now.date()))

    enriched = []
    for project in projects:
        account_id = project.billing_account_name.split("/", 1)[-1] if project.billing_account_name else None
        enriched.append(project.model_copy(update={
            "monthly_cost": costs.get(project.project_id, Decimal("0")),
            "monthly_carbon": carbons.get(project.project_id, Decimal("0")),
            "top_services": services.get(project.project_id, []),
            "has_billing_export": account_id in cost.resolved_tables,
            "has_carbon_export": account_id in carbon.carbon_by_account,
        }))
    return enriched
