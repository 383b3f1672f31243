"""
Carbon Aggregator - Carbon Footprint Export

Carbon footprint data is published with a one-month lag, so every figure here
describes the calendar month before the current one. Scoped per billing
account; percentages are relative to the carbon total alone.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import structlog

from finops.schemas.accounts import BillingAccount, Project
from finops.schemas.costs import (
    CarbonSummary,
    MonthlyCarbonTrend,
    ProjectCarbonSummary,
    ServiceCarbonSummary,
)
from finops.services.analysis.metrics import classify_trend, percent_change, share_of
from finops.services.costs.aggregator import BILLING_ACCOUNT_ID_PATTERN, UNATTRIBUTED_PROJECT
from finops.shared.adapters.base import QueryPort
from finops.shared.core.coercion import to_date, to_decimal, to_int, to_str
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.periods import month_key, month_start, previous_month_start, shift_months
from finops.shared.core.timeout import call_with_timeout

logger = structlog.get_logger()


def date_literal(day: date) -> str:
    return f"DATE('{day.isoformat()}')"


@dataclass(frozen=True)
class ProjectCarbonRow:
    project_id: str
    project_name: str
    total_carbon: Decimal
    prior_carbon: Decimal


@dataclass(frozen=True)
class ServiceCarbonRow:
    service_id: str
    service_name: str
    total_carbon: Decimal
    projects_count: int


@dataclass(frozen=True)
class AccountCarbonResult:
    billing_account_id: str
    total_carbon: Decimal = Decimal("0")
    projects: List[ProjectCarbonRow] = field(default_factory=list)
    services: List[ServiceCarbonRow] = field(default_factory=list)
    months: Dict[str, Decimal] = field(default_factory=dict)
    api_calls: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class CarbonCollection:
    summary: CarbonSummary
    carbon_by_account: Dict[str, Decimal] = field(default_factory=dict)
    api_calls: int = 0
    errors: List[str] = field(default_factory=list)


class CarbonAggregator:
    def __init__(self, queries: QueryPort, settings: Optional[Settings] = None):
        self.queries = queries
        self.settings = settings or get_settings()

    async def collect(
        self,
        ctx: AuthContext,
        billing_accounts: List[BillingAccount],
        projects: List[Project],
        now: datetime
    ) -> CarbonCollection:
        usage_month = previous_month_start(month_start(now.date()))
        table = self.settings.CARBON_FOOTPRINT_TABLE_TEMPLATE.format(query_project=ctx.query_project_id)
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_ACCOUNTS)

        async def bounded(account: BillingAccount) -> AccountCarbonResult:
            async with semaphore:
                return await self._collect_account(ctx, table, account.billing_account_id, usage_month)

        results = await asyncio.gather(*(bounded(a) for a in billing_accounts))
        collection = self._merge(results, projects, usage_month)

        logger.info(
            "carbon_collection_complete",
            accounts=len(results),
            usage_month=usage_month.isoformat(),
            total_carbon=float(collection.summary.total_monthly_carbon),
            errors=len(collection.errors),
        )
        return collection

    async def _collect_account(
        self,
        ctx: AuthContext,
        table: str,
        account_id: str,
        usage_month: date
    ) -> AccountCarbonResult:
        timeout = self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS
        calls = 0

        async def query(sql: str) -> List[Dict[str, Any]]:
            nonlocal calls
            calls += 1
            return await call_with_timeout(
                self.queries.run_query(ctx, ctx.query_project_id, sql, timeout),
                timeout,
                "bigquery_query",
            )

        try:
            if not BILLING_ACCOUNT_ID_PATTERN.match(account_id):
                raise ValueError(f"invalid billing account id '{account_id}'")

            total_rows = await query(self._total_query(table, account_id, usage_month))
            project_rows = await query(self._by_project_query(table, account_id, usage_month))
            service_rows = await query(self._by_service_query(table, account_id, usage_month))
            month_rows = await query(self._monthly_query(table, account_id, usage_month))
        except Exception as e:
            logger.warning("carbon_account_failed", billing_account_id=account_id, error=str(e))
            return AccountCarbonResult(
                billing_account_id=account_id,
                api_calls=calls,
                error=f"carbon: billing account {account_id}: {e}",
            )

        months: Dict[str, Decimal] = {}
        for row in month_rows:
            day = to_date(row.get("usage_month"))
            if day is None:
                continue
            key = month_key(day)
            months[key] = months.get(key, Decimal("0")) + to_decimal(row.get("total_carbon"), clamp_negative=True)

        return AccountCarbonResult(
            billing_account_id=account_id,
            total_carbon=sum(
                (to_decimal(r.get("total_carbon"), clamp_negative=True) for r in total_rows),
                Decimal("0"),
            ),
            projects=[
                ProjectCarbonRow(
                    project_id=to_str(r.get("project_id"), UNATTRIBUTED_PROJECT),
                    project_name=to_str(r.get("project_name")),
                    total_carbon=to_decimal(r.get("total_carbon"), clamp_negative=True),
                    prior_carbon=to_decimal(r.get("prior_carbon"), clamp_negative=True),
                )
                for r in project_rows
            ],
            services=[
                ServiceCarbonRow(
                    service_id=to_str(r.get("service_id")),
                    service_name=to_str(r.get("service_name"), to_str(r.get("service_id"))),
                    total_carbon=to_decimal(r.get("total_carbon"), clamp_negative=True),
                    projects_count=to_int(r.get("projects_count")),
                )
                for r in service_rows
            ],
            months=months,
            api_calls=calls,
        )

    # --- Queries -------------------------------------------------------------

    def _total_query(self, table: str, account_id: str, usage_month: date) -> str:
        return f"""
            /* finops:carbon_total */
            SELECT SUM(carbon_footprint_total_kgCO2e.market_based) AS total_carbon
            FROM `{table}`
            WHERE billing_account_id = '{account_id}'
              AND usage_month = {date_literal(usage_month)}
        """ # nosec: B608

    def _by_project_query(self, table: str, account_id: str, usage_month: date) -> str:
        prior_month = previous_month_start(usage_month)
        return f"""
            /* finops:carbon_by_project */
            SELECT
                project.id AS project_id,
                ANY_VALUE(project.number) AS project_number,
                SUM(IF(usage_month = {date_literal(usage_month)}, carbon_footprint_total_kgCO2e.market_based, 0)) AS total_carbon,
                SUM(IF(usage_month = {date_literal(prior_month)}, carbon_footprint_total_kgCO2e.market_based, 0)) AS prior_carbon
            FROM `{table}`
            WHERE billing_account_id = '{account_id}'
              AND usage_month IN ({date_literal(usage_month)}, {date_literal(prior_month)})
            GROUP BY project_id
            HAVING total_carbon > 0
            ORDER BY total_carbon DESC
            LIMIT {self.settings.TOP_PROJECTS_LIMIT}
        """ # nosec: B608

    def _by_service_query(self, table: str, account_id: str, usage_month: date) -> str:
        return f"""
            /* finops:carbon_by_service */
            SELECT
                service.id AS service_id,
                ANY_VALUE(service.description) AS service_name,
                SUM(carbon_footprint_total_kgCO2e.market_based) AS total_carbon,
                COUNT(DISTINCT project.id) AS projects_count
            FROM `{table}`
            WHERE billing_account_id = '{account_id}'
              AND usage_month = {date_literal(usage_month)}
            GROUP BY service_id
            ORDER BY total_carbon DESC
            LIMIT {self.settings.TOP_SERVICES_LIMIT}
        """ # nosec: B608

    def _monthly_query(self, table: str, account_id: str, usage_month: date) -> str:
        history_start = shift_months(usage_month, -(self.settings.COST_HISTORY_MONTHS - 1))
        return f"""
            /* finops:carbon_monthly */
            SELECT
                usage_month,
                SUM(carbon_footprint_total_kgCO2e.market_based) AS total_carbon
            FROM `{table}`
            WHERE billing_account_id = '{account_id}'
              AND usage_month BETWEEN {date_literal(history_start)} AND {date_literal(usage_month)}
            GROUP BY usage_month
            ORDER BY usage_month
        """ # nosec: B608

    # --- Merge ---------------------------------------------------------------

    def _merge(
        self,
        results: List[AccountCarbonResult],
        projects: List[Project],
        usage_month: date
    ) -> CarbonCollection:
        succeeded = [r for r in results if r.error is None]
        grand_total = sum((r.total_carbon for r in succeeded), Decimal("0"))
        names = {p.project_id: p.name for p in projects}

        merged_projects: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        merged_services: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        merged_months: Dict[str, Decimal] = {}

        for result in succeeded:
            for row in result.projects:
                entry = merged_projects.setdefault(row.project_id, {
                    "name": row.project_name or names.get(row.project_id) or row.project_id,
                    "total": Decimal("0"),
                    "prior": Decimal("0"),
                })
                entry["total"] += row.total_carbon
                entry["prior"] += row.prior_carbon
            for row in result.services:
                entry = merged_services.setdefault(row.service_id, {
                    "name": row.service_name,
                    "total": Decimal("0"),
                    "projects": 0,
                })
                entry["total"] += row.total_carbon
                entry["projects"] += row.projects_count
            for month, total in result.months.items():
                merged_months[month] = merged_months.get(month, Decimal("0")) + total

        # Monthly totals compare directly; both months are complete
        carbon_by_project = sorted(
            (
                ProjectCarbonSummary(
                    project_id=project_id,
                    project_name=entry["name"],
                    total_carbon=entry["total"],
                    percentage_of_total=share_of(entry["total"], grand_total),
                    trend=classify_trend(entry["total"], entry["prior"]),
                )
                for project_id, entry in merged_projects.items()
            ),
            key=lambda p: p.total_carbon,
            reverse=True,
        )[: self.settings.TOP_PROJECTS_LIMIT]

        carbon_by_service = sorted(
            (
                ServiceCarbonSummary(
                    service_id=service_id,
                    service_name=entry["name"],
                    total_carbon=entry["total"],
                    percentage_of_total=share_of(entry["total"], grand_total),
                    projects_count=entry["projects"],
                )
                for service_id, entry in merged_services.items()
            ),
            key=lambda s: s.total_carbon,
            reverse=True,
        )[: self.settings.TOP_SERVICES_LIMIT]

        carbon_trends = []
        previous = None
        for month in sorted(merged_months):
            total = merged_months[month]
            carbon_trends.append(MonthlyCarbonTrend(
                month=month,
                total_carbon=total,
                change_from_previous=percent_change(total, previous) if previous is not None else 0.0,
            ))
            previous = total

        return CarbonCollection(
            summary=CarbonSummary(
                total_monthly_carbon=grand_total,
                usage_month=usage_month,
                carbon_by_project=carbon_by_project,
                carbon_by_service=carbon_by_service,
                carbon_trends=carbon_trends,
            ),
            carbon_by_account={r.billing_account_id: r.total_carbon for r in succeeded},
            api_calls=sum(r.api_calls for r in results),
            errors=[r.error for r in results if r.error],
        )
