"""
Cost Aggregator - BigQuery Billing Export

Per billing account: resolve the export table, then compute the current-month
total, cost by project, cost by service, daily cost records and monthly trends.
Accounts run concurrently and fail independently; a failing account costs one
error string and contributes nothing else.
"""

import asyncio
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional
import structlog

from finops.schemas.accounts import BillingAccount, Project
from finops.schemas.costs import (
    CostRecord,
    CostSummary,
    MonthlyCostTrend,
    ProjectCostSummary,
    ServiceCostSummary,
)
from finops.services.analysis.metrics import classify_trend, percent_change, share_of
from finops.services.costs.table_resolver import candidate_tables, probe_query, resolve_table
from finops.shared.adapters.base import QueryPort
from finops.shared.core.coercion import to_date, to_decimal, to_int, to_str
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.exceptions import TableResolutionError
from finops.shared.core.periods import days_in_month, month_start, previous_month_start, shift_months
from finops.shared.core.timeout import call_with_timeout

logger = structlog.get_logger()

BILLING_ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9\-]+$")
UNATTRIBUTED_PROJECT = "unattributed"


def timestamp_literal(value: Any) -> str:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return f"TIMESTAMP('{value.strftime('%Y-%m-%d %H:%M:%S')}+00')"
    return f"TIMESTAMP('{value.isoformat()} 00:00:00+00')"


@dataclass(frozen=True)
class CostWindow:
    """Current month to date, plus the lookbacks used for trends and records."""
    now: datetime
    current_start: date
    prior_start: date
    history_start: date

    @classmethod
    def for_now(cls, now: datetime, history_months: int) -> "CostWindow":
        current = month_start(now.date())
        return cls(
            now=now,
            current_start=current,
            prior_start=previous_month_start(current),
            history_start=shift_months(current, -(history_months - 1)),
        )


@dataclass(frozen=True)
class ProjectCostRow:
    project_id: str
    project_name: str
    total_cost: Decimal
    prior_cost: Decimal
    currency: str


@dataclass(frozen=True)
class ServiceCostRow:
    service_id: str
    service_name: str
    total_cost: Decimal
    projects_count: int
    currency: str


@dataclass(frozen=True)
class MonthlyCostRow:
    month: str
    total_cost: Decimal
    currency: str


@dataclass(frozen=True)
class AccountCostResult:
    billing_account_id: str
    table: Optional[str] = None
    total_cost: Decimal = Decimal("0")
    currency: Optional[str] = None
    projects: List[ProjectCostRow] = field(default_factory=list)
    services: List[ServiceCostRow] = field(default_factory=list)
    months: List[MonthlyCostRow] = field(default_factory=list)
    records: List[CostRecord] = field(default_factory=list)
    api_calls: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class CostCollection:
    summary: CostSummary
    records: List[CostRecord] = field(default_factory=list)
    resolved_tables: Dict[str, str] = field(default_factory=dict)
    cost_by_account: Dict[str, Decimal] = field(default_factory=dict)
    api_calls: int = 0
    errors: List[str] = field(default_factory=list)


class CostAggregator:
    """Centralizes billing-export cost aggregation across billing accounts."""

    def __init__(self, queries: QueryPort, settings: Optional[Settings] = None):
        self.queries = queries
        self.settings = settings or get_settings()

    async def collect(
        self,
        ctx: AuthContext,
        billing_accounts: List[BillingAccount],
        projects: List[Project],
        now: datetime
    ) -> CostCollection:
        window = CostWindow.for_now(now, self.settings.COST_HISTORY_MONTHS)
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_ACCOUNTS)

        async def bounded(account: BillingAccount) -> AccountCostResult:
            async with semaphore:
                return await self._collect_account(ctx, account, window)

        open_accounts = []
        for account in billing_accounts:
            if account.open:
                open_accounts.append(account)
            else:
                logger.info("cost_skipping_closed_account", billing_account_id=account.billing_account_id)

        results = await asyncio.gather(*(bounded(a) for a in open_accounts))
        collection = self._merge(results, projects, window)

        logger.info(
            "cost_collection_complete",
            accounts=len(results),
            resolved=len(collection.resolved_tables),
            total_cost=float(collection.summary.total_monthly_cost),
            errors=len(collection.errors),
        )
        return collection

    async def _collect_account(
        self,
        ctx: AuthContext,
        account: BillingAccount,
        window: CostWindow
    ) -> AccountCostResult:
        account_id = account.billing_account_id
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

            candidates = candidate_tables(
                account_id,
                self.settings.BILLING_EXPORT_TABLE_TEMPLATES,
                ctx.query_project_id,
            )
            table = await resolve_table(candidates, lambda t: query(probe_query(t)))
            if table is None:
                raise TableResolutionError(account_id, candidates)

            total_rows = await query(self._total_query(table, window))
            project_rows = await query(self._by_project_query(table, window))
            service_rows = await query(self._by_service_query(table, window))
            record_rows = await query(self._records_query(table, window))
            month_rows = await query(self._monthly_query(table, window))
        except Exception as e:
            logger.warning("cost_account_failed", billing_account_id=account_id, error=str(e))
            return AccountCostResult(
                billing_account_id=account_id,
                api_calls=calls,
                error=f"cost: billing account {account_id}: {e}",
            )

        if len(record_rows) >= self.settings.MAX_COST_RECORDS:
            logger.warning(
                "cost_records_truncated",
                billing_account_id=account_id,
                limit=self.settings.MAX_COST_RECORDS,
            )

        total_cost = sum((to_decimal(r.get("total_cost"), clamp_negative=True) for r in total_rows), Decimal("0"))
        currency = to_str(total_rows[0].get("currency")) if total_rows else ""

        return AccountCostResult(
            billing_account_id=account_id,
            table=table,
            total_cost=total_cost,
            currency=currency or None,
            projects=[self._decode_project_row(r) for r in project_rows],
            services=[self._decode_service_row(r) for r in service_rows],
            months=[m for m in (self._decode_month_row(r) for r in month_rows) if m.month],
            records=[rec for rec in (self._decode_record_row(r, account_id) for r in record_rows) if rec],
            api_calls=calls,
        )

    # --- Queries -------------------------------------------------------------

    def _current_window(self, window: CostWindow) -> str:
        return (
            f"usage_start_time >= {timestamp_literal(window.current_start)} "
            f"AND usage_start_time <= {timestamp_literal(window.now)}"
        )

    def _total_query(self, table: str, window: CostWindow) -> str:
        return f"""
            /* finops:cost_total */
            SELECT
                SUM(cost) AS total_cost,
                currency,
                COUNT(*) AS record_count
            FROM `{table}`
            WHERE {self._current_window(window)}
            GROUP BY currency
            ORDER BY total_cost DESC
        """ # nosec: B608

    def _by_project_query(self, table: str, window: CostWindow) -> str:
        current_start = timestamp_literal(window.current_start)
        return f"""
            /* finops:cost_by_project */
            SELECT
                project.id AS project_id,
                ANY_VALUE(project.name) AS project_name,
                SUM(IF(usage_start_time >= {current_start}, cost, 0)) AS total_cost,
                SUM(IF(usage_start_time < {current_start}, cost, 0)) AS prior_cost,
                ANY_VALUE(currency) AS currency
            FROM `{table}`
            WHERE usage_start_time >= {timestamp_literal(window.prior_start)}
              AND usage_start_time <= {timestamp_literal(window.now)}
            GROUP BY project_id
            HAVING total_cost > 0
            ORDER BY total_cost DESC
            LIMIT {self.settings.TOP_PROJECTS_LIMIT}
        """ # nosec: B608

    def _by_service_query(self, table: str, window: CostWindow) -> str:
        return f"""
            /* finops:cost_by_service */
            SELECT
                service.id AS service_id,
                ANY_VALUE(service.description) AS service_name,
                SUM(cost) AS total_cost,
                COUNT(DISTINCT project.id) AS projects_count,
                ANY_VALUE(currency) AS currency
            FROM `{table}`
            WHERE {self._current_window(window)}
            GROUP BY service_id
            ORDER BY total_cost DESC
            LIMIT {self.settings.TOP_SERVICES_LIMIT}
        """ # nosec: B608

    def _records_query(self, table: str, window: CostWindow) -> str:
        return f"""
            /* finops:cost_records */
            SELECT
                project.id AS project_id,
                service.id AS service_id,
                ANY_VALUE(service.description) AS service_name,
                DATE(usage_start_time) AS usage_date,
                ANY_VALUE(location.region) AS region,
                ANY_VALUE(currency) AS currency,
                SUM(cost) AS cost
            FROM `{table}`
            WHERE usage_start_time >= {timestamp_literal(window.history_start)}
              AND usage_start_time <= {timestamp_literal(window.now)}
            GROUP BY project_id, service_id, usage_date
            ORDER BY usage_date DESC
            LIMIT {self.settings.MAX_COST_RECORDS}
        """ # nosec: B608

    def _monthly_query(self, table: str, window: CostWindow) -> str:
        return f"""
            /* finops:cost_monthly */
            SELECT
                FORMAT_TIMESTAMP('%Y-%m', usage_start_time) AS month,
                SUM(cost) AS total_cost,
                ANY_VALUE(currency) AS currency
            FROM `{table}`
            WHERE usage_start_time >= {timestamp_literal(window.history_start)}
              AND usage_start_time <= {timestamp_literal(window.now)}
            GROUP BY month
            ORDER BY month
        """ # nosec: B608

    # --- Row decoding --------------------------------------------------------

    @staticmethod
    def _decode_project_row(row: Dict[str, Any]) -> ProjectCostRow:
        project_id = to_str(row.get("project_id"), UNATTRIBUTED_PROJECT)
        return ProjectCostRow(
            project_id=project_id,
            project_name=to_str(row.get("project_name")),
            total_cost=to_decimal(row.get("total_cost"), clamp_negative=True),
            prior_cost=to_decimal(row.get("prior_cost"), clamp_negative=True),
            currency=to_str(row.get("currency")),
        )

    @staticmethod
    def _decode_service_row(row: Dict[str, Any]) -> ServiceCostRow:
        service_id = to_str(row.get("service_id"))
        return ServiceCostRow(
            service_id=service_id,
            service_name=to_str(row.get("service_name"), service_id),
            total_cost=to_decimal(row.get("total_cost"), clamp_negative=True),
            projects_count=to_int(row.get("projects_count")),
            currency=to_str(row.get("currency")),
        )

    @staticmethod
    def _decode_month_row(row: Dict[str, Any]) -> MonthlyCostRow:
        return MonthlyCostRow(
            month=to_str(row.get("month")),
            total_cost=to_decimal(row.get("total_cost"), clamp_negative=True),
            currency=to_str(row.get("currency")),
        )

    @staticmethod
    def _decode_record_row(row: Dict[str, Any], billing_account_id: str) -> Optional[CostRecord]:
        usage_date = to_date(row.get("usage_date"))
        if usage_date is None:
            return None
        service_id = to_str(row.get("service_id"))
        return CostRecord(
            project_id=to_str(row.get("project_id"), UNATTRIBUTED_PROJECT),
            service_id=service_id,
            service_name=to_str(row.get("service_name"), service_id or "unknown"),
            cost=to_decimal(row.get("cost"), clamp_negative=True),
            currency=to_str(row.get("currency"), "USD"),
            usage_date=usage_date,
            region=to_str(row.get("region")) or None,
            billing_account_id=billing_account_id,
        )

    # --- Merge ---------------------------------------------------------------

    def _merge(
        self,
        results: List[AccountCostResult],
        projects: List[Project],
        window: CostWindow
    ) -> CostCollection:
        succeeded = [r for r in results if r.error is None]
        grand_total = sum((r.total_cost for r in succeeded), Decimal("0"))
        currency = next((r.currency for r in succeeded if r.currency), None) or self.settings.BASE_CURRENCY
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
                    "currency": row.currency or currency,
                })
                entry["total"] += row.total_cost
                entry["prior"] += row.prior_cost
            for row in result.services:
                entry = merged_services.setdefault(row.service_id, {
                    "name": row.service_name,
                    "total": Decimal("0"),
                    "projects": 0,
                    "currency": row.currency or currency,
                })
                entry["total"] += row.total_cost
                entry["projects"] += row.projects_count
            for row in result.months:
                merged_months[row.month] = merged_months.get(row.month, Decimal("0")) + row.total_cost

        elapsed_days = max(window.now.day, 1)
        prior_days = days_in_month(window.prior_start)

        cost_by_project = [
            ProjectCostSummary(
                project_id=project_id,
                project_name=entry["name"],
                total_cost=entry["total"],
                currency=entry["currency"],
                percentage_of_total=share_of(entry["total"], grand_total),
                trend=classify_trend(entry["total"] / elapsed_days, entry["prior"] / prior_days),
            )
            for project_id, entry in merged_projects.items()
        ]
        cost_by_service = [
            ServiceCostSummary(
                service_id=service_id,
                service_name=entry["name"],
                total_cost=entry["total"],
                currency=entry["currency"],
                percentage_of_total=share_of(entry["total"], grand_total),
                projects_count=entry["projects"],
            )
            for service_id, entry in merged_services.items()
        ]

        # sorted() is stable: equal costs keep discovery order
        cost_by_project = sorted(cost_by_project, key=lambda p: p.total_cost, reverse=True)[: self.settings.TOP_PROJECTS_LIMIT]
        cost_by_service = sorted(cost_by_service, key=lambda s: s.total_cost, reverse=True)[: self.settings.TOP_SERVICES_LIMIT]

        cost_trends = []
        previous = None
        for month in sorted(merged_months):
            total = merged_months[month]
            cost_trends.append(MonthlyCostTrend(
                month=month,
                total_cost=total,
                currency=currency,
                change_from_previous=percent_change(total, previous) if previous is not None else 0.0,
            ))
            previous = total

        summary = CostSummary(
            total_monthly_cost=grand_total,
            currency=currency,
            cost_by_project=cost_by_project,
            cost_by_service=cost_by_service,
            cost_trends=cost_trends,
        )
        return CostCollection(
            summary=summary,
            records=[record for r in succeeded for record in r.records],
            resolved_tables={r.billing_account_id: r.table for r in succeeded if r.table},
            cost_by_account={r.billing_account_id: r.total_cost for r in succeeded},
            api_calls=sum(r.api_calls for r in results),
            errors=[r.error for r in results if r.error],
        )
