import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional, TypeVar
import httpx
import structlog
import tenacity
from google.api_core.exceptions import (
    DeadlineExceeded,
    GoogleAPIError,
    InternalServerError,
    ServiceUnavailable,
    Unauthenticated,
)
from google.auth.exceptions import RefreshError
from google.cloud import bigquery
from google.cloud import billing_v1
from google.cloud import resourcemanager_v3
from google.cloud.billing import budgets_v1
from google.oauth2.credentials import Credentials

from finops.schemas.accounts import AccountInfo, BillingAccount, Project
from finops.schemas.budgets import Budget, BudgetFilter, ThresholdRule
from finops.shared.adapters.base import BudgetPort, IdentityPort, QueryPort
from finops.shared.core.coercion import to_decimal
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.exceptions import AdapterError, AuthError

logger = structlog.get_logger()

T = TypeVar("T")

TRANSIENT_ERRORS = (ServiceUnavailable, DeadlineExceeded, InternalServerError)

# Project IDs: 6-30 chars, lowercase letters, digits, hyphens (dotted domain prefix allowed)
JOB_PROJECT_PATTERN = re.compile(r"^([a-z0-9.\-]+:)?[a-z][a-z0-9\-]{4,28}[a-z0-9]$")


def _credentials(ctx: AuthContext) -> Credentials:
    """Bearer-only credentials; token refresh is the caller's responsibility."""
    return Credentials(token=ctx.access_token)


class GCPClientMixin:
    """Runs blocking Google client calls off the event loop with transient-error retries."""

    settings: Settings

    async def _call(self, operation: str, fn: Callable[..., T], *args, **kwargs) -> T:
        retrying = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception_type(TRANSIENT_ERRORS),
            wait=tenacity.wait_exponential(multiplier=1, min=2, max=10),
            stop=tenacity.stop_after_attempt(max(1, self.settings.GCP_TRANSIENT_RETRY_ATTEMPTS)),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await asyncio.to_thread(fn, *args, **kwargs)
        except (Unauthenticated, RefreshError) as e:
            logger.error("gcp_auth_rejected", operation=operation, error=str(e))
            raise AuthError(f"{operation}: credentials rejected") from e
        except GoogleAPIError as e:
            logger.warning("gcp_call_failed", operation=operation, error=str(e))
            raise AdapterError(f"{operation}: {e}") from e


class GCPIdentityAdapter(GCPClientMixin, IdentityPort):
    """
    Cloud Billing + Resource Manager + OAuth2 userinfo.
    """

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http_client = http_client

    async def get_account_info(self, ctx: AuthContext) -> AccountInfo:
        headers = {"Authorization": f"Bearer {ctx.access_token}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self.settings.USERINFO_URL, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS) as client:
                    response = await client.get(self.settings.USERINFO_URL, headers=headers)
        except httpx.HTTPError as e:
            raise AdapterError(f"userinfo: {e}") from e

        if response.status_code == 401:
            raise AuthError("userinfo: credentials rejected")
        if response.status_code >= 400:
            raise AdapterError(f"userinfo: HTTP {response.status_code}")

        data = response.json()
        return AccountInfo(email=data.get("email") or "", name=data.get("name") or "")

    async def list_billing_accounts(self, ctx: AuthContext) -> List[BillingAccount]:
        client = billing_v1.CloudBillingClient(credentials=_credentials(ctx))
        accounts = await self._call("list_billing_accounts", lambda: list(client.list_billing_accounts()))
        return [
            BillingAccount(
                name=a.name,
                display_name=a.display_name,
                open=bool(a.open_),
                master_billing_account=a.master_billing_account or None,
                currency=self.settings.BASE_CURRENCY,
            )
            for a in accounts
        ]

    async def list_billing_account_projects(self, ctx: AuthContext, billing_account_id: str) -> List[str]:
        client = billing_v1.CloudBillingClient(credentials=_credentials(ctx))
        infos = await self._call(
            "list_project_billing_info",
            lambda: list(client.list_project_billing_info(name=f"billingAccounts/{billing_account_id}")),
        )
        return [info.project_id for info in infos if info.project_id]

    async def list_projects(self, ctx: AuthContext) -> List[Project]:
        client = resourcemanager_v3.ProjectsClient(credentials=_credentials(ctx))
        projects = await self._call("search_projects", lambda: list(client.search_projects()))
        return [
            Project(
                project_id=p.project_id,
                name=p.display_name or p.project_id,
                project_number=p.name.split("/", 1)[-1] if p.name else "",
                lifecycle_state=p.state.name if p.state is not None else "",
                create_time=p.create_time.isoformat() if p.create_time else None,
            )
            for p in projects
        ]

    async def get_billing_link(self, ctx: AuthContext, project_id: str) -> Optional[str]:
        client = billing_v1.CloudBillingClient(credentials=_credentials(ctx))
        info = await self._call(
            "get_project_billing_info",
            client.get_project_billing_info,
            name=f"projects/{project_id}",
        )
        return info.billing_account_name or None


class GCPBigQueryAdapter(GCPClientMixin, QueryPort):
    """Standard-SQL query execution against billing and carbon exports."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def run_query(
        self,
        ctx: AuthContext,
        job_project: str,
        query: str,
        timeout: float
    ) -> List[Dict[str, Any]]:
        if not JOB_PROJECT_PATTERN.match(job_project):
            logger.error("gcp_bq_invalid_job_project", project=job_project)
            raise AdapterError(f"Invalid BigQuery job project: '{job_project}'", code="invalid_job_project")

        client = bigquery.Client(project=job_project, credentials=_credentials(ctx))
        job_config = bigquery.QueryJobConfig(
            use_legacy_sql=False,
            labels={"component": "finops-engine"},
        )

        def _execute() -> List[Dict[str, Any]]:
            job = client.query(query, job_config=job_config, timeout=timeout)
            return [dict(row.items()) for row in job.result(timeout=timeout)]

        return await self._call("bigquery_query", _execute)


class GCPBudgetAdapter(GCPClientMixin, BudgetPort):

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def list_budgets(self, ctx: AuthContext, billing_account_id: str) -> List[Budget]:
        client = budgets_v1.BudgetServiceClient(credentials=_credentials(ctx))
        raw_budgets = await self._call(
            "list_budgets",
            lambda: list(client.list_budgets(parent=f"billingAccounts/{billing_account_id}")),
        )
        return [self._to_budget(b, billing_account_id) for b in raw_budgets]

    @staticmethod
    def _to_budget(raw: Any, billing_account_id: str) -> Budget:
        amount_units = None
        currency = None
        if "specified_amount" in raw.amount:
            money = raw.amount.specified_amount
            amount_units = to_decimal(money.units) + to_decimal(money.nanos) / 1_000_000_000
            currency = money.currency_code or None

        budget_filter = raw.budget_filter
        return Budget(
            name=raw.name,
            display_name=raw.display_name or raw.name,
            billing_account_id=billing_account_id,
            amount_units=amount_units,
            currency=currency,
            budget_filter=BudgetFilter(
                projects=list(budget_filter.projects),
                services=list(budget_filter.services),
                credit_types_treatment=budget_filter.credit_types_treatment.name or None,
                calendar_period=budget_filter.calendar_period.name or None,
            ),
            threshold_rules=[
                ThresholdRule(
                    threshold_percent=rule.threshold_percent,
                    spend_basis=rule.spend_basis.name or "CURRENT_SPEND",
                )
                for rule in raw.threshold_rules
            ],
        )
