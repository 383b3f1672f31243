import os
# Skip production config validation for all tests BEFORE any finops imports
os.environ["ENVIRONMENT"] = "development"
os.environ["TESTING"] = "True"
os.environ["GCP_TRANSIENT_RETRY_ATTEMPTS"] = "1"

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from finops.schemas.accounts import AccountInfo, BillingAccount, Project
from finops.schemas.budgets import Budget, BudgetFilter, ThresholdRule
from finops.shared.adapters.base import BudgetPort, IdentityPort, QueryPort
from finops.shared.core.config import Settings
from finops.shared.core.context import AuthContext

QUERY_PROJECT = "greenops-ai-dashboard"

TAG_PATTERN = re.compile(r"/\* finops:(\w+) \*/")
TABLE_PATTERN = re.compile(r"FROM `([^`]+)`")
ACCOUNT_PATTERN = re.compile(r"billing_account_id = '([^']+)'")


def query_tag(sql: str) -> str:
    return TAG_PATTERN.search(sql).group(1)


def query_table(sql: str) -> str:
    return TABLE_PATTERN.search(sql).group(1)


def query_account(sql: str) -> Optional[str]:
    match = ACCOUNT_PATTERN.search(sql)
    return match.group(1) if match else None


def billing_table(account_id: str, dataset: str = "billing_export") -> str:
    normalized = account_id.replace("-", "_")
    return f"{QUERY_PROJECT}.{dataset}.gcp_billing_export_v1_{normalized}"


class FakeIdentityPort(IdentityPort):
    """In-memory identity collaborator; any attribute may be set to an Exception to fail that call."""

    def __init__(
        self,
        billing_accounts: List[BillingAccount],
        projects: List[Project],
        links: Optional[Dict[str, Any]] = None,
        account_projects: Optional[Dict[str, Any]] = None,
        account_info: Any = None,
    ):
        self.billing_accounts = billing_accounts
        self.projects = projects
        self.links = links or {}
        self.account_projects = account_projects or {}
        self.account_info = account_info or AccountInfo(email="ops@example.com", name="Ops Team")
        self.calls: List[str] = []

    @staticmethod
    def _result(value):
        if isinstance(value, Exception):
            raise value
        return value

    async def get_account_info(self, ctx):
        self.calls.append("get_account_info")
        return self._result(self.account_info)

    async def list_billing_accounts(self, ctx):
        self.calls.append("list_billing_accounts")
        return self._result(self.billing_accounts)

    async def list_billing_account_projects(self, ctx, billing_account_id):
        self.calls.append(f"list_billing_account_projects:{billing_account_id}")
        return self._result(self.account_projects.get(billing_account_id, []))

    async def list_projects(self, ctx):
        self.calls.append("list_projects")
        return self._result(self.projects)

    async def get_billing_link(self, ctx, project_id):
        self.calls.append(f"get_billing_link:{project_id}")
        return self._result(self.links.get(project_id))


class FakeQueryPort(QueryPort):
    """
    Dispatches every query to ``responder(tag, table, sql)``.

    The responder returns rows, or an Exception instance to raise.
    """

    def __init__(self, responder: Callable[[str, str, str], Any]):
        self.responder = responder
        self.queries: List[str] = []

    async def run_query(self, ctx, job_project, query, timeout):
        self.queries.append(query)
        result = self.responder(query_tag(query), query_table(query), query)
        if isinstance(result, Exception):
            raise result
        return result

    def tags(self) -> List[str]:
        return [query_tag(q) for q in self.queries]


class FakeBudgetPort(BudgetPort):
    def __init__(self, budgets: Dict[str, Any]):
        self.budgets = budgets
        self.calls: List[str] = []

    async def list_budgets(self, ctx, billing_account_id):
        self.calls.append(billing_account_id)
        result = self.budgets.get(billing_account_id, [])
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def settings():
    return Settings(
        TESTING=True,
        GCP_QUERY_PROJECT_ID=QUERY_PROJECT,
        EXTERNAL_CALL_TIMEOUT_SECONDS=5.0,
        GCP_TRANSIENT_RETRY_ATTEMPTS=1,
    )


@pytest.fixture
def ctx():
    return AuthContext(user_id="ops@example.com", access_token="ya29.test-token", query_project_id=QUERY_PROJECT)


@pytest.fixture
def now():
    # Day 24 of a 30-day month
    return datetime(2026, 9, 24, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_account():
    def _make(account_id: str, open: bool = True, display_name: str = "") -> BillingAccount:
        return BillingAccount(
            name=f"billingAccounts/{account_id}",
            display_name=display_name or account_id,
            open=open,
        )
    return _make


@pytest.fixture
def make_project():
    def _make(project_id: str, account_id: Optional[str] = None, number: str = "", name: str = "") -> Project:
        return Project(
            project_id=project_id,
            name=name or project_id.replace("-", " ").title(),
            project_number=number,
            billing_account_name=f"billingAccounts/{account_id}" if account_id else None,
            lifecycle_state="ACTIVE",
        )
    return _make


@pytest.fixture
def fake_identity():
    return FakeIdentityPort


@pytest.fixture
def fake_queries():
    return FakeQueryPort


@pytest.fixture
def fake_budgets():
    return FakeBudgetPort


@pytest.fixture
def billing_table_for():
    return billing_table


@pytest.fixture
def sql_helpers():
    """query_tag / query_table / query_account parsers for responders."""
    return query_tag, query_table, query_account


@pytest.fixture
def make_budget():
    def _make(name: str, amount, projects=(), thresholds=(0.5, 0.9, 1.0), account_id: str = "AAAAAA-BBBBBB-CCCCCC") -> Budget:
        return Budget(
            name=f"billingAccounts/{account_id}/budgets/{name}",
            display_name=name,
            billing_account_id=account_id,
            amount_units=Decimal(str(amount)) if amount is not None else None,
            currency="USD",
            budget_filter=BudgetFilter(projects=list(projects)),
            threshold_rules=[ThresholdRule(threshold_percent=t) for t in thresholds],
        )
    return _make
