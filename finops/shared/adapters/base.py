from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from finops.schemas.accounts import AccountInfo, BillingAccount, Project
from finops.schemas.budgets import Budget
from finops.shared.core.context import AuthContext


class IdentityPort(ABC):
    """
    Lists who the caller is and which billing accounts / projects they can see.
    Failures of the list calls are fatal to a run; everything else is per-item.
    """

    @abstractmethod
    async def get_account_info(self, ctx: AuthContext) -> AccountInfo:
        """Profile of the authenticated caller."""

    @abstractmethod
    async def list_billing_accounts(self, ctx: AuthContext) -> List[BillingAccount]:
        """All billing accounts visible to the caller (project_count not yet filled)."""

    @abstractmethod
    async def list_billing_account_projects(self, ctx: AuthContext, billing_account_id: str) -> List[str]:
        """Project ids linked to one billing account."""

    @abstractmethod
    async def list_projects(self, ctx: AuthContext) -> List[Project]:
        """All projects visible to the caller (billing link not yet filled)."""

    @abstractmethod
    async def get_billing_link(self, ctx: AuthContext, project_id: str) -> Optional[str]:
        """Billing account resource name a project charges, or None if unlinked."""


class QueryPort(ABC):
    """Generic analytical query execution. Raises on any failure, never returns partial rows."""

    @abstractmethod
    async def run_query(
        self,
        ctx: AuthContext,
        job_project: str,
        query: str,
        timeout: float
    ) -> List[Dict[str, Any]]:
        """Run ``query`` as a job billed to ``job_project`` and return rows keyed by column name."""


class BudgetPort(ABC):

    @abstractmethod
    async def list_budgets(self, ctx: AuthContext, billing_account_id: str) -> List[Budget]:
        """Budgets defined on one billing account, threshold rules in configured order."""
