"""
Account & Project Enumerator

Foundation of every run: who the caller is, which billing accounts and projects
they can see, and which account each project charges. The three list calls are
fatal on failure; the per-account and per-project lookups are not.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import structlog

from finops.schemas.accounts import AccountInfo, BillingAccount, Project
from finops.shared.adapters.base import IdentityPort
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.exceptions import EnumerationError
from finops.shared.core.timeout import call_with_timeout

logger = structlog.get_logger()


@dataclass(frozen=True)
class EnumerationResult:
    account_info: AccountInfo
    billing_accounts: List[BillingAccount]
    projects: List[Project]
    api_calls: int = 0
    errors: List[str] = field(default_factory=list)


class AccountEnumerator:
    def __init__(self, identity: IdentityPort, settings: Optional[Settings] = None):
        self.identity = identity
        self.settings = settings or get_settings()

    async def enumerate(self, ctx: AuthContext) -> EnumerationResult:
        timeout = self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS

        base = await asyncio.gather(
            call_with_timeout(self.identity.get_account_info(ctx), timeout, "get_account_info"),
            call_with_timeout(self.identity.list_billing_accounts(ctx), timeout, "list_billing_accounts"),
            call_with_timeout(self.identity.list_projects(ctx), timeout, "list_projects"),
            return_exceptions=True,
        )
        failures = [r for r in base if isinstance(r, BaseException)]
        if failures:
            first = failures[0]
            logger.error("enumeration_failed", error=str(first), failures=len(failures))
            raise EnumerationError(f"Account enumeration failed: {first}") from first

        account_info, raw_accounts, raw_projects = base
        api_calls = 3

        counted = await self._with_project_counts(ctx, raw_accounts)
        linked = await self._with_billing_links(ctx, raw_projects)
        api_calls += len(raw_accounts) + len(raw_projects)

        accounts = [account for account, _ in counted]
        errors = [error for _, error in counted if error]

        logger.info(
            "enumeration_complete",
            billing_accounts=len(accounts),
            projects=len(linked),
            unlinked_projects=sum(1 for p in linked if not p.billing_account_name),
        )
        return EnumerationResult(
            account_info=account_info,
            billing_accounts=accounts,
            projects=linked,
            api_calls=api_calls,
            errors=errors,
        )

    async def _with_project_counts(
        self,
        ctx: AuthContext,
        accounts: List[BillingAccount]
    ) -> List[Tuple[BillingAccount, Optional[str]]]:
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_ACCOUNTS)

        async def count(account: BillingAccount) -> Tuple[BillingAccount, Optional[str]]:
            async with semaphore:
                try:
                    project_ids = await call_with_timeout(
                        self.identity.list_billing_account_projects(ctx, account.billing_account_id),
                        self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
                        "list_billing_account_projects",
                    )
                except Exception as e:
                    logger.warning("project_count_failed", billing_account_id=account.billing_account_id, error=str(e))
                    return account, f"enumeration: billing account {account.billing_account_id}: project count unavailable: {e}"
            return account.model_copy(update={"project_count": len(project_ids)}), None

        return list(await asyncio.gather(*(count(a) for a in accounts)))

    async def _with_billing_links(self, ctx: AuthContext, projects: List[Project]) -> List[Project]:
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_PROJECT_LOOKUPS)

        async def link(project: Project) -> Project:
            async with semaphore:
                try:
                    billing_account_name = await call_with_timeout(
                        self.identity.get_billing_link(ctx, project.project_id),
                        self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
                        "get_billing_link",
                    )
                except Exception as e:
                    # Unlinked is a valid state; a failed lookup is treated the same way
                    logger.warning("no_billing_info_for_project", project_id=project.project_id, error=str(e))
                    return project
            return project.model_copy(update={"billing_account_name": billing_account_name})

        return list(await asyncio.gather(*(link(p) for p in projects)))
