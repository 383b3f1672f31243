"""
Budget Collector

Pure retrieval: budgets and their threshold rules for every billing account.
An account whose listing fails contributes an empty list and one error string.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional
import structlog

from finops.schemas.accounts import BillingAccount
from finops.schemas.budgets import Budget
from finops.shared.adapters.base import BudgetPort
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.timeout import call_with_timeout

logger = structlog.get_logger()


@dataclass(frozen=True)
class BudgetCollection:
    budgets: List[Budget] = field(default_factory=list)
    api_calls: int = 0
    errors: List[str] = field(default_factory=list)


class BudgetCollector:
    def __init__(self, budgets: BudgetPort, settings: Optional[Settings] = None):
        self.budgets = budgets
        self.settings = settings or get_settings()

    async def collect(self, ctx: AuthContext, billing_accounts: List[BillingAccount]) -> BudgetCollection:
        semaphore = asyncio.Semaphore(self.settings.MAX_CONCURRENT_ACCOUNTS)

        async def fetch(account: BillingAccount):
            account_id = account.billing_account_id
            async with semaphore:
                try:
                    budgets = await call_with_timeout(
                        self.budgets.list_budgets(ctx, account_id),
                        self.settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
                        "list_budgets",
                    )
                except Exception as e:
                    logger.warning("budget_listing_failed", billing_account_id=account_id, error=str(e))
                    return [], f"budgets: billing account {account_id}: {e}"
            return list(budgets), None

        results = await asyncio.gather(*(fetch(a) for a in billing_accounts))

        collected = [budget for budgets, _ in results for budget in budgets]
        errors = [error for _, error in results if error]
        logger.info("budget_collection_complete", budgets=len(collected), errors=len(errors))
        return BudgetCollection(budgets=collected, api_calls=len(billing_accounts), errors=errors)
