"""
FinOps Orchestrator

Drives one snapshot run:

    idle -> enumerating -> collecting (cost || carbon || budgets) -> deriving -> done

Enumeration is foundational and its failure aborts the run. The three
collection branches run concurrently, each returning its own result and error
list; they are merged only after all of them finish. Derivation is in-memory.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import structlog

from finops.schemas.costs import CarbonSummary, CostSummary
from finops.schemas.snapshot import KPISnapshot, PerformanceMetrics
from finops.services.accounts.enumerator import AccountEnumerator
from finops.services.analysis.anomaly_detector import AnomalyDetector
from finops.services.analysis.recommendations import generate_recommendations
from finops.services.budgets.collector import BudgetCollection, BudgetCollector
from finops.services.budgets.utilization import calculate_utilization
from finops.services.carbon.aggregator import CarbonAggregator, CarbonCollection
from finops.services.costs.aggregator import CostAggregator, CostCollection
from finops.services.enrichment import enrich_billing_accounts, enrich_projects
from finops.services.scheduler.metrics import (
    FINOPS_EXTERNAL_CALLS,
    FINOPS_RUN_DURATION,
    FINOPS_RUNS,
    FINOPS_SOFT_ERRORS,
)
from finops.shared.adapters.base import BudgetPort, IdentityPort, QueryPort
from finops.shared.core.config import Settings, get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.exceptions import EnumerationError
from finops.shared.core.periods import utcnow

logger = structlog.get_logger()


class FinOpsState(str, Enum):
    IDLE = "idle"
    ENUMERATING = "enumerating"
    COLLECTING = "collecting"
    DERIVING = "deriving"
    DONE = "done"


@dataclass
class FinOpsRun:
    """Request-scoped run state; never shared between invocations."""
    run_id: str
    state: FinOpsState = FinOpsState.IDLE
    history: List[FinOpsState] = field(default_factory=lambda: [FinOpsState.IDLE])

    def transition(self, new_state: FinOpsState) -> None:
        logger.info("finops_state_transition", from_state=self.state.value, to_state=new_state.value)
        self.state = new_state
        self.history.append(new_state)


class FinOpsOrchestrator:
    def __init__(
        self,
        identity: IdentityPort,
        queries: QueryPort,
        budgets: BudgetPort,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.settings = settings or get_settings()
        self.enumerator = AccountEnumerator(identity, self.settings)
        self.cost_aggregator = CostAggregator(queries, self.settings)
        self.carbon_aggregator = CarbonAggregator(queries, self.settings)
        self.budget_collector = BudgetCollector(budgets, self.settings)
        self.clock = clock

    async def run(self, ctx: AuthContext) -> KPISnapshot:
        run = FinOpsRun(run_id=str(uuid.uuid4()))
        structlog.contextvars.bind_contextvars(run_id=run.run_id, user_id=ctx.user_id)
        started = time.perf_counter()
        try:
            snapshot = await self._execute(ctx, run)
        except EnumerationError:
            FINOPS_RUNS.labels(status="failed").inc()
            logger.error("finops_run_aborted", state=run.state.value)
            raise
        finally:
            FINOPS_RUN_DURATION.observe(time.perf_counter() - started)
            structlog.contextvars.unbind_contextvars("run_id", "user_id")

        FINOPS_RUNS.labels(status="partial" if snapshot.is_partial else "success").inc()
        return snapshot

    async def _execute(self, ctx: AuthContext, run: FinOpsRun) -> KPISnapshot:
        started = time.perf_counter()
        now = self.clock()

        # 1. Enumerate (fatal on failure)
        run.transition(FinOpsState.ENUMERATING)
        enumeration = await self.enumerator.enumerate(ctx)
        FINOPS_EXTERNAL_CALLS.labels(branch="enumeration").inc(enumeration.api_calls)

        # 2. Collect: independent branches, joined before anything is merged
        run.transition(FinOpsState.COLLECTING)
        cost_result, carbon_result, budget_result = await asyncio.gather(
            self.cost_aggregator.collect(ctx, enumeration.billing_accounts, enumeration.projects, now),
            self.carbon_aggregator.collect(ctx, enumeration.billing_accounts, enumeration.projects, now),
            self.budget_collector.collect(ctx, enumeration.billing_accounts),
            return_exceptions=True,
        )
        cost = self._settle_branch("cost", cost_result, lambda: CostCollection(summary=CostSummary(currency=self.settings.BASE_CURRENCY)))
        carbon = self._settle_branch("carbon", carbon_result, lambda: CarbonCollection(summary=CarbonSummary()))
        budgets = self._settle_branch("budgets", budget_result, BudgetCollection)

        for branch, collected in (("cost", cost), ("carbon", carbon), ("budgets", budgets)):
            FINOPS_EXTERNAL_CALLS.labels(branch=branch).inc(collected.api_calls)
            if collected.errors:
                FINOPS_SOFT_ERRORS.labels(branch=branch).inc(len(collected.errors))

        # 3. Derive (no I/O)
        run.transition(FinOpsState.DERIVING)
        utilization = calculate_utilization(budgets.budgets, cost.summary, enumeration.projects, now)
        anomalies = AnomalyDetector.detect(cost.records, now)
        recommendations = generate_recommendations(cost.summary, carbon.summary, enumeration.projects, anomalies)

        errors = enumeration.errors + cost.errors + carbon.errors + budgets.errors
        api_calls = enumeration.api_calls + cost.api_calls + carbon.api_calls + budgets.api_calls
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        snapshot = KPISnapshot(
            account_info=enumeration.account_info,
            billing_accounts=enrich_billing_accounts(enumeration.billing_accounts, cost, carbon),
            projects=enrich_projects(enumeration.projects, cost, carbon, now),
            cost_kpis=cost.summary,
            carbon_kpis=carbon.summary,
            budgets=budgets.budgets,
            budget_utilization=utilization,
            anomalies=anomalies,
            optimization_recommendations=recommendations,
            performance_metrics=PerformanceMetrics(
                data_freshness=now,
                api_calls_count=api_calls,
                processing_time_ms=elapsed_ms,
            ),
            errors=errors,
        )

        run.transition(FinOpsState.DONE)
        logger.info(
            "finops_run_complete",
            billing_accounts=len(snapshot.billing_accounts),
            projects=len(snapshot.projects),
            total_cost=float(cost.summary.total_monthly_cost),
            total_carbon=float(carbon.summary.total_monthly_carbon),
            anomalies=len(anomalies),
            recommendations=len(recommendations),
            api_calls=api_calls,
            processing_time_ms=elapsed_ms,
            errors=len(errors),
        )
        return snapshot

    @staticmethod
    def _settle_branch(branch: str, result, empty_factory):
        """A branch that raised degrades to an empty result carrying one error."""
        if not isinstance(result, BaseException):
            return result
        if not isinstance(result, Exception):
            raise result
        logger.error("finops_branch_failed", branch=branch, error=str(result))
        return replace(empty_factory(), errors=[f"{branch}: {result}"])
