from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict, Field

from finops.schemas.accounts import AccountInfo, BillingAccount, Project
from finops.schemas.budgets import Budget, BudgetUtilization
from finops.schemas.costs import CarbonSummary, CostSummary
from finops.schemas.insights import Anomaly, Recommendation


class PerformanceMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    data_freshness: datetime
    api_calls_count: int
    processing_time_ms: int


class KPISnapshot(BaseModel):
    """
    Everything one orchestrator run produced.

    A non-empty ``errors`` list marks a valid partial result, not a failure.
    """
    model_config = ConfigDict(frozen=True)

    account_info: AccountInfo
    billing_accounts: List[BillingAccount] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    cost_kpis: CostSummary = Field(default_factory=CostSummary)
    carbon_kpis: CarbonSummary = Field(default_factory=CarbonSummary)
    budgets: List[Budget] = Field(default_factory=list)
    budget_utilization: List[BudgetUtilization] = Field(default_factory=list)
    anomalies: List[Anomaly] = Field(default_factory=list)
    optimization_recommendations: List[Recommendation] = Field(default_factory=list)
    performance_metrics: PerformanceMetrics
    errors: List[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)
