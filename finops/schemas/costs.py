"""
Cloud Cost and Carbon Schemas - Normalization Layer

Typed rows decoded straight out of billing / carbon export queries, and the
derived summaries built from them. Summaries are rebuilt wholesale every run.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class CostRecord(BaseModel):
    """Daily cost of one service in one project. Amounts are non-negative."""
    model_config = ConfigDict(frozen=True)

    project_id: str
    service_id: str
    service_name: str
    cost: Decimal = Field(..., ge=0)
    currency: str = "USD"
    usage_date: date
    region: Optional[str] = None
    billing_account_id: Optional[str] = None


class ProjectCostSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    project_name: str
    total_cost: Decimal
    currency: str = "USD"
    percentage_of_total: float = 0.0
    trend: Trend = Trend.STABLE


class ServiceCostSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_id: str
    service_name: str
    total_cost: Decimal
    currency: str = "USD"
    percentage_of_total: float = 0.0
    projects_count: int = 0


class MonthlyCostTrend(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str = Field(..., description="YYYY-MM")
    total_cost: Decimal
    currency: str = "USD"
    change_from_previous: float = 0.0


class CostSummary(BaseModel):
    """Current-month cost KPIs across every resolved billing account."""
    model_config = ConfigDict(frozen=True)

    total_monthly_cost: Decimal = Decimal("0")
    currency: str = "USD"
    cost_by_project: List[ProjectCostSummary] = Field(default_factory=list)
    cost_by_service: List[ServiceCostSummary] = Field(default_factory=list)
    cost_trends: List[MonthlyCostTrend] = Field(default_factory=list)


class ProjectCarbonSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str
    project_name: str
    total_carbon: Decimal = Field(..., description="kg CO2e")
    percentage_of_total: float = 0.0
    trend: Trend = Trend.STABLE


class ServiceCarbonSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_id: str
    service_name: str
    total_carbon: Decimal
    percentage_of_total: float = 0.0
    projects_count: int = 0


class MonthlyCarbonTrend(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: str
    total_carbon: Decimal
    change_from_previous: float = 0.0


class CarbonSummary(BaseModel):
    """Carbon KPIs for the month preceding the current one (exports lag a month)."""
    model_config = ConfigDict(frozen=True)

    total_monthly_carbon: Decimal = Decimal("0")
    usage_month: Optional[date] = None
    carbon_by_project: List[ProjectCarbonSummary] = Field(default_factory=list)
    carbon_by_service: List[ServiceCarbonSummary] = Field(default_factory=list)
    carbon_trends: List[MonthlyCarbonTrend] = Field(default_factory=list)
