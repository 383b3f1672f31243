from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ThresholdRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold_percent: float = Field(..., description="Fraction of the budget, e.g. 0.9 for 90%")
    spend_basis: str = "CURRENT_SPEND"


class BudgetFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    projects: List[str] = Field(default_factory=list, description="projects/<id or number>")
    services: List[str] = Field(default_factory=list)
    credit_types_treatment: Optional[str] = None
    calendar_period: Optional[str] = None


class Budget(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    billing_account_id: Optional[str] = None
    amount_units: Optional[Decimal] = None
    currency: Optional[str] = None
    budget_filter: BudgetFilter = Field(default_factory=BudgetFilter)
    threshold_rules: List[ThresholdRule] = Field(default_factory=list)


class BudgetHealth(str, Enum):
    ON_TRACK = "on_track"
    WARNING = "warning"
    CRITICAL = "critical"
    OVER_BUDGET = "over_budget"


class BudgetUtilization(BaseModel):
    model_config = ConfigDict(frozen=True)

    budget_name: str
    display_name: str = ""
    budget_amount: Decimal
    current_spend: Decimal
    utilization_percentage: float
    projected_spend: Decimal
    days_remaining: int
    status: BudgetHealth
    next_threshold: Optional[float] = None
