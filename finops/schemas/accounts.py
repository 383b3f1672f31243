"""
Account & Project Schemas - identity layer of a KPI snapshot
"""

from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class AccountInfo(BaseModel):
    """The authenticated caller."""
    model_config = ConfigDict(frozen=True)

    email: str = ""
    name: str = ""


class BillingAccount(BaseModel):
    """A Cloud Billing account visible to the caller."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Resource name, e.g. billingAccounts/012345-ABCDEF-678901")
    display_name: str = ""
    open: bool = False
    master_billing_account: Optional[str] = None
    currency: str = "USD"
    project_count: int = 0

    # Filled during derivation
    total_monthly_cost: Decimal = Decimal("0")
    total_monthly_carbon: Decimal = Decimal("0")

    @property
    def billing_account_id(self) -> str:
        return self.name.split("/", 1)[-1]


class Project(BaseModel):
    """A project, optionally linked to the billing account it charges."""
    model_config = ConfigDict(frozen=True)

    project_id: str
    name: str = ""
    project_number: str = ""
    billing_account_name: Optional[str] = None
    lifecycle_state: str = ""
    create_time: Optional[str] = None

    # Filled during derivation
    monthly_cost: Decimal = Decimal("0")
    monthly_carbon: Decimal = Decimal("0")
    top_services: List[str] = Field(default_factory=list)
    has_billing_export: bool = False
    has_carbon_export: bool = False
