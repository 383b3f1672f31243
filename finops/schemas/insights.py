"""
Anomaly & Recommendation Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class AnomalyType(str, Enum):
    SPIKE = "spike"
    DROP = "drop"


class AnomalySeverity(str, Enum):
    MEDIUM = "medium"
    CRITICAL = "critical"


class Anomaly(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_name: str
    service_id: str = ""
    project_id: str
    anomaly_type: AnomalyType
    severity: AnomalySeverity
    actual_cost: Decimal
    expected_cost: Decimal
    variance_amount: Decimal
    variance_percent: float
    period: date
    detected_at: datetime
    currency: str = "USD"


class RecommendationType(str, Enum):
    COST = "cost"
    CARBON = "carbon"
    PERFORMANCE = "performance"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Effort(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Recommendation(BaseModel):
    """
    One optimization suggestion. Ids are positional per rule so that
    unchanged inputs yield identical ids on the next run.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    type: RecommendationType
    title: str
    description: str
    project_id: Optional[str] = None
    service_id: Optional[str] = None
    potential_savings: Decimal = Decimal("0")
    potential_carbon_reduction: Decimal = Decimal("0")
    implementation: str = ""
    priority: Priority = Priority.MEDIUM
    effort: Effort = Effort.MEDIUM
