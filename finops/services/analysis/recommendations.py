"""
Optimization Recommendation Generator

Rule-based and side-effect free. Each rule looks at the head of an already
sorted summary list; ids carry the position within that head so an unchanged
input produces the same ids on every run.
"""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence
import structlog

from finops.schemas.accounts import Project
from finops.schemas.costs import CarbonSummary, CostSummary
from finops.schemas.insights import (
    Anomaly,
    AnomalySeverity,
    AnomalyType,
    Effort,
    Priority,
    Recommendation,
    RecommendationType,
)

logger = structlog.get_logger()

TOP_PROJECTS = 3
PROJECT_COST_FLOOR = Decimal("100")
PROJECT_SAVINGS_RATE = Decimal("0.20")
PROJECT_HIGH_SHARE = 30.0

TOP_SERVICES = 2
SERVICE_COST_FLOOR = Decimal("50")
SERVICE_SAVINGS_RATE = Decimal("0.15")

TOP_CARBON_PROJECTS = 2
CARBON_FLOOR_KG = Decimal("10")
CARBON_REDUCTION_RATE = Decimal("0.25")
CARBON_HIGH_SHARE = 40.0

TOP_SPIKES = 3

PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


def _project_recommendations(cost: CostSummary) -> List[Recommendation]:
    recs = []
    for index, project in enumerate(cost.cost_by_project[:TOP_PROJECTS]):
        if project.total_cost <= PROJECT_COST_FLOOR:
            continue
        recs.append(Recommendation(
            id=f"cost-opt-{index}",
            type=RecommendationType.COST,
            title=f"Optimize costs of project {project.project_name}",
            description=(
                f"This project accounts for {project.percentage_of_total:.1f}% of total cost "
                f"({project.total_cost:.2f} {project.currency})"
            ),
            project_id=project.project_id,
            potential_savings=project.total_cost * PROJECT_SAVINGS_RATE,
            implementation="Review under-utilized resources and right-size instances",
            priority=Priority.HIGH if project.percentage_of_total > PROJECT_HIGH_SHARE else Priority.MEDIUM,
            effort=Effort.MEDIUM,
        ))
    return recs


def _service_recommendations(cost: CostSummary) -> List[Recommendation]:
    recs = []
    for index, service in enumerate(cost.cost_by_service[:TOP_SERVICES]):
        if service.total_cost <= SERVICE_COST_FLOOR:
            continue
        recs.append(Recommendation(
            id=f"service-opt-{index}",
            type=RecommendationType.COST,
            title=f"Optimize usage of {service.service_name}",
            description=(
                f"This service costs {service.total_cost:.2f} {service.currency}/month "
                f"across {service.projects_count} projects"
            ),
            service_id=service.service_id,
            potential_savings=service.total_cost * SERVICE_SAVINGS_RATE,
            implementation="Review the configuration and usage of this service",
            priority=Priority.MEDIUM,
            effort=Effort.LOW,
        ))
    return recs


def _carbon_recommendations(carbon: CarbonSummary) -> List[Recommendation]:
    recs = []
    for index, project in enumerate(carbon.carbon_by_project[:TOP_CARBON_PROJECTS]):
        if project.total_carbon <= CARBON_FLOOR_KG:
            continue
        recs.append(Recommendation(
            id=f"carbon-opt-{index}",
            type=RecommendationType.CARBON,
            title=f"Reduce the carbon footprint of {project.project_name}",
            description=(
                f"This project emits {project.total_carbon:.1f} kg CO2e/month "
                f"({project.percentage_of_total:.1f}% of total)"
            ),
            project_id=project.project_id,
            potential_carbon_reduction=project.total_carbon * CARBON_REDUCTION_RATE,
            implementation="Move workloads to lower-carbon regions",
            priority=Priority.HIGH if project.percentage_of_total > CARBON_HIGH_SHARE else Priority.MEDIUM,
            effort=Effort.MEDIUM,
        ))
    return recs


def _anomaly_recommendations(anomalies: Sequence[Anomaly], names: Dict[str, str]) -> List[Recommendation]:
    spikes = [
        a for a in anomalies
        if a.anomaly_type == AnomalyType.SPIKE and a.severity == AnomalySeverity.CRITICAL
    ]
    spikes = sorted(spikes, key=lambda a: a.variance_amount, reverse=True)[:TOP_SPIKES]

    return [
        Recommendation(
            id=f"anomaly-opt-{index}",
            type=RecommendationType.COST,
            title=f"Investigate {spike.service_name} cost spike in {names.get(spike.project_id, spike.project_id)}",
            description=(
                f"Spent {spike.actual_cost:.2f} {spike.currency} on {spike.period.isoformat()} "
                f"against a typical {spike.expected_cost:.2f} ({spike.variance_percent:+.0f}%)"
            ),
            project_id=spike.project_id,
            service_id=spike.service_id or None,
            potential_savings=spike.variance_amount,
            implementation="Check for runaway jobs, misconfigured autoscaling or unexpected traffic",
            priority=Priority.HIGH,
            effort=Effort.LOW,
        )
        for index, spike in enumerate(spikes)
    ]


def generate_recommendations(
    cost: CostSummary,
    carbon: CarbonSummary,
    projects: Sequence[Project],
    anomalies: Optional[Sequence[Anomaly]] = None
) -> List[Recommendation]:
    """
    Apply every rule independently and rank the union by priority.

    Ranking is stable, so within one priority the rule order (project, service,
    carbon, anomaly) and each rule's positional order are preserved.
    """
    names = {p.project_id: p.name or p.project_id for p in projects}

    recs = (
        _project_recommendations(cost)
        + _service_recommendations(cost)
        + _carbon_recommendations(carbon)
        + _anomaly_recommendations(anomalies or [], names)
    )
    ranked = sorted(recs, key=lambda r: PRIORITY_RANK[r.priority])

    logger.info(
        "recommendations_generated",
        count=len(ranked),
        high_priority=sum(1 for r in ranked if r.priority == Priority.HIGH),
    )
    return ranked
