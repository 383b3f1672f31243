"""
Run one FinOps snapshot against live GCP APIs and print it as JSON.

    GCP_ACCESS_TOKEN=$(gcloud auth print-access-token) \
    FINOPS_USER_ID=me@example.com \
    python scripts/run_finops_snapshot.py
"""
import asyncio
import os
import sys

from finops.services.scheduler.orchestrator import FinOpsOrchestrator
from finops.shared.adapters.gcp import GCPBigQueryAdapter, GCPBudgetAdapter, GCPIdentityAdapter
from finops.shared.core.config import get_settings
from finops.shared.core.context import AuthContext
from finops.shared.core.exceptions import FinOpsException
from finops.shared.core.logging import setup_logging


async def run() -> int:
    settings = get_settings()
    setup_logging(settings)

    token = os.environ.get("GCP_ACCESS_TOKEN")
    if not token:
        print("GCP_ACCESS_TOKEN is not set", file=sys.stderr)
        return 2

    ctx = AuthContext(
        user_id=os.environ.get("FINOPS_USER_ID", "local"),
        access_token=token,
        query_project_id=settings.GCP_QUERY_PROJECT_ID,
    )
    orchestrator = FinOpsOrchestrator(
        identity=GCPIdentityAdapter(settings),
        queries=GCPBigQueryAdapter(settings),
        budgets=GCPBudgetAdapter(settings),
        settings=settings,
    )

    try:
        snapshot = await orchestrator.run(ctx)
    except FinOpsException as e:
        print(f"Snapshot failed: {e.message}", file=sys.stderr)
        return 1

    print(snapshot.model_dump_json(indent=2))
    for error in snapshot.errors:
        print(f"warning: {error}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run()))
