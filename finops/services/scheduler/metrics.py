"""
Prometheus Metrics for FinOps snapshot runs
"""
from prometheus_client import Counter, Histogram

# Completed / failed orchestrator runs
FINOPS_RUNS = Counter(
    "greenops_finops_runs_total",
    "Total number of FinOps snapshot runs",
    ["status"]
)

# Wall-clock duration of a full run
FINOPS_RUN_DURATION = Histogram(
    "greenops_finops_run_duration_seconds",
    "Duration of FinOps snapshot runs in seconds",
    buckets=[1, 5, 10, 30, 60, 120, 300]
)

# External calls issued, per collection branch
FINOPS_EXTERNAL_CALLS = Counter(
    "greenops_finops_external_calls_total",
    "External collaborator calls issued during snapshot runs",
    ["branch"]
)

# Recoverable per-account failures, per collection branch
FINOPS_SOFT_ERRORS = Counter(
    "greenops_finops_soft_errors_total",
    "Per-account failures recorded as partial-result errors",
    ["branch"]
)
