from prometheus_client import Counter, Histogram


RUN_COUNT = Counter(
    "db_recreate_runs_total",
    "Total recreation runs by terminal decision",
    ["decision"],
)
PHASE_LATENCY = Histogram(
    "db_recreate_phase_duration_seconds",
    "Duration of each recreation phase in seconds",
    ["phase"],
    buckets=(1, 5, 15, 60, 300, 900, 3600, 14400),
)
CONVERGENCE_TIMEOUTS = Counter(
    "db_recreate_convergence_timeouts_total",
    "Convergence polls that gave up before the remote state settled",
    ["step"],
)
STEP_FAILURES = Counter(
    "db_recreate_step_failures_total",
    "Non-fatal restoration step failures",
    ["step"],
)
