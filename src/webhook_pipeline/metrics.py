from prometheus_client import Counter, Gauge, Histogram

REQUESTS_TOTAL = Counter(
    "webhook_requests_total",
    "Total inbound webhook requests",
    ["result"],
)

QUEUE_JOBS = Gauge(
    "webhook_queue_jobs",
    "Jobs in the queue by state, refreshed on health checks",
    ["state"],
)

PROCESSING_DURATION = Histogram(
    "webhook_processing_duration_seconds",
    "Job attempt duration in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

JOB_OUTCOMES_TOTAL = Counter(
    "webhook_job_outcomes_total",
    "Job attempts by resulting state",
    ["state"],
)
