from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, push_to_gateway

# Dedicated registry: the job is short-lived, so only run metrics are pushed, not process metrics
REGISTRY = CollectorRegistry()

USERS_PROCESSED = Counter('poolstats_users_processed_total', 'Users ingested', ['status'], registry=REGISTRY)
WORKERS_PROCESSED = Counter('poolstats_workers_processed_total', 'Workers ingested', registry=REGISTRY)
RUN_DURATION = Histogram('poolstats_run_duration_seconds', 'Ingestion run duration', ['mode'], registry=REGISTRY)
RUN_STATUS = Gauge('poolstats_run_status', 'Last run status (1=Success, 0.5=Partial, 0=Fail)', registry=REGISTRY)
LAST_RUN_TIMESTAMP = Gauge('poolstats_last_run_timestamp_seconds', 'Start time of the last run', registry=REGISTRY)

STATUS_VALUES = {"success": 1.0, "partial": 0.5, "failure": 0.0}


def push_metrics(gateway: str, job: str = "poolstats_ingest"):
    push_to_gateway(gateway, job=job, registry=REGISTRY)
