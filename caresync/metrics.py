from prometheus_client import Counter, Histogram

# Histogram for provider API call latency (seconds)
provider_api_call_latency_seconds = Histogram(
    'provider_api_call_latency_seconds',
    'Latency of upstream CGM provider API calls in seconds',
    ['provider', 'operation']
)

# status: success, error
provider_api_call_total = Counter(
    'provider_api_call_total',
    'Total upstream CGM provider API calls',
    ['provider', 'operation', 'status']
)

# reason: session_expired, empty_result, token_refresh
provider_reauthentications_total = Counter(
    'provider_reauthentications_total',
    'Total forced provider re-authentications',
    ['provider', 'reason']
)

readings_ingested_total = Counter(
    'readings_ingested_total',
    'Total number of blood glucose readings ingested',
    ['source']
)

# Sync job completion rates and durations
sync_job_completed_total = Counter(
    'sync_job_completed_total',
    'Total number of provider sync jobs completed',
    ['provider', 'status']  # status: success, failed
)
sync_job_duration_seconds = Histogram(
    'sync_job_duration_seconds',
    'Duration of provider sync jobs in seconds',
    ['provider']
)

alerts_fired_total = Counter(
    'alerts_fired_total',
    'Total number of glucose alerts created',
    ['type']
)

push_dispatch_failures_total = Counter(
    'push_dispatch_failures_total',
    'Total push notification dispatches that failed',
    ['category']
)

__all__ = [
    'provider_api_call_latency_seconds',
    'provider_api_call_total',
    'provider_reauthentications_total',
    'readings_ingested_total',
    'sync_job_completed_total',
    'sync_job_duration_seconds',
    'alerts_fired_total',
    'push_dispatch_failures_total',
]
