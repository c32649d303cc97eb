"""Prometheus metrics for the invoice pipeline.

Exposes key metrics for monitoring:
- Request counts and durations by endpoint and status
- Extraction outcomes by provider, template fast-path hits
- Job outcomes, job durations and queue depth
- Validation scores

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Extraction metrics
extraction_requests_total = Counter(
    "extraction_requests_total",
    "Extraction attempts by source",
    ["provider", "status"],  # success, failed
)

extraction_duration_seconds = Histogram(
    "extraction_duration_seconds",
    "End-to-end orchestrated extraction duration in seconds",
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

extraction_cache_hits_total = Counter(
    "extraction_cache_hits_total",
    "Extraction results served from the in-memory cache",
)

template_fast_path_total = Counter(
    "template_fast_path_total",
    "Extractions answered by a template without calling providers",
)

# Job metrics
jobs_submitted_total = Counter(
    "jobs_submitted_total",
    "Job submissions by admission outcome",
    ["status"],  # accepted, quota_exceeded, rejected
)

jobs_finished_total = Counter(
    "jobs_finished_total",
    "Jobs reaching a final state",
    ["state"],  # completed, failed
)

job_attempts_total = Counter(
    "job_attempts_total",
    "Job processing attempts by outcome",
    ["status"],  # success, retry, failed
)

job_duration_seconds = Histogram(
    "job_duration_seconds",
    "Duration of a single job attempt in seconds",
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

queue_depth = Gauge(
    "queue_depth",
    "Jobs by state",
    ["state"],
)

# Validation metrics
validation_score = Histogram(
    "validation_score",
    "Compliance validation score (0-100)",
    buckets=(10, 25, 50, 70, 80, 90, 95, 100),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST
