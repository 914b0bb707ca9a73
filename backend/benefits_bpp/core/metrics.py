"""
Prometheus metrics configuration
"""
from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Histogram,
                               generate_latest)
from prometheus_client.registry import REGISTRY

# ============================================================================
# Protocol Metrics
# ============================================================================

protocol_requests_total = Counter(
    'protocol_requests_total',
    'Total number of protocol actions handled',
    ['action', 'outcome']  # outcome: 'success' or the error code
)

protocol_request_duration_seconds = Histogram(
    'protocol_request_duration_seconds',
    'Protocol action duration in seconds',
    ['action'],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

# ============================================================================
# Application Metrics
# ============================================================================

applications_created_total = Counter(
    'applications_created_total',
    'Total number of applications created through init'
)

eligibility_checks_total = Counter(
    'eligibility_checks_total',
    'Total number of eligibility evaluations',
    ['result']  # result: 'eligible', 'ineligible', 'failed'
)


def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type():
    """Content type for the metrics endpoint"""
    return CONTENT_TYPE_LATEST
