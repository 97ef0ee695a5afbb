"""
Prometheus metrics configuration
"""
import os

from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Gauge, Histogram,
                               Info, generate_latest)
from prometheus_client.multiprocess import MultiProcessCollector
from prometheus_client.registry import REGISTRY
from pydantic import ValidationError

# Check if we're in multiprocess mode
if os.environ.get('PROMETHEUS_MULTIPROC_DIR'):
    REGISTRY = MultiProcessCollector(REGISTRY)

# ============================================================================
# Proving Operation Metrics
# ============================================================================

zk_operations_total = Counter(
    'zk_operations_total',
    'Total number of proving engine operations',
    ['operation', 'status']  # status: 'success', 'failed', 'timeout'
)

zk_operation_duration_seconds = Histogram(
    'zk_operation_duration_seconds',
    'Proving engine operation duration in seconds',
    ['operation'],
    buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0)
)

zk_operation_errors_total = Counter(
    'zk_operation_errors_total',
    'Total number of failed operation attempts',
    ['operation', 'retryable']
)

zk_retries_total = Counter(
    'zk_retries_total',
    'Total number of retried attempts',
    ['operation']
)

# ============================================================================
# Resource Metrics
# ============================================================================

zk_memory_rss_bytes = Gauge(
    'zk_memory_rss_bytes',
    'Most recent resident memory sample of the process in bytes'
)

# ============================================================================
# Circuit Metrics
# ============================================================================

zk_circuit_ready = Gauge(
    'zk_circuit_ready',
    'Whether a circuit has a compiled program and both keys persisted',
    ['circuit']
)

zk_weather_proofs_total = Counter(
    'zk_weather_proofs_total',
    'Total number of weather proofs requested',
    ['status']  # status: 'success', 'invalid_input', 'failed'
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'zkweather_app',
    'Application information'
)

from zkweather import __version__
from zkweather.core.config import get_settings

try:
    settings = get_settings()
    app_info.info({
        'app_name': settings.app_name,
        'app_env': settings.app_env,
        'version': __version__
    })
except ValidationError:
    pass  # Invalid settings are reported where they are used

# ============================================================================
# Helper Functions
# ============================================================================

def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type():
    """Get content type for Prometheus metrics"""
    return CONTENT_TYPE_LATEST
