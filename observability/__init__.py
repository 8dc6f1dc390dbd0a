"""Observability package for SDG Discovery."""

from .logging import (
    setup_logging,
    setup_logging_from_settings,
    log_performance,
    StructuredLogger,
    JSONFormatter
)
from .prometheus_metrics import (
    setup_prometheus_metrics,
    record_sitemap_fetch,
    record_discovery_metrics,
    record_ingest_metrics,
    record_llm_metrics,
    get_metrics_summary,
    PrometheusMiddleware,
    sdg_registry
)

__all__ = [
    'setup_logging',
    'setup_logging_from_settings',
    'log_performance',
    'StructuredLogger',
    'JSONFormatter',
    'setup_prometheus_metrics',
    'record_sitemap_fetch',
    'record_discovery_metrics',
    'record_ingest_metrics',
    'record_llm_metrics',
    'get_metrics_summary',
    'PrometheusMiddleware',
    'sdg_registry'
]
