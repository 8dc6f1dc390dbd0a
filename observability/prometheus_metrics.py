"""Prometheus metrics integration for the SDG Discovery API."""

from prometheus_client import Counter, Histogram, Info, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.core import CollectorRegistry
from fastapi import FastAPI, Request, Response
import re
import time
from typing import Optional, Dict, Any
import logging
import os

logger = logging.getLogger(__name__)

# Private registry so tests can create several apps in one process
sdg_registry = CollectorRegistry()

# Request metrics
request_count = Counter(
    'sdg_http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=sdg_registry
)

request_duration = Histogram(
    'sdg_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=sdg_registry
)

# Discovery metrics
sitemap_fetches = Counter(
    'sdg_sitemap_fetches_total',
    'Sitemap, feed and list page fetches',
    ['status'],
    registry=sdg_registry
)

discovered_urls = Counter(
    'sdg_discovered_urls_total',
    'Document URLs produced by endpoint discovery',
    ['endpoint_type', 'outcome'],
    registry=sdg_registry
)

discovery_duration = Histogram(
    'sdg_discovery_duration_seconds',
    'Endpoint discovery duration in seconds',
    ['endpoint_type'],
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=sdg_registry
)

# Ingestion metrics
document_ingests = Counter(
    'sdg_document_ingests_total',
    'Document download and extraction attempts',
    ['content_kind', 'status'],
    registry=sdg_registry
)

document_bytes = Histogram(
    'sdg_document_size_bytes',
    'Size of downloaded documents in bytes',
    ['content_kind'],
    buckets=[1000, 10000, 100000, 1000000, 5000000, 25000000],
    registry=sdg_registry
)

# LLM metrics
llm_requests = Counter(
    'sdg_llm_requests_total',
    'Language model calls by agent operation',
    ['operation', 'status'],
    registry=sdg_registry
)

llm_duration = Histogram(
    'sdg_llm_request_duration_seconds',
    'Language model call duration in seconds',
    ['operation'],
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=sdg_registry
)

# Application info
app_info = Info(
    'sdg_app_info',
    'SDG Discovery application information',
    registry=sdg_registry
)

# Error metrics
error_count = Counter(
    'sdg_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=sdg_registry
)


class PrometheusMiddleware:
    """Middleware to collect Prometheus metrics for HTTP requests."""

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        method = request.method
        endpoint = normalize_endpoint(request.url.path)

        start_time = time.time()
        status_code = 500  # Default to error

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            logger.error(f"Request processing error: {e}")
            error_count.labels(error_type=type(e).__name__, component="http").inc()
            raise
        finally:
            duration = time.time() - start_time
            request_count.labels(
                method=method,
                endpoint=endpoint,
                status_code=str(status_code)
            ).inc()
            request_duration.labels(method=method, endpoint=endpoint).observe(duration)


def normalize_endpoint(path: str) -> str:
    """Normalize endpoint path to reduce cardinality."""
    path = re.sub(r'/\d+', '/{id}', path)
    path = re.sub(r'/[a-f0-9]{32,}', '/{hash}', path)
    return path


def setup_prometheus_metrics(app: FastAPI) -> None:
    """Setup Prometheus metrics collection for FastAPI app."""
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", include_in_schema=False)
    def metrics_endpoint():
        """Prometheus metrics endpoint."""
        return Response(generate_latest(sdg_registry), media_type=CONTENT_TYPE_LATEST)

    app_info.info({
        'version': os.getenv('APP_VERSION', 'unknown'),
        'environment': os.getenv('ENVIRONMENT', 'development'),
    })

    logger.info("Prometheus metrics configured")


def record_sitemap_fetch(status: str) -> None:
    sitemap_fetches.labels(status=status).inc()


def record_discovery_metrics(endpoint_type: str, duration: float, kept: int, skipped: int,
                             filtered: int, error: Optional[str] = None) -> None:
    """Record the outcome of one endpoint discovery."""
    discovery_duration.labels(endpoint_type=endpoint_type).observe(duration)
    if error:
        error_count.labels(error_type="discovery_error", component="discovery").inc()
        return
    discovered_urls.labels(endpoint_type=endpoint_type, outcome="kept").inc(kept)
    discovered_urls.labels(endpoint_type=endpoint_type, outcome="skipped").inc(skipped)
    discovered_urls.labels(endpoint_type=endpoint_type, outcome="filtered").inc(filtered)


def record_ingest_metrics(content_kind: str, byte_size: int, error: Optional[str] = None) -> None:
    """Record one document download attempt."""
    status = "error" if error else "success"
    document_ingests.labels(content_kind=content_kind, status=status).inc()

    if not error:
        document_bytes.labels(content_kind=content_kind).observe(byte_size)
    else:
        error_count.labels(error_type="ingest_error", component="ingest").inc()


def record_llm_metrics(operation: str, duration: float, error: Optional[str] = None) -> None:
    """Record one language model call."""
    status = "error" if error else "success"
    llm_requests.labels(operation=operation, status=status).inc()
    llm_duration.labels(operation=operation).observe(duration)

    if error:
        error_count.labels(error_type="llm_error", component="agents").inc()


def get_metrics_summary() -> Dict[str, Any]:
    """Totals of the main counters, for the health endpoint."""
    summary = {}
    for name, metric in (
        ("requests_total", request_count),
        ("sitemap_fetches_total", sitemap_fetches),
        ("document_ingests_total", document_ingests),
        ("llm_requests_total", llm_requests),
        ("errors_total", error_count),
    ):
        total = 0.0
        for family in metric.collect():
            for sample in family.samples:
                if sample.name.endswith("_total"):
                    total += sample.value
        summary[name] = total
    return summary
