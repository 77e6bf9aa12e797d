from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter
from fastapi.responses import Response

registry = CollectorRegistry()

proxy_requests_total = Counter(
    "mcpflow_proxy_requests_total",
    "Gateway requests by service and outcome",
    ["service", "outcome"],
    registry=registry,
)

proxy_upstream_seconds = Histogram(
    "mcpflow_proxy_upstream_seconds",
    "Latency of proxied upstream calls in seconds",
    ["service"],
    registry=registry,
)

usage_record_failures_total = Counter(
    "mcpflow_usage_record_failures_total",
    "Usage rows that could not be written",
    registry=registry,
)

secret_unwrap_failures_total = Counter(
    "mcpflow_secret_unwrap_failures_total",
    "Credential unwrap failures by category",
    ["category"],
    registry=registry,
)

metrics_router = APIRouter()


@metrics_router.get("/metrics")
async def get_metrics():
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
