# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges GenerationMetrics + AdmissionController stats → prometheus-client gauges.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from imagechat.dependencies import get_admission_controller, get_metrics
from imagechat.rate_limit import AdmissionController
from imagechat.services.metrics import GenerationMetrics

router = APIRouter()

# ── Prometheus metrics (custom registry to avoid default process metrics) ─────

_registry = CollectorRegistry()

# Mirrors monotonically increasing GenerationMetrics counters; exported as
# gauges because the values are copied in, not incremented here.
_outcomes = Gauge(
    "imagechat_generate_requests",
    "Requests to /generate by outcome",
    ["outcome"],
    registry=_registry,
)

_latency = Gauge(
    "imagechat_provider_latency_ms",
    "Provider latency over the recent history window",
    ["quantile"],
    registry=_registry,
)

_tracked_identities = Gauge(
    "imagechat_limiter_tracked_identities",
    "Client identities currently held by the admission controller",
    registry=_registry,
)

_in_flight = Gauge(
    "imagechat_limiter_in_flight",
    "Admitted generations still running",
    registry=_registry,
)

_OUTCOME_KEYS = {
    "total": "requests_total",
    "admitted": "admitted_total",
    "throttled": "throttled_total",
    "rejected": "rejected_total",
    "success": "successes_total",
    "provider_failure": "provider_failures_total",
    "provider_timeout": "provider_timeouts_total",
}


def _sync_metrics(metrics: GenerationMetrics, admission: AdmissionController) -> None:
    """Copy current metrics and limiter stats into the Prometheus gauges."""
    data = metrics.to_dict()
    for outcome, key in _OUTCOME_KEYS.items():
        _outcomes.labels(outcome=outcome).set(data[key])

    _latency.labels(quantile="0.5").set(data["latency_p50_ms"])
    _latency.labels(quantile="0.95").set(data["latency_p95_ms"])

    stats = admission.stats()
    _tracked_identities.set(stats["tracked_identities"])
    _in_flight.set(stats["in_flight"])


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: GenerationMetrics = Depends(get_metrics),
    admission: AdmissionController = Depends(get_admission_controller),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics, admission)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
