# ─────────────────────────────────────────────────────────────────────────────
# Health + Metrics Routes
# ─────────────────────────────────────────────────────────────────────────────
#   /health        → Liveness probe. Near-zero cost, always 200.
#   /health/ready  → Readiness probe. 503 while no provider is configured.
#   /metrics       → /generate counters and provider latency.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from imagechat.dependencies import get_generation_service, get_metrics
from imagechat.schemas import LivenessResponse, ReadinessResponse
from imagechat.services.generation import GenerationService
from imagechat.services.metrics import GenerationMetrics

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe — is the process alive? No deps, no I/O."""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(
    service: GenerationService = Depends(get_generation_service),
) -> JSONResponse:
    """Readiness probe — can /generate succeed at all?

    Without a provider credential every generation answers 500, so the
    instance reports not_ready (503) rather than taking traffic.
    """
    provider = service.provider
    ready = provider is not None

    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        provider=provider.name if provider is not None else None,
        provider_configured=ready,
    )

    return JSONResponse(
        status_code=200 if ready else 503,
        content=response.model_dump(),
    )


@router.get("/metrics")
async def metrics_endpoint(
    metrics: GenerationMetrics = Depends(get_metrics),
) -> dict[str, Any]:
    """Request counters, throttling and provider latency."""
    return metrics.to_dict()
