# ─────────────────────────────────────────────────────────────────────────────
# Debug Routes — admission controller inspection
# ─────────────────────────────────────────────────────────────────────────────
# Only mounted when settings.enable_debug_routes is True.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends, Request

from imagechat.dependencies import get_admission_controller
from imagechat.identity import client_identity
from imagechat.rate_limit import AdmissionController

router = APIRouter()


@router.get("/limiter")
async def limiter_stats(
    request: Request,
    admission: AdmissionController = Depends(get_admission_controller),
) -> dict[str, Any]:
    """Limiter configuration and occupancy, plus the caller's derived identity."""
    return {**admission.stats(), "your_identity": client_identity(request)}


@router.post("/limiter/sweep")
async def limiter_sweep(
    admission: AdmissionController = Depends(get_admission_controller),
) -> dict[str, Any]:
    """Evict idle identities now instead of waiting for the next write."""
    return {"evicted": admission.sweep()}
