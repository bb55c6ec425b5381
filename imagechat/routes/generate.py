# ─────────────────────────────────────────────────────────────────────────────
# POST /generate — prompt (+ reference images) → generated images (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request

from imagechat.config import get_settings
from imagechat.dependencies import get_generation_service
from imagechat.identity import client_identity
from imagechat.rate_limit import limiter
from imagechat.schemas import ErrorResponse, GenerateRequest, GenerateResponse
from imagechat.services.generation import GenerationService

router = APIRouter()


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
# Flood guard only; the per-client policy lives in the AdmissionController.
@limiter.limit(lambda: get_settings().http_rate_limit)
async def generate(
    request: Request,
    body: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
) -> GenerateResponse:
    """Generate images from a prompt and optional reference images.

    Validation is Pydantic plus the service's checks. Errors are
    exceptions. Logic is in the service. This endpoint is just wiring.
    """
    return await service.generate(body, identity=client_identity(request))
