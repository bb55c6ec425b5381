# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# No global variables. Every dependency is explicit in endpoint signatures.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from imagechat.config import Settings
from imagechat.rate_limit import AdmissionController
from imagechat.services.generation import GenerationService
from imagechat.services.metrics import GenerationMetrics


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_admission_controller(request: Request) -> AdmissionController:
    """Inject the AdmissionController into endpoints via Depends()."""
    return request.app.state.admission_controller  # type: ignore[no-any-return]


def get_metrics(request: Request) -> GenerationMetrics:
    """Inject GenerationMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_generation_service(request: Request) -> GenerationService:
    """Inject GenerationService into endpoints via Depends()."""
    return request.app.state.generation_service  # type: ignore[no-any-return]
