# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn imagechat.main:create_app --factory --host 0.0.0.0 --port 8080

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from imagechat.config import Settings, get_settings
from imagechat.exceptions import register_exception_handlers
from imagechat.logging_config import configure_logging
from imagechat.middleware import RequestContextMiddleware
from imagechat.providers.openai_images import OpenAIImageProvider
from imagechat.rate_limit import AdmissionController, limiter
from imagechat.routes import debug, generate, health
from imagechat.routes import prometheus as prometheus_routes
from imagechat.services.generation import GenerationService
from imagechat.services.metrics import GenerationMetrics

logger = structlog.get_logger(__name__)


def _parse_retry_after(rate_limit: str) -> str:
    """Extract window duration from slowapi rate limit string."""
    windows = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}
    try:
        _, window = rate_limit.strip().split("/")
        return str(windows.get(window.strip(), 60))
    except (ValueError, AttributeError):
        return "60"


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a structured JSON 429 consistent with ImageChatError responses."""
    settings = get_settings()
    retry_after = _parse_retry_after(settings.http_rate_limit)
    logger.warning(
        "http_rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        detail=str(exc.detail),
    )
    return JSONResponse(
        status_code=429,
        content={"error": f"Rate limit exceeded: {exc.detail}", "type": "RateLimitExceeded"},
        headers={"Retry-After": retry_after},
    )


def build_admission_controller(settings: Settings) -> AdmissionController:
    return AdmissionController(
        min_interval_seconds=settings.rate_window_seconds,
        max_in_flight=settings.max_in_flight_per_client,
        retry_after_seconds=settings.retry_after_seconds,
        retry_after_mode=settings.retry_after_mode,
        idle_ttl_seconds=settings.limiter_idle_ttl_seconds,
        max_clients=settings.limiter_max_clients,
    )


def build_provider(settings: Settings) -> OpenAIImageProvider | None:
    """OpenAI provider, or None when no API key is configured."""
    if not settings.provider_configured:
        logger.warning("provider_not_configured", hint="Set OPENAI_API_KEY")
        return None
    return OpenAIImageProvider(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.image_model,
        size=settings.image_size,
        quality=settings.image_quality,
        n=settings.image_count,
        base_url=settings.openai_base_url or None,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the long-lived collaborators once and park them on app.state."""
    settings = get_settings()

    metrics = GenerationMetrics()
    admission = build_admission_controller(settings)
    provider = build_provider(settings)
    service = GenerationService(provider, admission, settings, metrics=metrics)

    app.state.settings = settings
    app.state.metrics = metrics
    app.state.admission_controller = admission
    app.state.generation_service = service

    logger.info(
        "startup_complete",
        provider=provider.name if provider is not None else None,
        rate_window_s=settings.rate_window_seconds,
        max_in_flight=settings.max_in_flight_per_client,
        retry_after_mode=settings.retry_after_mode,
    )

    yield

    if provider is not None:
        await provider.close()


def _parse_origins(allowed_origins: str) -> list[str]:
    """Parse comma-separated CORS origins. Empty string → deny all."""
    if not allowed_origins.strip():
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS env var. Cross-origin requests will be rejected.",
        )
        return []
    return [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn imagechat.main:create_app --factory"""
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="Image Chat",
        description="Rate-limited prompt-to-image generation backend",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(
        RateLimitExceeded, _rate_limit_exceeded_handler  # type: ignore[arg-type]
    )

    # Middleware order (Starlette applies in reverse): CORS → RequestContext
    app.add_middleware(RequestContextMiddleware)

    origins = _parse_origins(settings.allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type"],
        expose_headers=["Retry-After", "X-Request-ID"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(generate.router, tags=["generate"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])
    if settings.enable_debug_routes:
        app.include_router(debug.router, prefix="/debug", tags=["debug"])

    return app
