# ─────────────────────────────────────────────────────────────────────────────
# Custom Exceptions + FastAPI Exception Handlers
# ─────────────────────────────────────────────────────────────────────────────


import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Exception hierarchy ──────────────────────────────────────────────────────


class ImageChatError(Exception):
    """Base exception for all errors surfaced to /generate callers."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(ImageChatError):
    """Raised when the provider credential is absent. Not retryable."""

    def __init__(self, provider: str = "OpenAI"):
        super().__init__(f"{provider} API key not configured", status_code=500)


class PromptRequiredError(ImageChatError):
    def __init__(self) -> None:
        super().__init__("Prompt is required", status_code=400)


class InvalidImageError(ImageChatError):
    """Raised when a reference image cannot be decoded."""

    def __init__(self, index: int, reason: str):
        super().__init__(f"Reference image {index} is invalid: {reason}", status_code=400)


class TooManyImagesError(ImageChatError):
    def __init__(self, count: int, limit: int):
        super().__init__(
            f"Too many reference images ({count}); at most {limit} allowed",
            status_code=400,
        )


class ThrottledError(ImageChatError):
    """Raised when the admission controller refuses a request.

    The handler turns retry_after_seconds into a Retry-After header.
    """

    def __init__(self, retry_after_seconds: int = 60):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            "Rate limit exceeded. Please wait before sending another request.",
            status_code=429,
        )


class ProviderError(ImageChatError):
    """Raised when the generation provider fails (network, quota, bad response)."""

    def __init__(self, message: str | None = None):
        super().__init__(message or "Failed to generate content", status_code=500)


class ProviderTimeoutError(ProviderError):
    """Provider did not answer in time. A provider failure like any other (500)."""

    def __init__(self, timeout_s: float):
        super().__init__(f"Generation timed out after {timeout_s:g}s")


# ── Handler registration ────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app.

    Endpoints raise ImageChatError subclasses; these handlers catch them
    and return structured JSON -- no inline try/except in endpoints.
    """

    @app.exception_handler(ThrottledError)
    async def throttled_handler(request: Request, exc: ThrottledError) -> JSONResponse:
        """429 with Retry-After header."""
        return JSONResponse(
            status_code=429,
            content={"error": exc.message, "type": "ThrottledError"},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(ImageChatError)
    async def imagechat_error_handler(request: Request, exc: ImageChatError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("imagechat_error", error=exc.message, error_type=type(exc).__name__)
        else:
            logger.info("request_rejected", error=exc.message, error_type=type(exc).__name__)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "type": type(exc).__name__},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request body")
        if location:
            message = f"{location}: {message}"
        logger.info("request_validation_failed", error=message, error_count=len(errors))
        return JSONResponse(
            status_code=400,
            content={"error": message, "type": "ValidationError"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "type": "UnhandledError"},
        )
