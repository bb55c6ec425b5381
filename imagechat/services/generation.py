# /generate request flow: credential → prompt → images → admission → provider.
# Each step short-circuits; only the provider call consumes an admission slot.


import asyncio
import time

import structlog

from imagechat.config import Settings
from imagechat.encoding import decode_image_data
from imagechat.exceptions import (
    ConfigurationError,
    ImageChatError,
    InvalidImageError,
    PromptRequiredError,
    ProviderError,
    ProviderTimeoutError,
    ThrottledError,
    TooManyImagesError,
)
from imagechat.providers.protocol import GenerationResult, ImageGenerationProvider, ImageInput
from imagechat.rate_limit import AdmissionController
from imagechat.schemas import GenerateRequest, GenerateResponse, ReferenceImage
from imagechat.services.metrics import GenerationMetrics

logger = structlog.get_logger(__name__)


class GenerationService:
    """Validates a request, gates it through admission control, calls the provider.

    ``provider`` is None when no credential is configured; every request
    then fails with ConfigurationError before touching the limiter.
    """

    def __init__(
        self,
        provider: ImageGenerationProvider | None,
        admission: AdmissionController,
        settings: Settings,
        metrics: GenerationMetrics | None = None,
    ) -> None:
        self._provider = provider
        self._admission = admission
        self._settings = settings
        self._metrics = metrics

    @property
    def provider(self) -> ImageGenerationProvider | None:
        return self._provider

    async def generate(self, request: GenerateRequest, identity: str) -> GenerateResponse:
        if self._metrics:
            self._metrics.record_request()

        try:
            provider = self._require_provider()
            prompt = self._require_prompt(request.prompt)
            images = self._decode_images(request.images)
        except ImageChatError:
            if self._metrics:
                self._metrics.record_rejected()
            raise

        try:
            async with self._admission.slot(identity):
                if self._metrics:
                    self._metrics.record_admitted()
                logger.info(
                    "generation_admitted",
                    identity=identity,
                    prompt_chars=len(prompt),
                    references=len(images),
                )
                result = await self._call_provider(provider, prompt, images)
        except ThrottledError as e:
            if self._metrics:
                self._metrics.record_throttled()
            logger.warning(
                "generation_throttled",
                identity=identity,
                retry_after=e.retry_after_seconds,
            )
            raise

        return GenerateResponse(
            text=result.text,
            images=result.images,
            has_images=len(result.images) > 0,
        )

    def _require_provider(self) -> ImageGenerationProvider:
        if self._provider is None:
            raise ConfigurationError("OpenAI")
        return self._provider

    @staticmethod
    def _require_prompt(prompt: str | None) -> str:
        if prompt is None or not prompt.strip():
            raise PromptRequiredError()
        return prompt

    def _decode_images(self, images: list[ReferenceImage]) -> list[ImageInput]:
        limit = self._settings.max_reference_images
        if len(images) > limit:
            raise TooManyImagesError(len(images), limit)

        decoded = []
        for i, image in enumerate(images):
            try:
                data = decode_image_data(image.data)
            except ValueError as e:
                raise InvalidImageError(i, str(e)) from e
            decoded.append(ImageInput(data=data, mime_type=image.mime_type))
        return decoded

    async def _call_provider(
        self, provider: ImageGenerationProvider, prompt: str, images: list[ImageInput]
    ) -> GenerationResult:
        """Single provider attempt under a timeout. No retries."""
        timeout = self._settings.provider_timeout_seconds
        start = time.perf_counter()
        try:
            result = await asyncio.wait_for(provider.generate(prompt, images), timeout=timeout)
        except TimeoutError:
            self._record(start, success=False, timed_out=True)
            logger.error("provider_timeout", provider=provider.name, timeout_s=timeout)
            raise ProviderTimeoutError(timeout) from None
        except Exception as e:
            self._record(start, success=False)
            logger.error(
                "provider_failed",
                provider=provider.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ProviderError(_provider_message(e)) from e

        elapsed = self._record(start, success=True, images=len(result.images))
        logger.info(
            "generated",
            provider=provider.name,
            images=len(result.images),
            time_ms=elapsed,
        )
        return result

    def _record(
        self, start: float, success: bool, images: int = 0, timed_out: bool = False
    ) -> float:
        elapsed = round((time.perf_counter() - start) * 1000, 1)
        if self._metrics:
            self._metrics.record_result(elapsed, success, images=images, timed_out=timed_out)
        return elapsed


def _provider_message(exc: Exception) -> str | None:
    """Best human-readable message from a provider exception.

    OpenAI SDK errors carry the API's message on ``.message``.
    """
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc) or None
