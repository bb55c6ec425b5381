# ─────────────────────────────────────────────────────────────────────────────
# OpenAI Image Provider — prompt (+ reference images) → generated images
# ─────────────────────────────────────────────────────────────────────────────
# Implements the ImageGenerationProvider protocol from providers/protocol.py.
#
# No reference images → images.generate
# Reference images    → images.edit (every reference is sent as a file)
#
# Image models return no text, so GenerationResult.text is always "".
# The SDK's own retries are disabled: each request succeeds once or fails once.
# ─────────────────────────────────────────────────────────────────────────────

import time
from typing import Any

import structlog
from openai import AsyncOpenAI

from imagechat.encoding import extension_for, to_data_url
from imagechat.providers.protocol import GenerationResult, ImageInput

logger = structlog.get_logger(__name__)


class OpenAIImageProvider:
    """OpenAI Images API wrapper.

    Satisfies the ``ImageGenerationProvider`` protocol. One instance is
    built in the lifespan and shared by all requests; ``AsyncOpenAI``
    pools its HTTP connections.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-image-1-mini",
        size: str = "1024x1024",
        quality: str = "low",
        n: int = 1,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._size = size
        self._quality = quality
        self._n = n
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url or None,
            max_retries=0,
        )

    @property
    def name(self) -> str:
        return f"openai:{self._model}"

    async def generate(self, prompt: str, images: list[ImageInput]) -> GenerationResult:
        t0 = time.perf_counter()
        params: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "n": self._n,
            "size": self._size,
            "quality": self._quality,
        }

        if images:
            files = [
                (f"image-{i}.{extension_for(img.mime_type)}", img.data, img.mime_type)
                for i, img in enumerate(images)
            ]
            response = await self._client.images.edit(image=files, **params)
            operation = "edit"
        else:
            response = await self._client.images.generate(**params)
            operation = "generate"

        urls = [to_data_url(item.b64_json) for item in (response.data or []) if item.b64_json]

        logger.info(
            "openai_images_complete",
            operation=operation,
            model=self._model,
            references=len(images),
            returned=len(urls),
            time_ms=round((time.perf_counter() - t0) * 1000, 1),
        )
        return GenerationResult(text="", images=urls)

    async def close(self) -> None:
        await self._client.close()
