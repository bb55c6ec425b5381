"""Generation providers — Protocol interface and the OpenAI implementation."""

from imagechat.providers.openai_images import OpenAIImageProvider
from imagechat.providers.protocol import GenerationResult, ImageGenerationProvider, ImageInput

__all__ = [
    "GenerationResult",
    "ImageGenerationProvider",
    "ImageInput",
    "OpenAIImageProvider",
]
