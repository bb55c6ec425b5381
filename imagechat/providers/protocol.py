# ─────────────────────────────────────────────────────────────────────────────
# Provider Protocol — runtime_checkable interface for generation backends
# ─────────────────────────────────────────────────────────────────────────────
# The generation service only depends on this Protocol, which keeps the
# external API mockable and swappable in tests.
# ─────────────────────────────────────────────────────────────────────────────

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ImageInput:
    """A decoded reference image."""

    data: bytes
    mime_type: str = "image/png"


@dataclass
class GenerationResult:
    """Provider output: text plus generated images as data URLs."""

    text: str = ""
    images: list[str] = field(default_factory=list)


@runtime_checkable
class ImageGenerationProvider(Protocol):
    """Generates text/images from a prompt and optional reference images."""

    @property
    def name(self) -> str: ...

    async def generate(self, prompt: str, images: list[ImageInput]) -> GenerationResult: ...
