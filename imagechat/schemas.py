# ─────────────────────────────────────────────────────────────────────────────
# Pydantic v2 Request / Response Schemas
# ─────────────────────────────────────────────────────────────────────────────
# Wire names follow the browser client (camelCase mimeType / hasImages);
# Python code uses the snake_case field names.
# ─────────────────────────────────────────────────────────────────────────────


from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from imagechat.encoding import DEFAULT_MIME_TYPE


class ReferenceImage(BaseModel):
    """A reference image supplied by the client."""

    model_config = ConfigDict(populate_by_name=True)

    data: str = Field(..., description="Base64 image data, optionally data-URL prefixed")
    mime_type: str = Field(DEFAULT_MIME_TYPE, alias="mimeType")

    @field_validator("mime_type", mode="before")
    @classmethod
    def default_blank_mime_type(cls, v: Any) -> Any:
        # Browsers report "" for files with an unknown type.
        if v is None or (isinstance(v, str) and not v.strip()):
            return DEFAULT_MIME_TYPE
        return v


class GenerateRequest(BaseModel):
    """Incoming prompt plus optional reference images.

    ``prompt`` is optional here on purpose: a missing prompt is reported
    by the generation service after the credential check, with the same
    400 message as an empty one.
    """

    prompt: str | None = None
    images: list[ReferenceImage] = Field(default_factory=list)


class GenerateResponse(BaseModel):
    """Generated text and images (data URLs)."""

    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    images: list[str] = Field(default_factory=list)
    has_images: bool = Field(False, alias="hasImages")


class ErrorResponse(BaseModel):
    error: str
    type: str | None = None


class LivenessResponse(BaseModel):
    """Liveness probe — minimal, near-zero cost."""

    status: str = "ok"


class ReadinessResponse(BaseModel):
    """Readiness probe — can the instance serve /generate?"""

    status: str  # "ready" or "not_ready"
    provider: str | None
    provider_configured: bool
