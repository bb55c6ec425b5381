# ─────────────────────────────────────────────────────────────────────────────
# Encoding Utilities — reference-image decoding, data-URL encoding
# ─────────────────────────────────────────────────────────────────────────────


import base64
import binascii

DEFAULT_MIME_TYPE = "image/png"


def strip_data_url(data: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if present.

    Anything up to the first comma is treated as the prefix, so bare
    base64 (which never contains a comma) passes through untouched.
    """
    if "," in data:
        return data.split(",", 1)[1]
    return data


def decode_image_data(data: str) -> bytes:
    """Decode a base64 (optionally data-URL prefixed) image payload.

    Raises ValueError on malformed base64 or an empty payload.
    """
    payload = strip_data_url(data.strip())
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"not valid base64 ({e})") from e
    if not raw:
        raise ValueError("empty image data")
    return raw


def to_data_url(b64: str, mime_type: str = DEFAULT_MIME_TYPE) -> str:
    """Wrap already-encoded base64 image data as a data URL."""
    return f"data:{mime_type};base64,{b64}"


def extension_for(mime_type: str) -> str:
    """File extension for an image MIME type ("image/jpeg" → "jpeg")."""
    subtype = mime_type.split("/", 1)[-1].split(";", 1)[0].strip().lower()
    return subtype or "png"
