"""
Upload validation and encoding of the dish photo.

``encode_input`` is the single entry point used by the upload route: it checks
the bytes (not the client's Content-Type), resolves the real MIME type and
returns the payload the generation backends consume.
"""

import base64
import logging
from dataclasses import dataclass
from io import BytesIO

from fastapi import HTTPException, status
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})
MAX_UPLOAD_SIZE_BYTES = 10 * 1024 * 1024  # 10MB
MIN_IMAGE_SIDE = 64
MAX_IMAGE_SIDE = 8192
MAX_IMAGE_PIXELS = 16_777_216  # 16 MP
MAX_ASPECT_RATIO = 8.0

IMAGE_MIME_ALIASES = {
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
    "image/x-jpeg": "image/jpeg",
    "image/jfif": "image/jpeg",
    "image/x-png": "image/png",
    "image/apng": "image/png",
    "image/x-webp": "image/webp",
}


@dataclass(frozen=True)
class EncodedInput:
    """Validated upload, ready to be sent to every slot of a batch."""

    data: bytes
    mime_type: str
    width: int
    height: int

    @property
    def preview_ref(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def normalize_image_mime_type(claimed_mime_type: str) -> str:
    mime_type = (claimed_mime_type or "").strip().strip("'\"")
    if not mime_type:
        return ""
    # Drop parameters and accidental comma-joined duplicates.
    mime_type = mime_type.split(",", 1)[0].split(";", 1)[0].strip().lower()
    return IMAGE_MIME_ALIASES.get(mime_type, mime_type)


def sniff_image_mime_type(content: bytes) -> str | None:
    """
    Best-effort MIME sniffing by magic bytes.

    Returns "image/png", "image/jpeg", "image/webp" or None.
    """
    if not content:
        return None
    if content.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if content.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if len(content) >= 12 and content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _detect_image_dimensions(content: bytes) -> tuple[int, int]:
    try:
        with Image.open(BytesIO(content)) as image:
            image.load()
            width, height = image.size
    except (UnidentifiedImageError, OSError, ValueError):
        raise _bad_request(
            "Unsupported or corrupted image file. Please upload PNG, JPG, or WEBP."
        )
    if width <= 0 or height <= 0:
        raise _bad_request("Invalid image dimensions")
    return width, height


def encode_input(
    content: bytes,
    claimed_mime_type: str | None = None,
    *,
    max_size_bytes: int = MAX_UPLOAD_SIZE_BYTES,
) -> EncodedInput:
    """
    Validate an uploaded dish photo and return it as generation input.

    Rules:
    - PNG/JPEG/WEBP only, decided by magic bytes; a wrong or missing client
      Content-Type is tolerated when the bytes are valid.
    - Images must decode and fall within the side, pixel and aspect limits.
    """
    if len(content) > max_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB",
        )
    if len(content) < 12:
        raise _bad_request("File too small to be a valid image")

    normalized_claimed = normalize_image_mime_type(claimed_mime_type or "")
    sniffed_mime = sniff_image_mime_type(content)
    if sniffed_mime not in ALLOWED_IMAGE_MIME_TYPES:
        raise _bad_request("Invalid file type. Allowed: PNG, JPG, WEBP")

    if normalized_claimed and normalized_claimed != sniffed_mime:
        logger.warning(
            "Claimed MIME type mismatch (claimed=%s, sniffed=%s); using sniffed MIME",
            normalized_claimed,
            sniffed_mime,
        )

    width, height = _detect_image_dimensions(content)

    if min(width, height) < MIN_IMAGE_SIDE:
        raise _bad_request(
            f"Image is too small ({width}x{height}). "
            f"Minimum supported size is {MIN_IMAGE_SIDE}x{MIN_IMAGE_SIDE}."
        )
    if max(width, height) > MAX_IMAGE_SIDE:
        raise _bad_request(
            f"Image is too large ({width}x{height}). "
            f"Maximum supported size is {MAX_IMAGE_SIDE}x{MAX_IMAGE_SIDE}."
        )
    if width * height > MAX_IMAGE_PIXELS:
        raise _bad_request(
            f"Image has too many pixels ({width * height}). "
            f"Maximum supported pixel count is {MAX_IMAGE_PIXELS}."
        )
    if max(width, height) / min(width, height) > MAX_ASPECT_RATIO:
        raise _bad_request(
            f"Unsupported aspect ratio ({width}x{height}). "
            f"Maximum supported ratio is {MAX_ASPECT_RATIO}:1."
        )

    return EncodedInput(data=content, mime_type=sniffed_mime, width=width, height=height)
