"""
Google Gemini image backends.

Three collaborators consumed by the generation core:
- generate_fast  - quick reimagining of the dish (gemini-2.5-flash-image)
- generate_pro   - high-fidelity fine-dining plating (gemini-3-pro-image-preview)
- generate_guide - 2x2 step-by-step plating guide for a generated dish

All three return an image reference: a ``data:image/png;base64,...`` URL that
the API can hand straight to the browser. Failures raise ``GenerationError``
with a short human-readable message. No retries happen here; the timeout for a
single SDK call is the only policy this layer owns.
"""

import asyncio
import base64
import binascii
import logging
from io import BytesIO
from typing import Callable, Iterable, Optional, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from config import Settings, get_settings
from services.image_validation import normalize_image_mime_type, sniff_image_mime_type

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:"
DATA_URL_MARKER = ";base64,"


class GenerationError(RuntimeError):
    """A single generation or guide call failed."""


class GenerationBackend(Protocol):
    async def generate_fast(self, data: bytes, mime_type: str) -> str: ...

    async def generate_pro(self, data: bytes, mime_type: str) -> str: ...

    async def generate_guide(self, image_ref: str) -> str: ...


def encode_image_ref(data: bytes, mime_type: str = "image/png") -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"{DATA_URL_PREFIX}{mime_type}{DATA_URL_MARKER}{encoded}"


def decode_image_ref(image_ref: str) -> tuple[bytes, str]:
    """Split a data URL into raw bytes and its MIME type."""
    if not image_ref or not image_ref.startswith(DATA_URL_PREFIX):
        raise GenerationError("Image reference is not a data URL")
    header, marker, payload = image_ref[len(DATA_URL_PREFIX):].partition(
        DATA_URL_MARKER
    )
    if not marker or not payload:
        raise GenerationError("Image reference is not base64 encoded")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise GenerationError("Image reference contains invalid base64 data")
    mime_type = normalize_image_mime_type(header) or sniff_image_mime_type(data) or "image/png"
    return data, mime_type


class GeminiImageBackend:
    """
    Image generation backed by the ``google-genai`` SDK.

    The SDK client is synchronous; each call runs in a worker thread so that
    the event loop stays free for sibling slots of the same batch.
    """

    IMAGE_ASPECT_RATIO = "1:1"
    MAX_REFERENCE_SIDE = 2048
    ALLOWED_REFERENCE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})

    FAST_PROMPT = (
        "Reimagine the dish in this photo as if it were served in a Michelin-starred "
        "restaurant. Keep the same core ingredients, refine the plating, use a clean "
        "neutral plate and soft natural light. Photorealistic, top-down three-quarter view."
    )
    PRO_PROMPT = (
        "You are a fine-dining chef and food photographer. Recreate this dish as a "
        "signature tasting-menu course: precise composition, intentional negative "
        "space, sauces applied with restraint, garnish that echoes the ingredients "
        "already present. Studio-quality lighting, shallow depth of field, "
        "photorealistic, no text or logos."
    )
    GUIDE_PROMPT = (
        "Create a step-by-step plating guide for the dish in this image as a single "
        "2x2 grid. Panel 1: the empty plate with the base element placed. Panel 2: "
        "the main component added. Panel 3: sauces and secondary elements. Panel 4: "
        "the finished plate with garnish, matching the input image. Keep the same "
        "plate, angle and lighting in every panel. Number each panel 1 to 4."
    )

    def __init__(
        self,
        client: object = None,
        *,
        fast_model: str,
        pro_model: str,
        guide_model: str,
        timeout_seconds: float = 120,
    ):
        self._client = client
        self.fast_model = fast_model
        self.pro_model = pro_model
        self.guide_model = guide_model
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GeminiImageBackend":
        settings = settings or get_settings()
        client = None
        if cls.is_available(settings):
            from google import genai

            client = genai.Client(api_key=settings.GOOGLE_API_KEY)
            logger.info(
                "Gemini backend ready: fast=%s pro=%s guide=%s timeout=%ss",
                settings.FAST_IMAGE_MODEL,
                settings.PRO_IMAGE_MODEL,
                settings.GUIDE_IMAGE_MODEL,
                settings.API_TIMEOUT_SECONDS,
            )
        else:
            logger.warning(
                "Gemini backend not configured; generation calls will fail. "
                "Install google-genai and set GOOGLE_API_KEY in .env"
            )
        return cls(
            client,
            fast_model=settings.FAST_IMAGE_MODEL,
            pro_model=settings.PRO_IMAGE_MODEL,
            guide_model=settings.GUIDE_IMAGE_MODEL,
            timeout_seconds=settings.API_TIMEOUT_SECONDS,
        )

    @staticmethod
    def is_available(settings: Optional[Settings] = None) -> bool:
        """Check if the Gemini SDK is importable and an API key is configured."""
        settings = settings or get_settings()
        try:
            from google import genai  # noqa: F401
        except ImportError:
            return False
        return bool(settings.GOOGLE_API_KEY)

    async def generate_fast(self, data: bytes, mime_type: str) -> str:
        return await self._generate_image(self.fast_model, self.FAST_PROMPT, data, mime_type)

    async def generate_pro(self, data: bytes, mime_type: str) -> str:
        return await self._generate_image(self.pro_model, self.PRO_PROMPT, data, mime_type)

    async def generate_guide(self, image_ref: str) -> str:
        data, mime_type = decode_image_ref(image_ref)
        return await self._generate_image(self.guide_model, self.GUIDE_PROMPT, data, mime_type)

    async def _run_with_timeout(self, call: Callable[[], object]) -> object:
        return await asyncio.wait_for(
            asyncio.to_thread(call), timeout=self.timeout_seconds
        )

    def _build_generation_config(self, types_module: object) -> object:
        config_kwargs: dict[str, object] = {"response_modalities": ["TEXT", "IMAGE"]}
        image_config_cls = getattr(types_module, "ImageConfig", None)
        if image_config_cls is not None:
            try:
                config_kwargs["image_config"] = image_config_cls(
                    aspect_ratio=self.IMAGE_ASPECT_RATIO
                )
            except TypeError as e:
                logger.warning("ImageConfig rejected aspect_ratio: %s", e)
        return types_module.GenerateContentConfig(**config_kwargs)

    def _prepare_reference_image(self, data: bytes, mime_type: str) -> tuple[bytes, str]:
        """
        Apply EXIF orientation and cap the longest side before upload.

        Images already within limits are sent unchanged.
        """
        with Image.open(BytesIO(data)) as img:
            img.load()
            orientation = img.getexif().get(0x0112, 1)
            if (
                orientation == 1
                and max(img.size) <= self.MAX_REFERENCE_SIDE
                and mime_type in self.ALLOWED_REFERENCE_MIME_TYPES
            ):
                return data, mime_type
            prepared = ImageOps.exif_transpose(img).convert("RGB")
            prepared.thumbnail((self.MAX_REFERENCE_SIDE, self.MAX_REFERENCE_SIDE))
            return self._image_to_bytes(prepared), "image/png"

    async def _generate_image(
        self,
        model: str,
        prompt: str,
        data: bytes,
        mime_type: str,
    ) -> str:
        if self._client is None:
            raise GenerationError("Image generation is not configured (missing GOOGLE_API_KEY)")

        from google.genai import types
        from google.genai.errors import APIError

        ref_mime_type = normalize_image_mime_type(mime_type) or "image/png"
        try:
            ref_bytes, ref_mime_type = self._prepare_reference_image(data, ref_mime_type)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            logger.warning("Failed to preprocess reference image, using raw bytes: %s", e)
            ref_bytes = data

        # Image part first, then the instruction text.
        contents = [types.Part.from_bytes(data=ref_bytes, mime_type=ref_mime_type), prompt]

        def _call_generate_content():
            return self._client.models.generate_content(
                model=model,
                contents=contents,
                config=self._build_generation_config(types),
            )

        logger.debug("Calling %s (%d reference bytes)", model, len(ref_bytes))
        try:
            response = await self._run_with_timeout(_call_generate_content)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss", model, self.timeout_seconds)
            raise GenerationError(f"Timed out after {self.timeout_seconds:g}s")
        except APIError as e:
            message = str(e)
            if "429" in message or "RESOURCE_EXHAUSTED" in message:
                logger.warning("%s rate limited: %s", model, e)
                raise GenerationError("rate limited") from e
            logger.warning("%s API error: %s", model, e)
            raise GenerationError(f"Gemini API error: {message}") from e
        except Exception as e:
            logger.warning("%s request failed: %s: %s", model, type(e).__name__, e)
            raise GenerationError(f"Gemini request failed: {str(e) or type(e).__name__}") from e

        image = self._extract_image_from_response(response)
        if image is None:
            logger.warning("%s returned no image", model)
            raise GenerationError("No image returned by the model")
        return encode_image_ref(self._image_to_bytes(image), "image/png")

    @staticmethod
    def _iter_response_parts(response: object) -> Iterable[object]:
        """Yield candidate parts across SDK response layouts."""
        direct_parts = getattr(response, "parts", None)
        if direct_parts:
            for part in direct_parts:
                yield part

        candidates = getattr(response, "candidates", None)
        if not candidates:
            return
        for candidate in candidates:
            content = getattr(candidate, "content", None)
            if content is None:
                continue
            parts = getattr(content, "parts", None)
            if not parts:
                continue
            for part in parts:
                yield part

    @classmethod
    def _extract_image_from_response(cls, response: object) -> Optional[Image.Image]:
        """Extract first inline image from Gemini response."""
        for part in cls._iter_response_parts(response):
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data is not None else None
            if not data:
                continue
            try:
                image_bytes = base64.b64decode(data) if isinstance(data, str) else data
                pil_image = Image.open(BytesIO(image_bytes))
                pil_image.load()
                return pil_image
            except (UnidentifiedImageError, OSError, ValueError, binascii.Error):
                continue
        return None

    @staticmethod
    def _image_to_bytes(image: Image.Image, format: str = "PNG") -> bytes:
        buffer = BytesIO()
        image.save(buffer, format=format)
        return buffer.getvalue()
