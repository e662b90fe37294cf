"""
Tests for the Gemini image backend.
"""

import base64
import time
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from PIL import Image

from conftest import make_image_bytes
from services.gemini_backend import (
    GeminiImageBackend,
    GenerationError,
    decode_image_ref,
    encode_image_ref,
)


def _response_with_image(data: bytes):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type="image/png"))
    return SimpleNamespace(parts=[part], candidates=[])


def _backend(client, timeout_seconds: float = 5):
    return GeminiImageBackend(
        client,
        fast_model="fast-model",
        pro_model="pro-model",
        guide_model="guide-model",
        timeout_seconds=timeout_seconds,
    )


class TestImageRefs:
    def test_encode_produces_data_url(self):
        ref = encode_image_ref(b"abc", "image/jpeg")

        assert ref == "data:image/jpeg;base64," + base64.b64encode(b"abc").decode()

    def test_decode_returns_bytes_and_mime(self):
        data = make_image_bytes()

        decoded, mime = decode_image_ref(encode_image_ref(data, "image/png"))

        assert decoded == data
        assert mime == "image/png"

    @pytest.mark.parametrize(
        "ref",
        ["", "https://example.com/dish.png", "data:image/png,plain", "data:image/png;base64,@@@"],
    )
    def test_decode_rejects_malformed_refs(self, ref):
        with pytest.raises(GenerationError):
            decode_image_ref(ref)


class TestAvailability:
    def test_not_available_without_key(self):
        settings = MagicMock()
        settings.GOOGLE_API_KEY = ""

        assert GeminiImageBackend.is_available(settings) is False

    def test_available_with_key(self):
        settings = MagicMock()
        settings.GOOGLE_API_KEY = "test-api-key"

        assert GeminiImageBackend.is_available(settings) is True

    def test_from_settings_without_key_has_no_client(self):
        settings = MagicMock()
        settings.GOOGLE_API_KEY = ""
        settings.FAST_IMAGE_MODEL = "f"
        settings.PRO_IMAGE_MODEL = "p"
        settings.GUIDE_IMAGE_MODEL = "g"
        settings.API_TIMEOUT_SECONDS = 30

        backend = GeminiImageBackend.from_settings(settings)

        assert backend._client is None
        assert backend.fast_model == "f"
        assert backend.timeout_seconds == 30

    @pytest.mark.asyncio
    async def test_unconfigured_backend_raises(self, sample_image_bytes):
        backend = _backend(None)

        with pytest.raises(GenerationError, match="not configured"):
            await backend.generate_fast(sample_image_bytes, "image/png")


class TestGeneration:
    @pytest.mark.asyncio
    async def test_fast_returns_png_data_url(self, sample_image_bytes):
        client = MagicMock()
        client.models.generate_content.return_value = _response_with_image(
            make_image_bytes(color="green")
        )
        backend = _backend(client)

        ref = await backend.generate_fast(sample_image_bytes, "image/png")

        data, mime = decode_image_ref(ref)
        assert mime == "image/png"
        assert Image.open(BytesIO(data)).size == (128, 128)
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "fast-model"
        assert kwargs["contents"][1] == GeminiImageBackend.FAST_PROMPT

    @pytest.mark.asyncio
    async def test_pro_uses_pro_model(self, sample_jpeg_bytes):
        client = MagicMock()
        client.models.generate_content.return_value = _response_with_image(make_image_bytes())
        backend = _backend(client)

        await backend.generate_pro(sample_jpeg_bytes, "image/jpeg")

        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "pro-model"
        assert kwargs["contents"][1] == GeminiImageBackend.PRO_PROMPT

    @pytest.mark.asyncio
    async def test_guide_decodes_reference(self):
        client = MagicMock()
        client.models.generate_content.return_value = _response_with_image(make_image_bytes())
        backend = _backend(client)

        ref = await backend.generate_guide(encode_image_ref(make_image_bytes(), "image/png"))

        assert ref.startswith("data:image/png;base64,")
        kwargs = client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == "guide-model"
        assert kwargs["contents"][1] == GeminiImageBackend.GUIDE_PROMPT

    @pytest.mark.asyncio
    async def test_guide_rejects_bad_reference(self):
        client = MagicMock()
        backend = _backend(client)

        with pytest.raises(GenerationError):
            await backend.generate_guide("not-a-data-url")
        client.models.generate_content.assert_not_called()

    @pytest.mark.asyncio
    async def test_base64_inline_data_is_accepted(self, sample_image_bytes):
        client = MagicMock()
        encoded = base64.b64encode(make_image_bytes()).decode("ascii")
        client.models.generate_content.return_value = _response_with_image(encoded)
        backend = _backend(client)

        ref = await backend.generate_fast(sample_image_bytes, "image/png")

        assert ref.startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_image_from_candidates(self, sample_image_bytes):
        part = SimpleNamespace(inline_data=SimpleNamespace(data=make_image_bytes()))
        candidate = SimpleNamespace(content=SimpleNamespace(parts=[part]))
        client = MagicMock()
        client.models.generate_content.return_value = SimpleNamespace(
            parts=None, candidates=[candidate]
        )
        backend = _backend(client)

        ref = await backend.generate_pro(sample_image_bytes, "image/png")

        assert ref.startswith("data:image/png;base64,")


class TestGenerationFailures:
    @pytest.mark.asyncio
    async def test_no_image_in_response(self, sample_image_bytes):
        client = MagicMock()
        text_part = SimpleNamespace(inline_data=None, text="I cannot do that")
        client.models.generate_content.return_value = SimpleNamespace(
            parts=[text_part], candidates=[]
        )
        backend = _backend(client)

        with pytest.raises(GenerationError, match="No image returned"):
            await backend.generate_fast(sample_image_bytes, "image/png")

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_short_message(self, sample_image_bytes):
        from google.genai.errors import ClientError

        client = MagicMock()
        client.models.generate_content.side_effect = ClientError(
            429,
            {
                "error": {
                    "code": 429,
                    "message": "Resource has been exhausted",
                    "status": "RESOURCE_EXHAUSTED",
                }
            },
        )
        backend = _backend(client)

        with pytest.raises(GenerationError) as exc_info:
            await backend.generate_fast(sample_image_bytes, "image/png")
        assert str(exc_info.value) == "rate limited"

    @pytest.mark.asyncio
    async def test_other_api_errors_are_wrapped(self, sample_image_bytes):
        from google.genai.errors import ServerError

        client = MagicMock()
        client.models.generate_content.side_effect = ServerError(
            503,
            {"error": {"code": 503, "message": "The model is overloaded", "status": "UNAVAILABLE"}},
        )
        backend = _backend(client)

        with pytest.raises(GenerationError, match="Gemini API error"):
            await backend.generate_pro(sample_image_bytes, "image/png")

    @pytest.mark.asyncio
    async def test_transport_errors_are_wrapped(self, sample_image_bytes):
        client = MagicMock()
        client.models.generate_content.side_effect = ConnectionError("connection reset by peer")
        backend = _backend(client)

        with pytest.raises(GenerationError, match="connection reset by peer") as exc_info:
            await backend.generate_fast(sample_image_bytes, "image/png")
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout(self, sample_image_bytes):
        client = MagicMock()

        def slow_call(**kwargs):
            time.sleep(0.5)
            return _response_with_image(make_image_bytes())

        client.models.generate_content.side_effect = slow_call
        backend = _backend(client, timeout_seconds=0.05)

        with pytest.raises(GenerationError, match="Timed out after 0.05s"):
            await backend.generate_fast(sample_image_bytes, "image/png")


class TestReferencePreparation:
    def test_small_image_sent_unchanged(self, sample_image_bytes):
        backend = _backend(None)

        data, mime = backend._prepare_reference_image(sample_image_bytes, "image/png")

        assert data is sample_image_bytes
        assert mime == "image/png"

    def test_large_image_is_downscaled(self):
        backend = _backend(None)
        big = make_image_bytes(size=(3000, 1500))

        data, mime = backend._prepare_reference_image(big, "image/png")

        assert mime == "image/png"
        with Image.open(BytesIO(data)) as img:
            assert max(img.size) == GeminiImageBackend.MAX_REFERENCE_SIDE

    def test_unsupported_mime_is_converted(self):
        backend = _backend(None)
        gif = make_image_bytes(format="GIF")

        data, mime = backend._prepare_reference_image(gif, "image/gif")

        assert mime == "image/png"
        with Image.open(BytesIO(data)) as img:
            assert img.format == "PNG"
