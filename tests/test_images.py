"""
Unit tests for image synthesis: reply parsing, scene prompts, fallbacks.
"""

import io

import httpx
import pytest
from unittest.mock import AsyncMock
from PIL import Image

from book_trailer.errors import ImageGenerationError
from book_trailer.images import (
    ImageSynthesizer,
    OpenRouterImageProvider,
    extract_image_reference,
    generate_placeholder_images,
    render_placeholder,
)
from book_trailer.llm import LLMClient
from book_trailer.models import Aesthetic
from book_trailer.prompts import AESTHETIC_OPTIONS, AESTHETIC_PALETTES, STYLE_GUIDES, get_palette, get_style_guide


def _reply(message):
    return {"choices": [{"message": message}]}


class TestExtractImageReference:
    """Each known reply shape yields a reference; unknown shapes yield None."""

    def test_images_field(self):
        payload = _reply({"images": [{"image_url": {"url": "data:image/png;base64,AAAA"}}]})
        assert extract_image_reference(payload) == "data:image/png;base64,AAAA"

    def test_content_parts_image_url(self):
        payload = _reply({"content": [
            {"type": "text", "text": "here"},
            {"type": "image_url", "image_url": {"url": "https://img.example/a.png"}},
        ]})
        assert extract_image_reference(payload) == "https://img.example/a.png"

    def test_content_parts_inline_data(self):
        payload = _reply({"content": [{"inline_data": {"mime_type": "image/jpeg", "data": "QUJD"}}]})
        assert extract_image_reference(payload) == "data:image/jpeg;base64,QUJD"

    def test_plain_url_content(self):
        assert extract_image_reference(_reply({"content": "https://img.example/b.png"})) == "https://img.example/b.png"

    def test_url_embedded_in_text(self):
        payload = _reply({"content": "Your image is at https://img.example/c.png (enjoy)"})
        assert extract_image_reference(payload) == "https://img.example/c.png"

    def test_data_uri_embedded_in_text(self):
        payload = _reply({"content": "Result: data:image/png;base64,iVBORw0= end"})
        assert extract_image_reference(payload) == "data:image/png;base64,iVBORw0="

    def test_data_url_shape(self):
        assert extract_image_reference({"data": [{"url": "https://img.example/d.png"}]}) == "https://img.example/d.png"

    def test_data_b64_shape(self):
        assert extract_image_reference({"data": [{"b64_json": "QUJD"}]}) == "data:image/png;base64,QUJD"

    def test_unknown_shape(self):
        assert extract_image_reference(_reply({"content": "I cannot draw that."})) is None
        assert extract_image_reference({"error": "nope"}) is None
        assert extract_image_reference(None) is None


class TestOpenRouterImageProvider:
    @pytest.mark.asyncio
    async def test_returns_extracted_reference(self, settings):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            return httpx.Response(200, json=_reply({"images": [{"image_url": {"url": "https://img.example/x.png"}}]}))

        provider = OpenRouterImageProvider(settings, transport=httpx.MockTransport(handler))
        assert await provider("a castle") == "https://img.example/x.png"
        assert seen["url"].endswith("/chat/completions")

    @pytest.mark.asyncio
    async def test_unparsable_reply_raises(self, settings):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=_reply({"content": "no image"})))
        provider = OpenRouterImageProvider(settings, transport=transport)
        with pytest.raises(ImageGenerationError):
            await provider("a castle")


class TestPlaceholders:
    def test_placeholder_is_portrait_png(self):
        img = Image.open(io.BytesIO(render_placeholder(0, "dark-academia")))
        assert img.format == "PNG"
        assert img.size == (768, 1024)

    def test_count(self):
        images = generate_placeholder_images(3, "unknown-aesthetic")
        assert [i.index for i in images] == [0, 1, 2]
        assert all(i.data for i in images)


class TestImageSynthesizer:
    @pytest.mark.asyncio
    async def test_scene_prompts_padded_to_requested_count(self, text_provider):
        text_provider.scenes = ["Only one scene"]
        synth = ImageSynthesizer(LLMClient(primary=text_provider), primary=AsyncMock())

        scenes = await synth.generate_scene_prompts("A story.", "cinematic", 4)
        assert len(scenes) == 4
        assert scenes[0] == "Only one scene"

    @pytest.mark.asyncio
    async def test_scene_prompts_truncated_to_requested_count(self, text_provider):
        synth = ImageSynthesizer(LLMClient(primary=text_provider), primary=AsyncMock())
        scenes = await synth.generate_scene_prompts("A story.", "cinematic", 2)
        assert scenes == ["Scene number 1", "Scene number 2"]

    @pytest.mark.asyncio
    async def test_scene_prompts_without_json_fall_back(self):
        llm = LLMClient(primary=AsyncMock(return_value="I'd rather not."))
        synth = ImageSynthesizer(llm, primary=AsyncMock())
        scenes = await synth.generate_scene_prompts("A story.", "cinematic", 3)
        assert len(scenes) == 3

    @pytest.mark.asyncio
    async def test_offline_uses_placeholders(self, text_provider):
        primary = AsyncMock()
        synth = ImageSynthesizer(LLMClient(primary=text_provider), primary=primary, offline=True)

        images = await synth.generate_images("A story.", "cinematic", 3)
        assert len(images) == 3
        primary.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_llm_uses_placeholders(self):
        primary = AsyncMock()
        synth = ImageSynthesizer(LLMClient(), primary=primary)
        assert len(await synth.generate_images("A story.", "cinematic", 2)) == 2
        primary.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_scene_is_dropped_and_order_kept(self, text_provider):
        async def primary(prompt):
            if "Scene number 2" in prompt:
                raise ImageGenerationError("moderated")
            return f"https://img.example/{prompt.split('Scene number ')[1][0]}.png"

        synth = ImageSynthesizer(LLMClient(primary=text_provider), primary=primary)
        images = await synth.generate_images("A story.", "cinematic", 3)

        assert [i.index for i in images] == [0, 2]
        assert [i.url for i in images] == ["https://img.example/1.png", "https://img.example/3.png"]

    @pytest.mark.asyncio
    async def test_secondary_used_once_per_failed_scene(self, text_provider):
        primary = AsyncMock(side_effect=RuntimeError("down"))
        secondary = AsyncMock(return_value="https://replicate.example/out.png")
        synth = ImageSynthesizer(LLMClient(primary=text_provider), primary=primary, secondary=secondary)

        images = await synth.generate_images("A story.", "cinematic", 2)
        assert len(images) == 2
        assert secondary.await_count == 2

    @pytest.mark.asyncio
    async def test_everything_failing_yields_no_images(self, text_provider):
        synth = ImageSynthesizer(
            LLMClient(primary=text_provider),
            primary=AsyncMock(side_effect=RuntimeError("down")),
            secondary=AsyncMock(side_effect=RuntimeError("also down")),
        )
        assert await synth.generate_images("A story.", "cinematic", 3) == []


class TestAestheticTables:
    def test_every_aesthetic_has_style_and_palette(self):
        for aesthetic in Aesthetic:
            assert aesthetic.value in STYLE_GUIDES
            assert aesthetic.value in AESTHETIC_PALETTES

    def test_romantasy_has_its_own_style(self):
        assert get_style_guide("romantasy") != get_style_guide("cinematic")
        assert get_palette("romantasy") != get_palette("cinematic")

    def test_unknown_aesthetic_uses_cinematic(self):
        assert get_style_guide("vaporwave") == STYLE_GUIDES["cinematic"]

    def test_catalogue_matches_enum(self):
        assert [o["value"] for o in AESTHETIC_OPTIONS] == [
            "dark-academia", "paranormal-romance", "paranormal-cozy", "paranormal-dark",
            "cozy-fantasy", "contemporary", "mystery-thriller", "romantasy", "cinematic",
        ]
        assert {o["value"] for o in AESTHETIC_OPTIONS} == {a.value for a in Aesthetic}
