"""
Tests for the book video pipeline state machine.
"""

import json
import os

import pytest
from unittest.mock import AsyncMock

from book_trailer.elevenlabs_client import VoiceSynthesizer
from book_trailer.images import ImageSynthesizer
from book_trailer.llm import LLMClient
from book_trailer.models import GenerationRequest, PipelineStage, QualityTier
from book_trailer.orchestrator import FFMPEG_MISSING_MESSAGE, BookVideoPipeline
from book_trailer.prompts import STYLE_GUIDES
from book_trailer.settings import Settings

# "Night Train." + 18 words = 20 words of narration -> 8 seconds of audio
TWENTY_WORD_SUMMARY = (
    "A retired conductor boards one last midnight train and finds that every passenger "
    "is someone he once failed."
)

LONG_SUMMARY = (
    "Under the influence of a charismatic classics professor, a group of clever, eccentric misfits at an "
    "elite New England college discover a way of thinking and living that is a world away from the "
    "humdrum existence of their contemporaries. But when they go beyond the boundaries of normal morality, "
    "their lives are changed profoundly and forever, and they discover how hard it is to live with guilt."
)

# 20 words -> 8 seconds of audio
LLM_NARRATION = (
    "Five students. One secret. A murder that binds them forever. "
    "How far would you go to belong? Find out tonight."
)


def _request(**fields):
    fields.setdefault("summary", TWENTY_WORD_SUMMARY)
    fields.setdefault("title", "Night Train")
    return GenerationRequest(**fields)


class TestPrepareNarration:
    @pytest.mark.asyncio
    async def test_short_summary_skips_llm(self, pipeline, text_provider):
        narration = await pipeline.prepare_narration("A short summary.", "Title")
        assert narration == "Title. A short summary."
        assert text_provider.prompts == []

    @pytest.mark.asyncio
    async def test_long_summary_uses_llm(self, pipeline, text_provider):
        narration = await pipeline.prepare_narration("x" * 301, "Title")
        assert narration == "A gripping tale unfolds."
        assert len(text_provider.prompts) == 1

    @pytest.mark.asyncio
    async def test_long_summary_falls_back_to_truncation(self, pipeline):
        pipeline.llm = LLMClient(primary=AsyncMock(return_value=""))
        summary = "y" * 400
        narration = await pipeline.prepare_narration(summary, "Title")
        assert narration == "Title. " + "y" * 250 + "..."


class TestGenerateVideo:
    @pytest.mark.asyncio
    async def test_successful_run(self, pipeline, ffmpeg_calls, tts_transport):
        stages = []
        result = await pipeline.generate_video(_request(), on_stage=stages.append)

        assert result.success
        assert result.stage == PipelineStage.COMPLETED
        assert stages == [
            PipelineStage.SCRIPTING,
            PipelineStage.IMAGING,
            PipelineStage.VOICING,
            PipelineStage.COMPILING,
            PipelineStage.COMPLETED,
        ]
        assert result.duration == 8.0
        assert result.metadata.image_count == 4
        assert result.metadata.narration == "Night Train. " + TWENTY_WORD_SUMMARY
        assert result.video_buffer == b"fake-mp4"
        assert os.path.exists(result.video_path)
        # 8s of audio over 4 images
        args = ffmpeg_calls[0]
        assert args[args.index("-loop") + 3] == "2.000"
        assert len(tts_transport.requests) == 1

    @pytest.mark.asyncio
    async def test_long_summary_quick_dark_academia(
        self, pipeline, text_provider, image_provider, tts_transport, ffmpeg_calls
    ):
        text_provider.narration = LLM_NARRATION
        result = await pipeline.generate_quick_video(
            summary=LONG_SUMMARY, title="The Secret History", aesthetic="dark-academia"
        )

        assert result.success
        assert result.duration == 8.0
        assert result.metadata.image_count == 3
        assert result.metadata.narration == LLM_NARRATION

        narration_prompts = [p for p in text_provider.prompts if "visual director" not in p]
        scene_prompts = [p for p in text_provider.prompts if "visual director" in p]
        assert len(narration_prompts) == 1 and LONG_SUMMARY in narration_prompts[0]
        # scenes come from the summary, never from the narration
        assert len(scene_prompts) == 1
        assert LONG_SUMMARY in scene_prompts[0]
        assert LLM_NARRATION not in scene_prompts[0]
        assert STYLE_GUIDES["dark-academia"] in scene_prompts[0]

        assert image_provider.await_count == 3
        for call in image_provider.await_args_list:
            assert STYLE_GUIDES["dark-academia"] in call.args[0]

        assert len(tts_transport.requests) == 1
        assert json.loads(tts_transport.requests[0].content)["text"] == LLM_NARRATION
        # 8s of narration over 3 images
        args = ffmpeg_calls[0]
        assert args[args.index("-loop") + 3] == f"{8 / 3:.3f}"

    @pytest.mark.asyncio
    async def test_async_stage_callback(self, pipeline):
        on_stage = AsyncMock()
        result = await pipeline.generate_video(_request(), on_stage=on_stage)
        assert result.success
        assert on_stage.await_count == 5

    @pytest.mark.asyncio
    async def test_failing_stage_callback_does_not_fail_run(self, pipeline):
        def on_stage(stage):
            raise RuntimeError("listener gone")

        result = await pipeline.generate_video(_request(), on_stage=on_stage)
        assert result.success

    @pytest.mark.asyncio
    async def test_quick_tier_requests_three_scenes(self, pipeline, image_provider):
        result = await pipeline.generate_quick_video(summary=TWENTY_WORD_SUMMARY, title="Night Train")

        assert result.success
        assert image_provider.await_count == 3
        assert result.metadata.image_count == 3

    @pytest.mark.asyncio
    async def test_premium_tier_uses_effects(self, pipeline, ffmpeg_calls, image_provider):
        result = await pipeline.generate_premium_video(summary=TWENTY_WORD_SUMMARY)

        assert result.success
        assert image_provider.await_count == 6
        graph = ffmpeg_calls[0][ffmpeg_calls[0].index("-filter_complex") + 1]
        assert "zoompan" in graph

    @pytest.mark.asyncio
    async def test_failed_scene_shrinks_video(self, pipeline, png_data_uri, ffmpeg_calls):
        async def provider(prompt):
            if "Scene number 1" in prompt:
                raise RuntimeError("content filtered")
            return png_data_uri

        pipeline.images.primary = provider
        result = await pipeline.generate_for_quality(
            QualityTier.QUICK, summary=TWENTY_WORD_SUMMARY, title="Night Train"
        )

        assert result.success
        assert result.metadata.image_count == 2
        # full narration still covered: 8s over 2 images
        args = ffmpeg_calls[0]
        assert args[args.index("-loop") + 3] == "4.000"
        assert result.duration == 8.0

    @pytest.mark.asyncio
    async def test_missing_ffmpeg_fails_before_any_provider_call(
        self, pipeline, compiler, text_provider, image_provider, tts_transport
    ):
        compiler.check_ffmpeg = AsyncMock(return_value=False)
        stages = []

        result = await pipeline.generate_video(_request(summary="z " * 400), on_stage=stages.append)

        assert not result.success
        assert result.error == FFMPEG_MISSING_MESSAGE
        assert "not installed" in result.error
        assert result.stage == PipelineStage.FAILED
        assert stages == [PipelineStage.FAILED]
        assert text_provider.prompts == []
        image_provider.assert_not_called()
        assert tts_transport.requests == []

    @pytest.mark.asyncio
    async def test_no_images_fails_before_voiceover(self, pipeline, tts_transport, ffmpeg_calls):
        pipeline.images.primary = AsyncMock(side_effect=RuntimeError("down"))
        stages = []

        result = await pipeline.generate_video(_request(), on_stage=stages.append)

        assert not result.success
        assert result.stage == PipelineStage.FAILED
        assert stages[-2:] == [PipelineStage.IMAGING, PipelineStage.FAILED]
        assert tts_transport.requests == []
        assert ffmpeg_calls == []

    @pytest.mark.asyncio
    async def test_voice_not_configured(self, settings, text_provider, image_provider, compiler):
        llm = LLMClient(primary=text_provider)
        pipeline = BookVideoPipeline(
            llm=llm,
            images=ImageSynthesizer(llm, primary=image_provider),
            voice=VoiceSynthesizer(settings.model_copy(update={"elevenlabs_api_key": ""})),
            compiler=compiler,
        )

        result = await pipeline.generate_video(_request())

        assert not result.success
        assert result.error.startswith("Voice synthesis is not configured")

    @pytest.mark.asyncio
    async def test_compile_error_is_reported(self, pipeline, compiler):
        from book_trailer.errors import CompileError

        async def run(args):
            raise CompileError("FFmpeg exited with code 1: boom")

        compiler._run_ffmpeg = run
        result = await pipeline.generate_video(_request())

        assert not result.success
        assert "boom" in result.error


class TestHealthAndCleanup:
    def test_health_reports_components(self, pipeline, monkeypatch):
        monkeypatch.setattr(pipeline.compiler, "is_available", lambda: True)
        health = pipeline.check_pipeline_health()

        assert health.media_tool and health.ready
        assert health.image_generation
        assert health.voice_generation

    def test_health_not_ready_without_ffmpeg(self, tmp_path):
        settings = Settings(ffmpeg_binary="/nonexistent/ffmpeg-binary", offline_mode=True)
        health = BookVideoPipeline.from_settings(settings).check_pipeline_health()

        assert not health.media_tool
        assert not health.ready
        assert not health.image_generation
        assert not health.voice_generation

    @pytest.mark.asyncio
    async def test_cleanup_video(self, pipeline, tmp_path):
        path = tmp_path / "video.mp4"
        path.write_bytes(b"x")
        assert await pipeline.cleanup_video(str(path)) is True
        assert not path.exists()
        assert await pipeline.cleanup_video(str(path)) is False
