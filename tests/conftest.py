"""
Pytest configuration and fixtures.
"""

import base64
import json
from unittest.mock import AsyncMock

import httpx
import pytest

from book_trailer.elevenlabs_client import VoiceSynthesizer
from book_trailer.images import ImageSynthesizer, render_placeholder
from book_trailer.llm import LLMClient
from book_trailer.media import MediaCompiler, write_bytes
from book_trailer.orchestrator import BookVideoPipeline
from book_trailer.settings import Settings


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every directory at a temp dir, with test keys."""
    return Settings(
        openrouter_api_key="sk-or-test",
        elevenlabs_api_key="el-test",
        temp_dir=str(tmp_path / "temp"),
        output_dir=str(tmp_path / "output"),
        video_cleanup_delay_s=0,
    )


@pytest.fixture
def png_data_uri():
    data = render_placeholder(0, "cinematic", width=32, height=48)
    return "data:image/png;base64," + base64.b64encode(data).decode()


class FakeTextProvider:
    """Answers scene prompts with a JSON array and anything else with `narration`."""

    def __init__(self, narration="A gripping tale unfolds.", scenes=None):
        self.narration = narration
        self.scenes = scenes
        self.prompts = []

    async def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if "visual director" in prompt:
            scenes = self.scenes or [f"Scene number {i}" for i in range(1, 7)]
            return "Here you go:\n```json\n" + json.dumps(scenes) + "\n```"
        return self.narration


@pytest.fixture
def text_provider():
    return FakeTextProvider()


@pytest.fixture
def ffmpeg_calls():
    return []


@pytest.fixture
def compiler(settings, ffmpeg_calls, monkeypatch):
    """MediaCompiler whose FFmpeg runs are recorded and fake the output file."""
    compiler = MediaCompiler(settings)

    async def run(args):
        ffmpeg_calls.append(args)
        write_bytes(args[-1], b"fake-mp4")

    monkeypatch.setattr(compiler, "_run_ffmpeg", run)
    monkeypatch.setattr(compiler, "check_ffmpeg", AsyncMock(return_value=True))
    return compiler


@pytest.fixture
def tts_transport():
    requests = []

    def handler(request: httpx.Request):
        requests.append(request)
        return httpx.Response(200, content=b"ID3-fake-audio")

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


@pytest.fixture
def image_provider(png_data_uri):
    return AsyncMock(return_value=png_data_uri)


@pytest.fixture
def pipeline(settings, text_provider, image_provider, compiler, tts_transport):
    llm = LLMClient(primary=text_provider)
    return BookVideoPipeline(
        llm=llm,
        images=ImageSynthesizer(llm, primary=image_provider),
        voice=VoiceSynthesizer(settings, transport=tts_transport),
        compiler=compiler,
    )
