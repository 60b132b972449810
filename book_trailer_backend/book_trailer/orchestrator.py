import inspect, logging
from functools import lru_cache
from typing import Any, Callable, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import StateGraph, END

from .elevenlabs_client import VoiceSynthesizer
from .errors import (
    ImageGenerationError, PipelineError, ProviderError, VoiceConfigurationError, VoiceProviderError,
)
from .images import ImageSynthesizer
from .llm import LLMClient
from .media import DEFAULT_RESOLUTION, MediaCompiler
from .models import (
    GenerationRequest, GenerationResult, OrchestrationState, PipelineHealth, PipelineStage, QualityTier,
    VideoMetadata,
)
from .prompts import NARRATION_PROMPT_TEMPLATE
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

SHORT_SUMMARY_CHARS = 300
TRUNCATED_SUMMARY_CHARS = 250
FFMPEG_MISSING_MESSAGE = (
    "FFmpeg is not installed or not available in PATH. Please install FFmpeg to generate videos."
)

# Called with each PipelineStage as the run advances; may be a coroutine function.
StageCallback = Callable[[PipelineStage], Any]


class _StageTracker:
    def __init__(self, on_stage: Optional[StageCallback] = None):
        self.on_stage = on_stage
        self.current = PipelineStage.PENDING

    async def enter(self, stage: PipelineStage):
        self.current = stage
        logger.info(f"Pipeline stage: {stage.value}")
        if self.on_stage is None:
            return
        try:
            result = self.on_stage(stage)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # progress reporting must not decide the outcome of a run
            logger.warning(f"Stage callback failed at {stage.value}: {e}")


def _tracker(config: RunnableConfig) -> _StageTracker:
    return (config or {}).get("configurable", {}).get("tracker") or _StageTracker()


class BookVideoPipeline:
    """Summary -> narration -> images -> voiceover -> MP4.

    Collaborators are passed in; `get_pipeline()` builds the default set from
    the process settings.
    """

    def __init__(
        self,
        llm: LLMClient,
        images: ImageSynthesizer,
        voice: VoiceSynthesizer,
        compiler: MediaCompiler,
    ):
        self.llm = llm
        self.images = images
        self.voice = voice
        self.compiler = compiler
        self._graph = self._build_graph()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookVideoPipeline":
        llm = LLMClient.from_settings(settings)
        return cls(
            llm=llm,
            images=ImageSynthesizer.from_settings(settings, llm),
            voice=VoiceSynthesizer(settings),
            compiler=MediaCompiler(settings),
        )

    def _build_graph(self):
        g = StateGraph(OrchestrationState)
        g.add_node("scripting", self.node_scripting)
        g.add_node("imaging", self.node_imaging)
        g.add_node("voicing", self.node_voicing)
        g.add_node("compiling", self.node_compiling)
        g.set_entry_point("scripting")
        g.add_edge("scripting", "imaging")
        g.add_edge("imaging", "voicing")
        g.add_edge("voicing", "compiling")
        g.add_edge("compiling", END)
        return g.compile()

    async def prepare_narration(self, summary: str, title: str) -> str:
        if len(summary) <= SHORT_SUMMARY_CHARS:
            return f"{title}. {summary}"

        fallback = f"{title}. {summary[:TRUNCATED_SUMMARY_CHARS]}..."
        prompt = NARRATION_PROMPT_TEMPLATE.format(title=title, summary=summary)
        try:
            narration = (await self.llm.generate_text(prompt)).strip()
        except Exception as e:
            logger.error(f"Error preparing narration: {e}")
            return fallback
        return narration or fallback

    async def node_scripting(self, state: OrchestrationState, config: RunnableConfig):
        await _tracker(config).enter(PipelineStage.SCRIPTING)
        req = state.request
        narration = await self.prepare_narration(req.summary, req.title)
        logger.info(f"Narration: {narration[:100]}...")
        return {"stage": PipelineStage.SCRIPTING, "narration": narration}

    async def node_imaging(self, state: OrchestrationState, config: RunnableConfig):
        await _tracker(config).enter(PipelineStage.IMAGING)
        req = state.request
        # scenes are drawn from the original summary, not the narration
        images = await self.images.generate_images(req.summary, req.aesthetic.value, req.num_images)
        if not images:
            raise ImageGenerationError("No images were generated for this summary", code="no_images")
        logger.info(f"Generated {len(images)} images")
        return {"stage": PipelineStage.IMAGING, "images": images}

    async def node_voicing(self, state: OrchestrationState, config: RunnableConfig):
        await _tracker(config).enter(PipelineStage.VOICING)
        try:
            audio = await self.voice.synthesize_speech(state.narration, state.request.voice_type)
        except VoiceConfigurationError as e:
            raise VoiceConfigurationError(f"Voice synthesis is not configured: {e.message}", code=e.code) from e
        except ProviderError as e:
            raise VoiceProviderError(f"Voice provider error: {e.message}", code=e.code) from e
        except Exception as e:
            raise VoiceProviderError(f"Voice provider error: {e}", code="voice_provider_error") from e
        logger.info(f"Voiceover generated ({audio.duration_seconds}s)")
        return {"stage": PipelineStage.VOICING, "audio": audio}

    async def node_compiling(self, state: OrchestrationState, config: RunnableConfig):
        await _tracker(config).enter(PipelineStage.COMPILING)
        artifact = await self.compiler.compile_video(
            state.images,
            state.audio,
            audio_duration=state.audio.duration_seconds,
            resolution=DEFAULT_RESOLUTION,
            use_effects=state.request.use_effects,
        )
        logger.info(f"Video compiled: {artifact.video_path}")
        return {"stage": PipelineStage.COMPILING, "artifact": artifact}

    async def generate_video(
        self, request: GenerationRequest, on_stage: Optional[StageCallback] = None
    ) -> GenerationResult:
        tracker = _StageTracker(on_stage)
        logger.info(
            f"Starting video generation pipeline: title={request.title!r} aesthetic={request.aesthetic.value} "
            f"images={request.num_images} effects={request.use_effects}"
        )

        # nothing is billed until the compiler is known to work
        if not await self.compiler.check_ffmpeg():
            await tracker.enter(PipelineStage.FAILED)
            return GenerationResult(success=False, error=FFMPEG_MISSING_MESSAGE, stage=PipelineStage.FAILED)

        try:
            final_state = await self._graph.ainvoke(
                {"request": request},
                config={"configurable": {"tracker": tracker}},
            )
            if not isinstance(final_state, OrchestrationState):
                final_state = OrchestrationState.model_validate(dict(final_state))
            artifact = final_state.artifact
            video_buffer = await self.compiler.get_video_buffer(artifact.video_path)
        except PipelineError as e:
            logger.error(f"Pipeline failed at {tracker.current.value}: {e.message}")
            await tracker.enter(PipelineStage.FAILED)
            return GenerationResult(success=False, error=e.message, stage=PipelineStage.FAILED)
        except Exception as e:
            logger.exception(f"Pipeline failed at {tracker.current.value}")
            await tracker.enter(PipelineStage.FAILED)
            return GenerationResult(
                success=False, error=str(e) or "Failed to generate video", stage=PipelineStage.FAILED
            )

        await tracker.enter(PipelineStage.COMPLETED)
        return GenerationResult(
            success=True,
            video_path=artifact.video_path,
            video_buffer=video_buffer,
            duration=artifact.duration,
            metadata=VideoMetadata(
                title=request.title,
                aesthetic=request.aesthetic.value,
                narration=final_state.narration,
                image_count=artifact.image_count,
                session_id=artifact.session_id,
            ),
            stage=PipelineStage.COMPLETED,
        )

    async def generate_for_quality(
        self, quality: QualityTier, on_stage: Optional[StageCallback] = None, **fields
    ) -> GenerationResult:
        return await self.generate_video(GenerationRequest.for_quality(quality, **fields), on_stage=on_stage)

    async def generate_quick_video(self, on_stage: Optional[StageCallback] = None, **fields) -> GenerationResult:
        return await self.generate_for_quality(QualityTier.QUICK, on_stage=on_stage, **fields)

    async def generate_premium_video(self, on_stage: Optional[StageCallback] = None, **fields) -> GenerationResult:
        return await self.generate_for_quality(QualityTier.PREMIUM, on_stage=on_stage, **fields)

    def check_pipeline_health(self) -> PipelineHealth:
        media_tool = self.compiler.is_available()
        return PipelineHealth(
            media_tool=media_tool,
            image_generation=self.images.is_configured,
            voice_generation=self.voice.is_configured,
            ready=media_tool,  # placeholders and fallbacks cover the rest
        )

    async def cleanup_video(self, video_path: str) -> bool:
        return await self.compiler.delete_video(video_path)


@lru_cache(maxsize=1)
def get_pipeline() -> BookVideoPipeline:
    return BookVideoPipeline.from_settings(get_settings())
