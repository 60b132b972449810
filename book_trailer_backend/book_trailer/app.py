import os, json, asyncio, logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

# Ensure .env is loaded before building any provider clients
from .settings import Settings, get_settings
from .analysis import BookInput, analyze_book, generate_summary, recommend_aesthetic
from .errors import JobAlreadyRunningError
from .jobs import VideoJobRunner
from .kv_storage import BookStatusStore
from .models import Aesthetic, GenerationRequest, PipelineStage, QualityTier, VoiceIdentity
from .orchestrator import BookVideoPipeline, get_pipeline
from .prompts import AESTHETIC_OPTIONS
from .storage import storage_from_settings

logger = logging.getLogger(__name__)

STAGE_PROGRESS = {
    PipelineStage.SCRIPTING: (1, "Preparing narration script...", 10),
    PipelineStage.IMAGING: (2, "Generating images from summary...", 25),
    PipelineStage.VOICING: (3, "Creating voiceover...", 50),
    PipelineStage.COMPILING: (4, "Compiling video...", 75),
    PipelineStage.COMPLETED: (5, "Complete!", 100),
}


class GenerateVideoBody(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    summary: str = ""
    title: Optional[str] = None
    aesthetic: Optional[Aesthetic] = None
    voice_type: Optional[VoiceIdentity] = None
    num_images: Optional[int] = Field(default=None, ge=1)
    quality: QualityTier = QualityTier.STANDARD

    def to_request(self) -> GenerationRequest:
        if not self.summary.strip():
            raise HTTPException(400, {
                "error": "Summary is required",
                "message": "Please provide a book summary to generate a video",
            })
        fields = {
            "summary": self.summary,
            "title": self.title,
            "aesthetic": self.aesthetic,
            "voice_type": self.voice_type,
            "num_images": self.num_images,
        }
        try:
            return GenerationRequest.for_quality(
                self.quality, **{k: v for k, v in fields.items() if v is not None}
            )
        except ValidationError as e:
            raise HTTPException(400, {"error": "Invalid request", "message": str(e)})


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[BookVideoPipeline] = None,
    store: Optional[BookStatusStore] = None,
    storage=None,
) -> FastAPI:
    if settings is None:
        settings = get_settings()
        pipeline = pipeline or get_pipeline()
    settings.missing_keys()
    pipeline = pipeline or BookVideoPipeline.from_settings(settings)
    store = store or BookStatusStore(settings)
    storage = storage or storage_from_settings(settings)
    jobs = VideoJobRunner(pipeline, store, storage)
    os.makedirs(settings.output_dir, exist_ok=True)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        await jobs.drain()

    app = FastAPI(title="Book Trailer AI Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.jobs = jobs

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.mount("/videos", StaticFiles(directory=settings.output_dir, check_dir=False), name="videos")

    async def _cleanup_later(video_path: str):
        await asyncio.sleep(settings.video_cleanup_delay_s)
        await pipeline.cleanup_video(video_path)

    @app.get("/")
    def root():
        return {"status": "ok", "service": "Book Trailer AI Service", "version": "1.0.0"}

    @app.get("/health")
    def health():
        report = pipeline.check_pipeline_health()
        logger.info(f"Health check: {report.model_dump()}")
        return {"status": "healthy" if report.ready else "degraded", **report.model_dump(by_alias=True)}

    @app.get("/aesthetics")
    def aesthetics():
        return {"aesthetics": AESTHETIC_OPTIONS}

    @app.post("/generate-video")
    async def generate_video(body: GenerateVideoBody, request: Request, background: BackgroundTasks):
        req = body.to_request()
        logger.info(
            f"New video generation request: title={req.title!r} summary={len(req.summary)} chars "
            f"aesthetic={req.aesthetic.value} voice={req.voice_type.value} quality={body.quality.value}"
        )
        result = await pipeline.generate_video(req)
        if not result.success:
            raise HTTPException(500, {"error": "Video generation failed", "message": result.error})

        accept = request.headers.get("accept", "")
        if "video/" in accept or "application/octet-stream" in accept:
            background.add_task(_cleanup_later, result.video_path)
            # header values must stay latin-1; titles can be anything
            filename = f"book-trailer-{result.metadata.session_id}.mp4"
            headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
            return Response(content=result.video_buffer, media_type="video/mp4", headers=headers)

        return {
            "success": True,
            "videoUrl": f"/videos/{os.path.basename(result.video_path)}",
            "duration": result.duration,
            "metadata": result.metadata.model_dump(by_alias=True),
            "message": "Video generated successfully",
        }

    @app.post("/generate-video-stream")
    async def generate_video_stream(body: GenerateVideoBody):
        req = body.to_request()
        queue: asyncio.Queue = asyncio.Queue()

        async def run():
            result = await pipeline.generate_video(req, on_stage=queue.put)
            await queue.put(result)

        async def events():
            task = asyncio.create_task(run())
            try:
                while True:
                    item = await queue.get()
                    if isinstance(item, PipelineStage):
                        if item in STAGE_PROGRESS:
                            step, message, progress = STAGE_PROGRESS[item]
                            yield _sse({"step": step, "message": message, "progress": progress})
                        continue
                    if item.success:
                        yield _sse({
                            "complete": True,
                            "videoUrl": f"/videos/{os.path.basename(item.video_path)}",
                            "duration": item.duration,
                            "metadata": item.metadata.model_dump(by_alias=True),
                        })
                    else:
                        yield _sse({"error": item.error})
                    break
            finally:
                await task

        return StreamingResponse(events(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"})

    @app.post("/books/{book_id}/generate-video", status_code=202)
    async def start_book_video(book_id: str, body: GenerateVideoBody):
        req = body.to_request()
        try:
            record = await jobs.start(book_id, req)
        except JobAlreadyRunningError as e:
            raise HTTPException(409, e.message)
        return record.model_dump(mode="json", by_alias=True)

    @app.get("/books/{book_id}/video-status")
    async def book_video_status(book_id: str):
        record = await store.get_record(book_id)
        if record is None:
            raise HTTPException(404, "book has no video record")
        return record.model_dump(mode="json", by_alias=True)

    @app.post("/analyze")
    async def analyze(book: BookInput):
        if not book.title and not book.description:
            raise HTTPException(400, "Title or description required")
        analysis = await analyze_book(pipeline.llm, book)
        return JSONResponse(analysis.model_dump(by_alias=True))

    @app.post("/recommend-aesthetic")
    async def recommend(book: BookInput):
        return {"aesthetic": await recommend_aesthetic(pipeline.llm, book)}

    @app.post("/generate-summary")
    async def summary(book: BookInput):
        return {"summary": await generate_summary(pipeline.llm, book)}

    return app


app = create_app()
