"""
Background video generation for book records.

A job marks the book `generating`, runs the pipeline without the HTTP caller
waiting on it, and settles the record as `completed` (with the video URL) or
`failed` (with the error). At most one job per book runs at a time.
"""
import asyncio
import logging
from typing import Dict, Optional

from .errors import JobAlreadyRunningError, PipelineError, StaleRecordError
from .kv_storage import BookStatusStore
from .models import BookVideoRecord, GenerationRequest, PipelineStage, VideoStatus
from .orchestrator import BookVideoPipeline

logger = logging.getLogger(__name__)


class VideoJobRunner:
    def __init__(self, pipeline: BookVideoPipeline, store: BookStatusStore, storage):
        self.pipeline = pipeline
        self.store = store
        self.storage = storage
        self._locks: Dict[str, asyncio.Lock] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def is_running(self, book_id: str) -> bool:
        lock = self._locks.get(book_id)
        return bool(lock and lock.locked())

    async def start(self, book_id: str, request: GenerationRequest) -> BookVideoRecord:
        lock = self._locks.setdefault(book_id, asyncio.Lock())
        if lock.locked():
            raise JobAlreadyRunningError(
                f"A video is already being generated for book {book_id}", code="already_generating"
            )
        await lock.acquire()
        try:
            record = await self.store.update_status(book_id, VideoStatus.GENERATING, stage=PipelineStage.PENDING)
        except Exception:
            self._release(book_id, lock)
            raise

        task = asyncio.create_task(self._run(book_id, request, record.version, lock), name=f"video:{book_id}")
        self._tasks[book_id] = task
        task.add_done_callback(lambda t: self._forget(book_id, t))
        logger.info(f"Started background video generation for book {book_id}")
        return record

    def _release(self, book_id: str, lock: asyncio.Lock):
        lock.release()
        # drop the entry unless a later start already swapped in its own lock
        if self._locks.get(book_id) is lock and not lock.locked():
            del self._locks[book_id]

    def _forget(self, book_id: str, task: asyncio.Task):
        # a newer run for the same book may already be registered
        if self._tasks.get(book_id) is task:
            del self._tasks[book_id]

    async def _run(self, book_id: str, request: GenerationRequest, version: int, lock: asyncio.Lock):
        async def on_stage(stage: PipelineStage):
            nonlocal version
            if stage in (PipelineStage.COMPLETED, PipelineStage.FAILED):
                return
            record = await self.store.update_status(
                book_id, VideoStatus.GENERATING, stage=stage, expected_version=version
            )
            version = record.version

        try:
            result = await self.pipeline.generate_video(request, on_stage=on_stage)
            if not result.success:
                await self._settle_failed(book_id, result.error or "Video generation failed", version)
                return

            try:
                video_url = await self.storage.upload(result.video_path)
            except PipelineError as e:
                await self.pipeline.cleanup_video(result.video_path)
                await self._settle_failed(book_id, e.message, version)
                return
            if not self.storage.keeps_local_copy:
                await self.pipeline.cleanup_video(result.video_path)

            await self.store.update_status(
                book_id,
                VideoStatus.COMPLETED,
                video_url=video_url,
                stage=PipelineStage.COMPLETED,
                expected_version=version,
            )
            logger.info(f"Book {book_id} video ready at {video_url}")
        except StaleRecordError as e:
            # another writer owns the record now; leave its state alone
            logger.error(f"Dropped result for book {book_id}: {e.message}")
        except Exception as e:
            logger.exception(f"Background generation crashed for book {book_id}")
            await self._settle_failed(book_id, str(e) or "Video generation failed", None)
        finally:
            self._release(book_id, lock)

    async def _settle_failed(self, book_id: str, error: str, version: Optional[int]):
        logger.error(f"Video generation failed for book {book_id}: {error}")
        try:
            await self.store.update_status(
                book_id, VideoStatus.FAILED, error=error, stage=PipelineStage.FAILED, expected_version=version
            )
        except PipelineError as e:
            logger.error(f"Could not record failure for book {book_id}: {e.message}")

    async def wait(self, book_id: str):
        task = self._tasks.get(book_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def drain(self):
        tasks = list(self._tasks.values())
        if tasks:
            logger.info(f"Waiting for {len(tasks)} background video job(s)")
            await asyncio.gather(*tasks, return_exceptions=True)
