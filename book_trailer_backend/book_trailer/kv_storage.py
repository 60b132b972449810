"""
Book video status persistence.

Records live in a KV store reachable over its REST API (Vercel KV / Upstash)
when configured, and are always mirrored in process memory so status reads
keep working when KV is absent or unreachable.
"""
import httpx
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from .errors import StaleRecordError
from .models import BookVideoRecord, PipelineStage, VideoStatus
from .settings import Settings

logger = logging.getLogger(__name__)


class BookStatusStore:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.kv_rest_api_url = settings.kv_rest_api_url
        self.kv_rest_api_token = settings.kv_rest_api_token
        self._transport = transport
        self._memory: Dict[str, BookVideoRecord] = {}

        if not self.kv_rest_api_url or not self.kv_rest_api_token:
            logger.warning("KV storage not configured - falling back to in-memory storage")
            self.enabled = False
        else:
            self.enabled = True
            logger.info("KV storage enabled")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _key(book_id: str) -> str:
        return f"book:{book_id}:video"

    async def _kv_set(self, key: str, value: str) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.post(
                    f"{self.kv_rest_api_url}/set",
                    headers=self._headers(),
                    json=[key, value],
                )
                response.raise_for_status()
                return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to store {key} in KV: {e}")
            return False

    async def _kv_get(self, key: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.post(
                    f"{self.kv_rest_api_url}/get",
                    headers=self._headers(),
                    json=[key],
                )
                response.raise_for_status()
                return response.json().get("result")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to retrieve {key} from KV: {e}")
            return None

    async def get_record(self, book_id: str) -> Optional[BookVideoRecord]:
        if self.enabled:
            raw = await self._kv_get(self._key(book_id))
            if raw:
                return BookVideoRecord.model_validate_json(raw)
        return self._memory.get(book_id)

    async def save_record(self, record: BookVideoRecord, expected_version: Optional[int] = None) -> BookVideoRecord:
        """Write `record`, bumping its version.

        With `expected_version`, the write is refused if the stored record has
        moved on since it was read.
        """
        current = await self.get_record(record.book_id)
        current_version = current.version if current else 0
        if expected_version is not None and current_version != expected_version:
            raise StaleRecordError(
                f"Book {record.book_id} changed (version {current_version}, expected {expected_version})",
                code="stale_record",
            )

        saved = record.model_copy(
            update={"version": current_version + 1, "updated_at": datetime.now(timezone.utc)}
        )
        self._memory[saved.book_id] = saved
        if self.enabled:
            await self._kv_set(self._key(saved.book_id), saved.model_dump_json(by_alias=True))
        logger.info(f"Book {saved.book_id} video status -> {saved.video_status.value} (v{saved.version})")
        return saved

    async def update_status(
        self,
        book_id: str,
        status: VideoStatus,
        *,
        error: Optional[str] = None,
        video_url: Optional[str] = None,
        stage: Optional[PipelineStage] = None,
        expected_version: Optional[int] = None,
    ) -> BookVideoRecord:
        current = await self.get_record(book_id) or BookVideoRecord(book_id=book_id)
        updates = {"video_status": status, "video_error": error, "stage": stage}
        # the previous video stays published until a new one replaces it
        if video_url is not None:
            updates["video_url"] = video_url
        return await self.save_record(current.model_copy(update=updates), expected_version=expected_version)
