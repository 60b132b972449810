import os, asyncio, logging

from .errors import ProviderError
from .settings import Settings

logger = logging.getLogger(__name__)

LOCAL_VIDEO_PREFIX = "/videos"


class LocalVideoStorage:
    """Videos stay in the output directory and are served by the app under /videos/."""

    keeps_local_copy = True

    async def upload(self, local_path: str) -> str:
        return f"{LOCAL_VIDEO_PREFIX}/{os.path.basename(local_path)}"


class S3VideoStorage:
    keeps_local_copy = False

    def __init__(self, settings: Settings, client=None):
        self.bucket_name = settings.s3_bucket
        self.region = settings.s3_region
        self.prefix = settings.s3_prefix.strip("/")
        self._client = client

    def _get_client(self):
        if self._client is None:
            import boto3
            # credentials come from the standard AWS environment/profile chain
            self._client = boto3.client("s3", region_name=self.region)
        return self._client

    def _upload_sync(self, local_path: str, key: str):
        self._get_client().upload_file(
            local_path,
            self.bucket_name,
            key,
            ExtraArgs={"ContentType": "video/mp4", "CacheControl": "max-age=31536000"},
        )

    async def upload(self, local_path: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        key = f"{self.prefix}/{os.path.basename(local_path)}" if self.prefix else os.path.basename(local_path)
        logger.info(f"Uploading video to S3: s3://{self.bucket_name}/{key}")
        try:
            await asyncio.to_thread(self._upload_sync, local_path, key)
        except (BotoCoreError, ClientError) as e:
            raise ProviderError(f"S3 upload failed: {e}", code="storage_upload_failed") from e
        url = f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"
        logger.info(f"Video uploaded: {url}")
        return url


def storage_from_settings(settings: Settings, client=None):
    if settings.s3_bucket and not settings.offline_mode:
        return S3VideoStorage(settings, client=client)
    logger.info("Durable storage not configured - videos are served from local disk")
    return LocalVideoStorage()
