import io, os, base64, shutil, secrets, asyncio, logging
from typing import List, Optional, Sequence

import httpx
from PIL import Image, UnidentifiedImageError

from .errors import CompileError, MediaToolMissingError
from .models import AudioAsset, ImageAsset, VideoArtifact
from .settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_RESOLUTION = "768x1024"  # 3:4 portrait
DEFAULT_IMAGE_DURATION_S = 5
DEFAULT_EFFECTS_IMAGE_DURATION_S = 3
EFFECTS_FPS = 25
DOWNLOAD_TIMEOUT_S = 30
STDERR_TAIL_CHARS = 1500


def write_bytes(path: str, data: bytes):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def parse_resolution(resolution: str):
    width, _, height = resolution.lower().partition("x")
    return int(width), int(height)


def normalize_image_bytes(data: bytes) -> bytes:
    """Re-encode WebP (and transparent images) as RGB PNG; anything else is returned as-is."""
    try:
        with Image.open(io.BytesIO(data)) as pil_img:
            if pil_img.format != "WEBP":
                return data
            # Flatten alpha onto white; ffmpeg handles transparency poorly
            if pil_img.mode in ("RGBA", "LA"):
                rgba = pil_img.convert("RGBA")
                background = Image.new("RGB", rgba.size, (255, 255, 255))
                background.paste(rgba, mask=rgba.split()[-1])
                pil_img = background
            elif pil_img.mode != "RGB":
                pil_img = pil_img.convert("RGB")
            buf = io.BytesIO()
            pil_img.save(buf, format="PNG")
            return buf.getvalue()
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Image conversion skipped: {e}, saving as-is")
        return data


def _pad_filter(width: int, height: int) -> str:
    return (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
    )


def build_baseline_command(
    ffmpeg: str,
    image_paths: Sequence[str],
    audio_path: Optional[str],
    output_path: str,
    image_duration: float,
    width: int,
    height: int,
) -> List[str]:
    """Static frames, letterboxed and concatenated; audio trimmed to the video length."""
    total_duration = len(image_paths) * image_duration
    args = [ffmpeg]
    for img_path in image_paths:
        args += ["-loop", "1", "-t", f"{image_duration:.3f}", "-i", img_path]
    if audio_path:
        args += ["-i", audio_path]

    filters = [f"[{i}:v]{_pad_filter(width, height)},format=yuv420p[v{i}]" for i in range(len(image_paths))]
    concat_inputs = "".join(f"[v{i}]" for i in range(len(image_paths)))
    filters.append(f"{concat_inputs}concat=n={len(image_paths)}:v=1:a=0[outv]")

    args += ["-filter_complex", ";".join(filters), "-map", "[outv]"]
    if audio_path:
        args += ["-map", f"{len(image_paths)}:a", "-c:a", "aac", "-b:a", "192k"]
    args += [
        "-t", f"{total_duration:.3f}",
        "-c:v", "libx264",
        "-preset", "medium",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        "-y", output_path,
    ]
    return args


def build_effects_command(
    ffmpeg: str,
    image_paths: Sequence[str],
    audio_path: Optional[str],
    output_path: str,
    image_duration: float,
    width: int,
    height: int,
) -> List[str]:
    """Ken Burns pan/zoom: even frames zoom in, odd frames zoom out."""
    frames = max(1, round(image_duration * EFFECTS_FPS))
    args = [ffmpeg]
    for img_path in image_paths:
        # single input frame; zoompan expands it to `frames` output frames
        args += ["-i", img_path]
    if audio_path:
        args += ["-i", audio_path]

    filters = []
    for i in range(len(image_paths)):
        if i % 2 == 0:
            zoom = f"1+0.1*on/{frames}"
        else:
            zoom = f"1.1-0.1*on/{frames}"
        filters.append(
            f"[{i}:v]{_pad_filter(width, height)},scale={width * 4}:-1,"
            f"zoompan=z='{zoom}':x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)'"
            f":d={frames}:s={width}x{height}:fps={EFFECTS_FPS},format=yuv420p[v{i}]"
        )
    concat_inputs = "".join(f"[v{i}]" for i in range(len(image_paths)))
    filters.append(f"{concat_inputs}concat=n={len(image_paths)}:v=1:a=0[outv]")

    args += ["-filter_complex", ";".join(filters), "-map", "[outv]"]
    if audio_path:
        args += ["-map", f"{len(image_paths)}:a", "-c:a", "aac", "-b:a", "192k", "-shortest"]
    args += [
        "-c:v", "libx264",
        "-preset", "fast",
        "-crf", "23",
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        "-y", output_path,
    ]
    return args


class MediaCompiler:
    """Turns still images plus one narration track into an H.264 MP4 with FFmpeg."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    @property
    def output_dir(self) -> str:
        return self._settings.output_dir

    def is_available(self) -> bool:
        """PATH lookup only; no process is started."""
        return shutil.which(self._settings.ffmpeg_binary) is not None

    async def check_ffmpeg(self) -> bool:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._settings.ffmpeg_binary, "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await asyncio.wait_for(proc.wait(), timeout=10) == 0
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"FFmpeg check failed: {e}")
            return False

    async def compile_video(
        self,
        images: Sequence[ImageAsset],
        audio: Optional[AudioAsset] = None,
        *,
        audio_duration: Optional[float] = None,
        resolution: str = DEFAULT_RESOLUTION,
        use_effects: bool = False,
    ) -> VideoArtifact:
        session_id = secrets.token_hex(8)
        session_dir = os.path.join(self._settings.temp_dir, session_id)
        os.makedirs(session_dir, exist_ok=True)
        os.makedirs(self.output_dir, exist_ok=True)
        logger.info(f"Created session directory: {session_dir}")

        try:
            local_images = await self._materialize_images(images, session_dir)
            if not local_images:
                raise CompileError("No images were downloaded successfully", code="no_images")
            logger.info(f"Prepared {len(local_images)} images")

            audio_path = None
            if audio is not None:
                audio_path = os.path.join(session_dir, "audio.mp3")
                await asyncio.to_thread(write_bytes, audio_path, audio.audio)
                if audio_duration is None:
                    audio_duration = audio.duration_seconds

            # timing follows the images that actually arrived, not the number requested
            if audio_duration:
                image_duration = audio_duration / len(local_images)
            elif use_effects:
                image_duration = DEFAULT_EFFECTS_IMAGE_DURATION_S
            else:
                image_duration = DEFAULT_IMAGE_DURATION_S
            total = image_duration * len(local_images)
            logger.info(f"Image duration: {image_duration:.2f}s each, Total: {total:.2f}s")

            width, height = parse_resolution(resolution)
            output_path = os.path.join(self.output_dir, f"video_{session_id}.mp4")
            build = build_effects_command if use_effects else build_baseline_command
            args = build(
                self._settings.ffmpeg_binary, local_images, audio_path, output_path,
                image_duration, width, height,
            )
            await self._run_ffmpeg(args)
            logger.info(f"Video created: {output_path}")

            return VideoArtifact(
                video_path=output_path,
                duration=round(total, 3),
                session_id=session_id,
                image_count=len(local_images),
            )
        finally:
            await asyncio.to_thread(shutil.rmtree, session_dir, True)
            logger.info(f"Cleaned up: {session_dir}")

    async def _materialize_images(self, images: Sequence[ImageAsset], session_dir: str) -> List[str]:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_S, transport=self._transport) as client:
            results = await asyncio.gather(
                *(self._write_image(client, asset, position, session_dir) for position, asset in enumerate(images))
            )
        return [path for path in results if path is not None]

    async def _write_image(
        self, client: httpx.AsyncClient, asset: ImageAsset, position: int, session_dir: str
    ) -> Optional[str]:
        try:
            if asset.data is not None:
                data = asset.data
            elif asset.is_data_uri:
                data = base64.b64decode(asset.url.split(",", 1)[1])
            elif asset.url:
                r = await client.get(asset.url, follow_redirects=True)
                r.raise_for_status()
                data = r.content
            else:
                return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to download image {position}: {e}")
            return None

        data = await asyncio.to_thread(normalize_image_bytes, data)
        path = os.path.join(session_dir, f"image_{position:03d}.png")
        await asyncio.to_thread(write_bytes, path, data)
        return path

    async def _run_ffmpeg(self, args: List[str]):
        logger.info("Running FFmpeg command: %s", " ".join(args))
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise MediaToolMissingError(
                "FFmpeg is not installed or not available in PATH.", code="ffmpeg_missing"
            ) from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._settings.ffmpeg_timeout_s)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise CompileError(
                f"FFmpeg timed out after {self._settings.ffmpeg_timeout_s}s", code="ffmpeg_timeout"
            )

        if proc.returncode != 0:
            tail = (stderr or b"").decode("utf-8", errors="ignore")[-STDERR_TAIL_CHARS:]
            logger.error(f"FFmpeg failed with code {proc.returncode}: {tail}")
            raise CompileError(f"FFmpeg exited with code {proc.returncode}: {tail}", code="ffmpeg_failed")
        logger.info("FFmpeg command completed successfully")

    async def get_video_buffer(self, video_path: str) -> bytes:
        return await asyncio.to_thread(read_bytes, video_path)

    async def delete_video(self, video_path: str) -> bool:
        try:
            await asyncio.to_thread(os.remove, video_path)
            return True
        except OSError as e:
            logger.error(f"Error deleting video {video_path}: {e}")
            return False
