"""
Image synthesis for book trailers.

Scene descriptions come from the language model; each scene is rendered by the
primary provider (an image-capable OpenRouter chat model) with a single
per-scene fallback to Replicate. Without a language model, a primary key, or
network access, frames come from an offline placeholder generator instead.
"""
import io, re, httpx, asyncio, logging
from typing import Any, Awaitable, Callable, List, Optional

from PIL import Image, ImageDraw

from .errors import ImageGenerationError
from .llm import LLMClient, extract_json
from .models import ImageAsset
from .prompts import IMAGE_PROMPT_TEMPLATE, SCENE_PROMPT_TEMPLATE, fallback_scenes, get_palette, get_style_guide
from .replicate_client import ReplicateImageProvider
from .settings import Settings

logger = logging.getLogger(__name__)

IMAGE_WIDTH = 768
IMAGE_HEIGHT = 1024
IMAGE_TIMEOUT_S = 120

# Takes a full image prompt, returns a hosted URL or a data URI.
ImageProvider = Callable[[str], Awaitable[str]]


# --- reply-shape extractors, tried in order; the first non-empty result wins ---

def _message(payload: Any) -> dict:
    try:
        message = payload["choices"][0]["message"]
    except (KeyError, IndexError, TypeError):
        return {}
    return message if isinstance(message, dict) else {}


def _image_url_of(part: Any) -> Optional[str]:
    image_url = part.get("image_url") if isinstance(part, dict) else None
    if isinstance(image_url, dict):
        return image_url.get("url") or None
    if isinstance(image_url, str):
        return image_url or None
    return None


def _from_images_field(payload: Any) -> Optional[str]:
    images = _message(payload).get("images")
    if isinstance(images, list) and images:
        return _image_url_of(images[0])
    return None


def _from_content_parts(payload: Any) -> Optional[str]:
    content = _message(payload).get("content")
    if not isinstance(content, list):
        return None
    for part in content:
        if not isinstance(part, dict):
            continue
        if part.get("type") in ("image", "image_url"):
            url = _image_url_of(part)
            if url:
                return url
        inline = part.get("inline_data")
        if isinstance(inline, dict) and inline.get("data"):
            mime_type = inline.get("mime_type") or "image/png"
            return f"data:{mime_type};base64,{inline['data']}"
    return None


def _from_string_content(payload: Any) -> Optional[str]:
    content = _message(payload).get("content")
    if isinstance(content, str) and content.startswith(("http", "data:image")):
        return content.strip()
    return None


_URL_IN_TEXT = re.compile(r"https?://[^\s\)\]\"']+", re.I)
_DATA_URI_IN_TEXT = re.compile(r"data:image/[^;]+;base64,[A-Za-z0-9+/=]+")


def _url_in_text(payload: Any) -> Optional[str]:
    content = _message(payload).get("content")
    if isinstance(content, str):
        m = _URL_IN_TEXT.search(content)
        if m:
            return m.group(0)
    return None


def _data_uri_in_text(payload: Any) -> Optional[str]:
    content = _message(payload).get("content")
    if isinstance(content, str):
        m = _DATA_URI_IN_TEXT.search(content)
        if m:
            return m.group(0)
    return None


def _first_data_entry(payload: Any) -> dict:
    data = payload.get("data") if isinstance(payload, dict) else None
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    return {}


def _from_data_url(payload: Any) -> Optional[str]:
    return _first_data_entry(payload).get("url") or None


def _from_data_b64(payload: Any) -> Optional[str]:
    b64 = _first_data_entry(payload).get("b64_json")
    return f"data:image/png;base64,{b64}" if b64 else None


IMAGE_EXTRACTORS = (
    _from_images_field,
    _from_content_parts,
    _from_string_content,
    _url_in_text,
    _data_uri_in_text,
    _from_data_url,
    _from_data_b64,
)


def extract_image_reference(payload: Any) -> Optional[str]:
    for extractor in IMAGE_EXTRACTORS:
        ref = extractor(payload)
        if ref:
            logger.debug(f"Image reference found via {extractor.__name__}")
            return ref
    return None


class OpenRouterImageProvider:
    name = "openrouter-image"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    async def __call__(self, prompt: str) -> str:
        async with httpx.AsyncClient(timeout=IMAGE_TIMEOUT_S, transport=self._transport) as client:
            r = await client.post(
                f"{self._settings.openrouter_base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                    "HTTP-Referer": "http://localhost",
                    "X-Title": self._settings.openrouter_app_title,
                    "Content-Type": "application/json",
                },
                json={
                    "model": self._settings.openrouter_image_model,
                    "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
                    "modalities": ["image", "text"],
                    "max_tokens": 4096,
                },
            )
            r.raise_for_status()
            payload = r.json()
        ref = extract_image_reference(payload)
        if not ref:
            raise ImageGenerationError("Unexpected image response format")
        return ref


def render_placeholder(index: int, aesthetic: str, width: int = IMAGE_WIDTH, height: int = IMAGE_HEIGHT) -> bytes:
    """Vertical gradient in the aesthetic's palette, numbered; PNG bytes."""
    top, bottom = get_palette(aesthetic)
    img = Image.new("RGB", (width, height))
    draw = ImageDraw.Draw(img)
    for y in range(height):
        t = y / max(height - 1, 1)
        colour = tuple(int(a + (b - a) * t) for a, b in zip(top, bottom))
        draw.line([(0, y), (width, y)], fill=colour)
    draw.text((width // 2, height // 2), f"{index + 1}", fill=(255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def generate_placeholder_images(count: int, aesthetic: str) -> List[ImageAsset]:
    return [ImageAsset(index=i, data=render_placeholder(i, aesthetic)) for i in range(count)]


class ImageSynthesizer:
    def __init__(
        self,
        llm: LLMClient,
        primary: Optional[ImageProvider] = None,
        secondary: Optional[ImageProvider] = None,
        offline: bool = False,
    ):
        self.llm = llm
        self.primary = primary
        self.secondary = secondary
        self.offline = offline

    @classmethod
    def from_settings(cls, settings: Settings, llm: LLMClient) -> "ImageSynthesizer":
        primary = OpenRouterImageProvider(settings) if settings.openrouter_api_key else None
        secondary = ReplicateImageProvider(settings) if settings.replicate_api_token else None
        return cls(llm, primary=primary, secondary=secondary, offline=settings.offline_mode)

    @property
    def is_configured(self) -> bool:
        return self.primary is not None and not self.offline

    async def generate_scene_prompts(self, summary: str, aesthetic: str, num_scenes: int) -> List[str]:
        prompt = SCENE_PROMPT_TEMPLATE.format(
            num_scenes=num_scenes,
            summary=summary,
            style_guide=get_style_guide(aesthetic),
        )
        response = await self.llm.generate_json_like(prompt)
        scenes = extract_json(response, kind="array") or []
        scenes = [str(s).strip() for s in scenes if str(s).strip()][:num_scenes]
        if len(scenes) < num_scenes:
            logger.warning(f"Got {len(scenes)}/{num_scenes} scene descriptions, padding with generic scenes")
            scenes += fallback_scenes(summary, num_scenes)[len(scenes):]
        return scenes

    async def generate_images(self, summary: str, aesthetic: str, num_images: int) -> List[ImageAsset]:
        if self.offline or self.primary is None or not self.llm.is_configured:
            logger.warning("Image generation not configured. Using placeholder images.")
            return generate_placeholder_images(num_images, aesthetic)

        try:
            scene_prompts = await self.generate_scene_prompts(summary, aesthetic, num_images)
            results = await asyncio.gather(
                *(self._generate_single(p, aesthetic, i) for i, p in enumerate(scene_prompts))
            )
        except Exception as e:
            logger.error(f"Error generating images: {e}")
            return generate_placeholder_images(num_images, aesthetic)

        # gather keeps scene order regardless of completion order
        images = [img for img in results if img is not None]
        logger.info(f"Generated {len(images)}/{num_images} images")
        return images

    async def _generate_single(self, scene: str, aesthetic: str, index: int) -> Optional[ImageAsset]:
        full_prompt = IMAGE_PROMPT_TEMPLATE.format(
            width=IMAGE_WIDTH,
            height=IMAGE_HEIGHT,
            scene=scene,
            style_guide=get_style_guide(aesthetic),
        )
        logger.info(f"Generating image {index + 1}: {scene[:50]}...")
        try:
            ref = await self.primary(full_prompt)
            return ImageAsset(index=index, url=ref)
        except Exception as e:
            logger.error(f"Error generating image {index + 1}: {e}")

        if self.secondary is None:
            return None
        try:
            logger.info(f"Trying fallback image generation for image {index + 1}...")
            ref = await self.secondary(full_prompt)
            return ImageAsset(index=index, url=ref)
        except Exception as e:
            logger.error(f"Fallback also failed for image {index + 1}: {e}")
            return None
