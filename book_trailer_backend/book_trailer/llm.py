import re, json, asyncio, logging
from typing import Any, Awaitable, Callable, Optional

from .settings import Settings

logger = logging.getLogger(__name__)

LLM_TIMEOUT_S = 25

TextProvider = Callable[[str], Awaitable[str]]


class OpenRouterProvider:
    """Chat completions against OpenRouter through the OpenAI SDK."""

    name = "openrouter"

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            if not self._settings.openrouter_api_key:
                raise RuntimeError("OPENROUTER_API_KEY is not set; please configure your .env")
            self._client = AsyncOpenAI(
                api_key=self._settings.openrouter_api_key,
                base_url=self._settings.openrouter_base_url,
                timeout=LLM_TIMEOUT_S,
                max_retries=0,
                default_headers={
                    "HTTP-Referer": "http://localhost",
                    "X-Title": self._settings.openrouter_app_title,
                },
            )
        return self._client

    async def __call__(self, prompt: str) -> str:
        resp = await self._get_client().chat.completions.create(
            model=self._settings.openrouter_model,
            messages=[{"role": "user", "content": prompt}],
        )
        return resp.choices[0].message.content or ""


class GeminiProvider:
    name = "gemini"

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client = None

    def _get_client(self):
        if self._client is None:
            from google import genai
            if not self._settings.gemini_api_key:
                raise RuntimeError("GEMINI_API_KEY is not set; please configure your .env")
            self._client = genai.Client(api_key=self._settings.gemini_api_key)
        return self._client

    async def __call__(self, prompt: str) -> str:
        resp = await asyncio.wait_for(
            self._get_client().aio.models.generate_content(
                model=self._settings.gemini_model,
                contents=prompt,
            ),
            timeout=LLM_TIMEOUT_S,
        )
        return resp.text or ""


class LLMClient:
    """Text generation with a single fallback hop from primary to secondary.

    Never raises: when both providers fail the empty string is returned and the
    caller substitutes its own fallback content.
    """

    def __init__(self, primary: Optional[TextProvider] = None, secondary: Optional[TextProvider] = None):
        self.primary = primary
        self.secondary = secondary

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        if settings.offline_mode:
            logger.info("Offline mode: language model calls disabled")
            return cls()
        primary = OpenRouterProvider(settings) if settings.openrouter_api_key else None
        secondary = GeminiProvider(settings) if settings.gemini_api_key else None
        return cls(primary=primary, secondary=secondary)

    @property
    def is_configured(self) -> bool:
        return bool(self.primary or self.secondary)

    async def generate_text(self, prompt: str) -> str:
        if self.primary is not None:
            try:
                text = await self.primary(prompt)
                if text:
                    return text
                logger.warning("Primary LLM returned an empty reply, falling back")
            except Exception as e:
                logger.warning(f"Primary LLM request failed, falling back if available: {e}")

        if self.secondary is not None:
            try:
                return await self.secondary(prompt) or ""
            except Exception as e:
                logger.error(f"Secondary LLM fallback failed: {e}")

        return ""

    async def generate_json_like(self, prompt: str) -> str:
        """Same contract as generate_text; the caller locates and parses the JSON."""
        return await self.generate_text(prompt)


_FENCED = re.compile(r"```(?:json)?\s*(\{.*?\}|\[.*?\])\s*```", flags=re.S | re.I)
_PATTERNS = {
    "array": re.compile(r"\[[\s\S]*\]"),
    "object": re.compile(r"\{[\s\S]*\}"),
}


def extract_json(text: str, kind: str = "object") -> Optional[Any]:
    """Find a JSON object or array embedded anywhere in a model reply.

    Returns None when nothing parses; never raises.
    """
    if not text:
        return None
    expected = list if kind == "array" else dict
    candidates = [m.group(1) for m in _FENCED.finditer(text)]
    m = _PATTERNS[kind].search(text)
    if m:
        candidates.append(m.group(0))
    for raw in candidates:
        try:
            value = json.loads(raw)
        except ValueError:
            continue
        if isinstance(value, expected):
            return value
    return None
