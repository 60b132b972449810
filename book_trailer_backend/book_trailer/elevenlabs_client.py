import math, httpx, logging
from typing import Optional

from .errors import VoiceConfigurationError, VoiceProviderError
from .models import AudioAsset, VoiceIdentity
from .settings import Settings

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"
TTS_TIMEOUT_S = 60
WORDS_PER_SECOND = 2.5

NARRATOR_VOICES = {
    VoiceIdentity.MALE: "JBFqnCBsd6RMkjVY3EL8",        # professional narrator
    VoiceIdentity.FEMALE: "EXAVITQu4vr4xnSDxMaL",      # female narrator
    VoiceIdentity.MYSTERIOUS: "nPczCjzI2devNBz1zQrb",  # deep, mysterious
}
DEFAULT_VOICE = VoiceIdentity.FEMALE


def estimate_speaking_duration(text: str) -> int:
    """Seconds needed to read `text` aloud at an average 2.5 words/second, rounded up."""
    word_count = len(text.split())
    return math.ceil(word_count / WORDS_PER_SECOND)


def voice_id_for(voice_identity) -> str:
    try:
        return NARRATOR_VOICES[VoiceIdentity(voice_identity)]
    except ValueError:
        return NARRATOR_VOICES[DEFAULT_VOICE]


class VoiceSynthesizer:
    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.elevenlabs_api_key) and not self._settings.offline_mode

    def _headers(self):
        api_key = self._settings.elevenlabs_api_key
        if not api_key:
            raise VoiceConfigurationError(
                "ElevenLabs API key not configured. Set ELEVENLABS_API_KEY in .env file.",
                code="voice_not_configured",
            )
        return {
            "xi-api-key": api_key,
            "Content-Type": "application/json",
        }

    async def synthesize_speech(self, text: str, voice_identity=DEFAULT_VOICE) -> AudioAsset:
        if self._settings.offline_mode:
            raise VoiceConfigurationError(
                "Voice synthesis is disabled in offline mode", code="voice_not_configured"
            )
        headers = self._headers()
        voice_id = voice_id_for(voice_identity)
        payload = {
            "text": text,
            "model_id": self._settings.elevenlabs_model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }
        url = f"{ELEVENLABS_API_URL}/text-to-speech/{voice_id}"

        logger.info(f"Generating voiceover with ElevenLabs (voice={voice_id}, {len(text)} chars)")
        try:
            async with httpx.AsyncClient(timeout=TTS_TIMEOUT_S, transport=self._transport) as client:
                r = await client.post(url, headers=headers, json=payload)
                r.raise_for_status()
                audio = r.content
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:500]
            logger.error(f"ElevenLabs API error {status}: {detail}")
            raise VoiceProviderError(
                f"ElevenLabs request failed with status {status}: {detail}", code="voice_provider_error"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"ElevenLabs request failed: {e}")
            raise VoiceProviderError(f"ElevenLabs request failed: {e}", code="voice_provider_error") from e

        if not audio:
            raise VoiceProviderError("ElevenLabs returned an empty audio body", code="voice_provider_error")

        logger.info(f"ElevenLabs TTS successful ({len(audio)} bytes)")
        return AudioAsset(audio=audio, duration_seconds=estimate_speaking_duration(text))
