import httpx
import logging
import os
import time

from .audio_cache import ResponseAudioCache
from .errors import CollaboratorError, ValidationError

logger = logging.getLogger(__name__)

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5")
ELEVENLABS_BASE_URL = os.getenv("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1")
TTS_CACHE_SIZE = int(os.getenv("TTS_CACHE_SIZE", "100"))

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.75,
    "style": 0.0,
    "use_speaker_boost": True,
}


class TTSClient:
    """HTTP client for ElevenLabs text-to-speech with a bounded response cache"""

    def __init__(self, api_key: str = None, voice_id: str = None, cache: ResponseAudioCache = None):
        self.api_key = api_key if api_key is not None else ELEVENLABS_API_KEY
        self.voice_id = voice_id or ELEVENLABS_VOICE_ID
        self.model_id = ELEVENLABS_MODEL_ID
        self.service_url = ELEVENLABS_BASE_URL
        self.cache = cache if cache is not None else ResponseAudioCache(max_entries=TTS_CACHE_SIZE, key_prefix="tts_")

        timeout = httpx.Timeout(30.0, connect=10.0)
        self.client = httpx.AsyncClient(timeout=timeout)

        if not self.api_key:
            logger.warning("TTSClient: ELEVENLABS_API_KEY not set. TTS will not work.")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def synthesize(self, text: str, voice_id: str = None) -> bytes:
        """
        MP3 bytes for the text, served from the cache when possible.

        Raises:
            ValidationError: empty text
            CollaboratorError: key missing or the ElevenLabs request failed
        """
        if not text or not text.strip():
            raise ValidationError("text must not be empty", field="text")

        voice_id = voice_id or self.voice_id
        cached = self.cache.get(text, voice_id)
        if cached is not None:
            logger.info(f"TTSClient: Cache hit ({len(cached)} bytes) for: {text[:50]}")
            return cached

        if not self.api_key:
            raise CollaboratorError("tts", "ELEVENLABS_API_KEY is not configured")

        start = time.time()
        try:
            logger.info(f"TTSClient: Synthesizing {len(text)} chars with voice {voice_id}")
            response = await self.client.post(
                f"{self.service_url}/text-to-speech/{voice_id}",
                params={"optimize_streaming_latency": 3},
                headers={
                    "xi-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "audio/mpeg",
                },
                json={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": VOICE_SETTINGS,
                },
            )
            response.raise_for_status()
            audio = response.content
        except httpx.HTTPError as e:
            logger.error(f"TTSClient: HTTP error after {time.time() - start:.3f}s: {str(e)}")
            raise CollaboratorError("tts", str(e)) from e

        if not audio:
            raise CollaboratorError("tts", "empty audio response")

        self.cache.put(text, voice_id, audio)
        logger.info(f"TTSClient: Synthesized {len(audio)} bytes in {time.time() - start:.3f}s")
        return audio

    def clear_cache(self) -> int:
        count = len(self.cache)
        self.cache.clear()
        logger.info(f"TTSClient: Cache cleared ({count} entries)")
        return count

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()
