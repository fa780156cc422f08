"""
Playback of assistant replies: client audio cache, API text-to-speech and
an optional on-device speech synthesizer as fallback.
"""
import asyncio
import logging
import os
import tempfile
from typing import Optional, Protocol

from ..components.audio_cache import ResponseAudioCache

logger = logging.getLogger(__name__)

CLIENT_CACHE_SIZE = 50
CLIENT_CACHE_PREFIX = "audio_"
DEFAULT_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "pNInz6obpgDQGcFmaJgB")


class AudioOutput(Protocol):
    async def play(self, path: str) -> None:
        ...

    def stop(self) -> None:
        ...


class SpeechSynthesizer(Protocol):
    """On-device text-to-speech used when API audio is unavailable"""

    async def speak(self, text: str) -> None:
        ...

    def cancel(self) -> None:
        ...


class AudioHandle:
    """Playable audio held in a temporary file until released"""

    def __init__(self, path: str):
        self.path = path

    @classmethod
    def from_bytes(cls, audio: bytes, suffix: str = ".mp3") -> "AudioHandle":
        with tempfile.NamedTemporaryFile(prefix="cone_trainer_", suffix=suffix, delete=False) as f:
            f.write(audio)
            return cls(f.name)

    @property
    def released(self) -> bool:
        return not os.path.exists(self.path)

    def release(self):
        if os.path.exists(self.path):
            os.unlink(self.path)

    def __repr__(self):
        return f"<AudioHandle({self.path})>"


def release_handle(handle: AudioHandle):
    handle.release()


def create_client_cache() -> ResponseAudioCache:
    return ResponseAudioCache(
        max_entries=CLIENT_CACHE_SIZE,
        key_prefix=CLIENT_CACHE_PREFIX,
        release=release_handle,
    )


class AudioPlayer:
    """
    Plays one reply at a time. Starting a new reply stops whatever is playing.
    play() never raises: API audio first, then the synthesizer, else silence.
    """

    def __init__(self, api_client, output: Optional[AudioOutput], cache: ResponseAudioCache = None,
                 synthesizer: Optional[SpeechSynthesizer] = None, voice_id: str = None):
        self.api_client = api_client
        self.output = output
        self.cache = cache if cache is not None else create_client_cache()
        self.synthesizer = synthesizer
        self.voice_id = voice_id or DEFAULT_VOICE_ID
        self._current: Optional[asyncio.Task] = None

    @property
    def is_playing(self) -> bool:
        return self._current is not None and not self._current.done()

    def stop_current(self):
        if self._current is not None and not self._current.done():
            self._current.cancel()
        self._current = None
        if self.output is not None:
            try:
                self.output.stop()
            except Exception as e:
                logger.warning(f"AudioPlayer: Failed to stop output: {e}")
        if self.synthesizer is not None:
            try:
                self.synthesizer.cancel()
            except Exception as e:
                logger.warning(f"AudioPlayer: Failed to cancel speech synthesis: {e}")

    async def play(self, text: str) -> str:
        """
        Speaks the text and returns how: "audio", "synthesized" or "skipped"
        ("stopped" when a newer reply interrupted it).
        """
        self.stop_current()
        task = asyncio.create_task(self._speak(text))
        self._current = task
        try:
            await asyncio.wait([task])
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._current is task:
                self._current = None

        if task.cancelled():
            logger.info("AudioPlayer: Playback interrupted")
            return "stopped"
        return task.result()

    async def _speak(self, text: str) -> str:
        try:
            await self._play_api_audio(text)
            return "audio"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"AudioPlayer: API audio failed, falling back: {e}")

        if self.synthesizer is not None:
            try:
                await self.synthesizer.speak(text)
                return "synthesized"
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"AudioPlayer: Speech synthesis failed: {e}")

        logger.info("AudioPlayer: No audio available, skipping playback")
        return "skipped"

    async def _play_api_audio(self, text: str):
        if self.output is None:
            raise RuntimeError("no audio output device")

        handle = self.cache.get(text, self.voice_id)
        if handle is None or handle.released:
            audio = await self.api_client.tts(text, voice_id=self.voice_id)
            handle = AudioHandle.from_bytes(audio)
            self.cache.put(text, self.voice_id, handle)
            logger.info("AudioPlayer: TTS audio fetched and cached")
        else:
            logger.info("AudioPlayer: Cache hit")
        await self.output.play(handle.path)

    def clear_cache(self):
        self.cache.clear()
