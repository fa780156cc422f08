"""
Speech capture adapter.

Two interchangeable backends sit behind one surface:
- OnDeviceBackend: continuous recognition provided by the runtime;
- StreamedBackend: microphone chunks streamed to the remote transcription
  channel every 250 ms, keeping only final fragments.

The backend is chosen once, in SpeechCaptureAdapter.create().
"""
import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol

from ..components.errors import ResourceError

logger = logging.getLogger(__name__)

CHUNK_INTERVAL_SEC = 0.25


class SpeechRecognizer(Protocol):
    """On-device continuous recognition (results arrive through callbacks)"""

    def start(self, on_result: Callable[[str, bool], None], on_error: Callable[[Exception], None]) -> None:
        ...

    def stop(self) -> None:
        ...


class MicrophoneSource(Protocol):
    """Open input stream producing PCM chunks"""

    async def open(self) -> None:
        ...

    def read_chunk(self) -> bytes:
        """Audio captured since the previous call (may be empty)"""
        ...

    def stop(self) -> None:
        """Stop producing audio"""
        ...

    def close(self) -> None:
        """Release the input device"""
        ...


class TranscriptionChannel(Protocol):
    """Bidirectional channel to the remote transcription service"""

    async def connect(self) -> None:
        ...

    async def send(self, chunk: bytes) -> None:
        ...

    def events(self) -> AsyncIterator[Dict]:
        ...

    async def close(self) -> None:
        ...


def _join(*parts: str) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())


class CaptureBackend:
    name = "base"

    def __init__(self, on_unexpected_stop: Optional[Callable[[Exception], None]] = None):
        self.on_unexpected_stop = on_unexpected_stop
        self.listening = False

    @property
    def transcript(self) -> str:
        raise NotImplementedError

    async def start(self):
        raise NotImplementedError

    async def stop(self):
        raise NotImplementedError

    def reset(self):
        raise NotImplementedError

    def _notify_unexpected_stop(self, error: Exception):
        if self.on_unexpected_stop is not None:
            self.on_unexpected_stop(error)


class OnDeviceBackend(CaptureBackend):
    """Runtime-provided recognition; interim text counts toward the transcript"""

    name = "on_device"

    def __init__(self, recognizer: SpeechRecognizer, on_unexpected_stop=None):
        super().__init__(on_unexpected_stop)
        self.recognizer = recognizer
        self._committed = ""
        self._interim = ""

    @property
    def transcript(self) -> str:
        return _join(self._committed, self._interim)

    async def start(self):
        if self.listening:
            return
        try:
            self.recognizer.start(self._on_result, self._on_error)
        except Exception as e:
            logger.error(f"SpeechCapture: On-device recognition failed to start: {e}", exc_info=True)
            raise ResourceError(f"Speech recognition could not start: {e}") from e
        self.listening = True
        logger.info("SpeechCapture: Listening (on-device)")

    async def stop(self):
        if not self.listening:
            return
        self.listening = False
        try:
            self.recognizer.stop()
        finally:
            self._commit_interim()
            logger.info("SpeechCapture: Stopped (on-device)")

    def reset(self):
        self._committed = ""
        self._interim = ""

    def _commit_interim(self):
        self._committed = _join(self._committed, self._interim)
        self._interim = ""

    def _on_result(self, text: str, is_final: bool):
        if is_final:
            self._committed = _join(self._committed, text)
            self._interim = ""
        else:
            self._interim = text

    def _on_error(self, error: Exception):
        logger.error(f"SpeechCapture: On-device recognition error: {error}")
        if self.listening:
            self.listening = False
            self._commit_interim()
            self._notify_unexpected_stop(error)


class StreamedBackend(CaptureBackend):
    """
    Microphone -> remote transcription channel.

    Entering Listening needs both the microphone and the channel; if either
    cannot be acquired nothing stays open. Teardown stops audio production,
    then closes the channel, then releases the microphone, attempting every
    step even when an earlier one fails.
    """

    name = "streamed"

    def __init__(self, microphone_factory: Callable[[], MicrophoneSource],
                 channel_factory: Callable[[], TranscriptionChannel],
                 chunk_interval: float = CHUNK_INTERVAL_SEC,
                 on_unexpected_stop=None):
        super().__init__(on_unexpected_stop)
        self.microphone_factory = microphone_factory
        self.channel_factory = channel_factory
        self.chunk_interval = chunk_interval
        self._fragments: List[str] = []
        self._microphone: Optional[MicrophoneSource] = None
        self._channel: Optional[TranscriptionChannel] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def transcript(self) -> str:
        return _join(*self._fragments)

    async def start(self):
        if self.listening:
            return

        microphone = self.microphone_factory()
        try:
            await microphone.open()
        except ResourceError:
            raise
        except Exception as e:
            logger.error(f"SpeechCapture: Microphone unavailable: {e}")
            raise ResourceError(f"Microphone unavailable: {e}") from e

        channel = self.channel_factory()
        try:
            await channel.connect()
        except Exception as e:
            logger.error(f"SpeechCapture: Transcription channel unavailable: {e}")
            self._attempt("stop microphone", microphone.stop)
            self._attempt("release microphone", microphone.close)
            if isinstance(e, ResourceError):
                raise
            raise ResourceError(f"Transcription service unavailable: {e}") from e

        self._microphone = microphone
        self._channel = channel
        self.listening = True
        self._tasks = [
            asyncio.create_task(self._pump_audio()),
            asyncio.create_task(self._receive_events()),
        ]
        logger.info(f"SpeechCapture: Listening (streamed, chunk every {self.chunk_interval * 1000:.0f} ms)")

    async def stop(self):
        await self._teardown()

    def reset(self):
        self._fragments = []

    async def _pump_audio(self):
        try:
            while self.listening:
                await asyncio.sleep(self.chunk_interval)
                chunk = self._microphone.read_chunk() if self._microphone else b""
                if chunk and self._channel is not None:
                    await self._channel.send(chunk)
                    logger.debug(f"SpeechCapture: Sent {len(chunk)} bytes")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"SpeechCapture: Audio streaming failed: {e}")
            await self._fail(e)

    async def _receive_events(self):
        try:
            async for event in self._channel.events():
                event_type = event.get("type")
                if event_type == "transcript":
                    text = (event.get("text") or "").strip()
                    if event.get("isFinal") and text:
                        self._fragments.append(text)
                elif event_type == "error":
                    raise ConnectionError(event.get("message") or "transcription error")
                elif event_type == "connected":
                    logger.debug("SpeechCapture: Transcription channel ready")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"SpeechCapture: Transcription channel error: {e}")
            await self._fail(e)
            return

        if self.listening:
            logger.warning("SpeechCapture: Transcription channel closed while listening")
            await self._fail(ConnectionError("transcription channel closed"))

    async def _fail(self, error: Exception):
        if not self.listening:
            return
        await self._teardown()
        self._notify_unexpected_stop(error)

    async def _teardown(self):
        if not self.listening and self._microphone is None and self._channel is None:
            return
        self.listening = False
        microphone, channel = self._microphone, self._channel
        self._microphone = None
        self._channel = None

        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current and not task.done()]
        self._tasks = []
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if microphone is not None:
            self._attempt("stop microphone", microphone.stop)
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"SpeechCapture: Failed to close transcription channel: {e}")
        if microphone is not None:
            self._attempt("release microphone", microphone.close)
        logger.info("SpeechCapture: Stopped (streamed)")

    @staticmethod
    def _attempt(step: str, action: Callable[[], None]):
        try:
            action()
        except Exception as e:
            logger.warning(f"SpeechCapture: Failed to {step}: {e}")


class SpeechCaptureAdapter:
    """Single capture surface over whichever backend was selected"""

    def __init__(self, backend: CaptureBackend):
        self.backend = backend

    @classmethod
    def create(cls, recognizer_factory: Optional[Callable[[], Optional[SpeechRecognizer]]] = None,
               microphone_factory: Optional[Callable[[], MicrophoneSource]] = None,
               channel_factory: Optional[Callable[[], TranscriptionChannel]] = None,
               on_unexpected_stop: Optional[Callable[[Exception], None]] = None) -> "SpeechCaptureAdapter":
        """
        On-device recognition when the runtime offers it, otherwise the
        streamed backend.
        """
        recognizer = recognizer_factory() if recognizer_factory else None
        if recognizer is not None:
            backend = OnDeviceBackend(recognizer, on_unexpected_stop=on_unexpected_stop)
        else:
            if microphone_factory is None or channel_factory is None:
                raise ValueError("Streamed capture needs a microphone factory and a channel factory")
            backend = StreamedBackend(microphone_factory, channel_factory, on_unexpected_stop=on_unexpected_stop)
        logger.info(f"SpeechCapture: Using {backend.name} backend")
        return cls(backend)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def on_unexpected_stop(self) -> Optional[Callable[[Exception], None]]:
        return self.backend.on_unexpected_stop

    @on_unexpected_stop.setter
    def on_unexpected_stop(self, callback: Optional[Callable[[Exception], None]]):
        self.backend.on_unexpected_stop = callback

    async def start_listening(self):
        await self.backend.start()

    async def stop_listening(self):
        await self.backend.stop()

    def current_transcript(self) -> str:
        return self.backend.transcript

    def reset_transcript(self):
        self.backend.reset()

    def is_listening(self) -> bool:
        return self.backend.listening
