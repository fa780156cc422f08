"""
Concrete audio devices for the desktop client: microphone (sounddevice),
transcription channel (websockets) and speaker output (soundfile + sounddevice).
sounddevice is imported lazily so the rest of the client works without PortAudio.
"""
import asyncio
import json
import logging
import threading
from typing import AsyncIterator, Dict, List, Optional, Union
from urllib.parse import urlencode

import numpy as np
import websockets

from ..components.errors import ResourceError
from .audio_utils import AudioConstraints

logger = logging.getLogger(__name__)


def to_pcm16(indata: np.ndarray) -> bytes:
    """
    Convert sounddevice callback 'indata' into mono PCM16 little-endian bytes.
    Uses the first channel only.
    """
    x = np.asarray(indata)
    mono = x[:, 0] if x.ndim == 2 and x.shape[1] >= 1 else x.reshape(-1)

    if mono.dtype == np.int16:
        return mono.astype("<i2").tobytes(order="C")

    f = np.clip(mono.astype(np.float32), -1.0, 1.0)
    return (f * 32767.0).astype("<i2").tobytes(order="C")


def describe_microphone_error(error: Exception) -> str:
    """User-facing message for a failed microphone acquisition"""
    text = str(error).lower()
    if "permission" in text or "denied" in text:
        return "Microphone permission denied. Please allow microphone access and try again."
    if "no default input" in text or "invalid device" in text or "device unavailable" in text:
        return "No microphone found. Please connect a microphone and try again."
    if "busy" in text or "in use" in text:
        return "Microphone is in use by another application."
    return f"Could not access microphone: {error}"


class SoundDeviceMicrophone:
    """PCM16 mono microphone buffered between read_chunk() calls"""

    def __init__(self, constraints: AudioConstraints, device: Optional[Union[int, str]] = None):
        self.constraints = constraints
        self.device = device
        self._stream = None
        self._buffer: List[bytes] = []
        self._lock = threading.Lock()

    async def open(self):
        try:
            import sounddevice as sd

            self._stream = sd.InputStream(
                device=self.device,
                samplerate=int(self.constraints.sample_rate),
                channels=int(self.constraints.channel_count),
                dtype="float32",
                callback=self._on_audio,
            )
            self._stream.start()
        except Exception as e:
            if self._stream is not None:
                self._stream.close()
                self._stream = None
            raise ResourceError(describe_microphone_error(e)) from e
        logger.info(f"Microphone: Opened at {self.constraints.sample_rate} Hz")

    def _on_audio(self, indata, frames, time_info, status):
        if status:
            logger.debug(f"Microphone: status {status}")
        pcm16 = to_pcm16(indata)
        with self._lock:
            self._buffer.append(pcm16)

    def read_chunk(self) -> bytes:
        with self._lock:
            chunk = b"".join(self._buffer)
            self._buffer = []
        return chunk

    def stop(self):
        if self._stream is not None:
            self._stream.stop()

    def close(self):
        if self._stream is not None:
            self._stream.close()
            self._stream = None
            logger.info("Microphone: Released")


class WebSocketTranscriptionChannel:
    """Client side of the server's /ws/transcribe proxy"""

    def __init__(self, url: str, encoding: str = "linear16", sample_rate: int = 16000,
                 handshake_timeout: float = 10.0):
        self.url = url
        self.encoding = encoding
        self.sample_rate = sample_rate
        self.handshake_timeout = handshake_timeout
        self._connection = None

    async def connect(self):
        """Open only once the server reports the upstream recognizer is connected"""
        query = urlencode({"encoding": self.encoding, "sample_rate": self.sample_rate})
        connection = await websockets.connect(f"{self.url}?{query}")
        try:
            first = await asyncio.wait_for(connection.recv(), timeout=self.handshake_timeout)
        except websockets.ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd is not None and e.rcvd.reason else "connection closed"
            raise ResourceError(f"Transcription service unavailable: {reason}") from e
        except asyncio.TimeoutError as e:
            await connection.close()
            raise ResourceError("Transcription service did not answer") from e

        try:
            event = json.loads(first) if isinstance(first, str) else {}
        except ValueError:
            event = {}
        if not isinstance(event, dict):
            event = {}
        if event.get("type") != "connected":
            await connection.close()
            message = event.get("message") or "unexpected handshake"
            raise ResourceError(f"Transcription service unavailable: {message}")

        self._connection = connection
        logger.info(f"TranscriptionChannel: Connected to {self.url}")

    async def send(self, chunk: bytes):
        await self._connection.send(chunk)

    async def events(self) -> AsyncIterator[Dict]:
        async for message in self._connection:
            if isinstance(message, bytes):
                continue
            yield json.loads(message)

    async def close(self):
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("TranscriptionChannel: Closed")


class SoundDeviceOutput:
    """Plays audio files on the default output device"""

    async def play(self, path: str):
        """Returns when playback ends or is stopped"""
        import sounddevice as sd
        import soundfile as sf

        data, sample_rate = sf.read(path, dtype="float32")
        sd.play(data, sample_rate)
        await asyncio.to_thread(sd.wait)

    def stop(self):
        import sounddevice as sd

        sd.stop()
