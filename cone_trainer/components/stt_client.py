import json
import logging
import os
from typing import AsyncIterator, Dict, Optional
from urllib.parse import urlencode

import websockets

from .errors import CollaboratorError

logger = logging.getLogger(__name__)

DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
DEEPGRAM_MODEL = os.getenv("DEEPGRAM_MODEL", "nova-2")
DEEPGRAM_LANGUAGE = os.getenv("DEEPGRAM_LANGUAGE", "en-US")
DEEPGRAM_LISTEN_URL = os.getenv("DEEPGRAM_LISTEN_URL", "wss://api.deepgram.com/v1/listen")


def parse_deepgram_message(raw) -> Optional[Dict]:
    """
    Converts one Deepgram live message into a channel event:
    {"type": "transcript", "text", "isFinal"} or {"type": "error", "message"}.
    Metadata, VAD and empty transcripts give None.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logger.debug(f"STTClient: Ignoring non-JSON message: {str(raw)[:100]}")
        return None
    if not isinstance(data, dict):
        return None

    message_type = data.get("type")
    if message_type == "Results":
        alternatives = (data.get("channel") or {}).get("alternatives") or []
        transcript = alternatives[0].get("transcript", "") if alternatives else ""
        if not transcript:
            return None
        return {"type": "transcript", "text": transcript, "isFinal": bool(data.get("is_final"))}
    if message_type == "Error":
        message = data.get("description") or data.get("message") or "Deepgram error"
        return {"type": "error", "message": message}
    return None


class DeepgramStream:
    """One open live-transcription stream"""

    def __init__(self, connection):
        self.connection = connection
        self._finished = False

    async def send_audio(self, chunk: bytes):
        if self._finished:
            return
        await self.connection.send(chunk)

    async def events(self) -> AsyncIterator[Dict]:
        """Transcript/error events until the upstream closes"""
        try:
            async for message in self.connection:
                event = parse_deepgram_message(message)
                if event:
                    yield event
        except websockets.exceptions.ConnectionClosedError as e:
            logger.error(f"STTClient: Deepgram connection closed with error: {e}")
            yield {"type": "error", "message": str(e)}

    async def finish(self):
        """Flush pending audio and close the upstream"""
        if self._finished:
            return
        self._finished = True
        try:
            await self.connection.send(json.dumps({"type": "CloseStream"}))
        except websockets.exceptions.ConnectionClosed:
            logger.debug("STTClient: Stream already closed")
        finally:
            await self.connection.close()
            logger.info("STTClient: Deepgram stream finished")


class STTClient:
    """Deepgram live speech-to-text over WebSocket"""

    def __init__(self, api_key: str = None):
        self.api_key = api_key if api_key is not None else DEEPGRAM_API_KEY
        self.model = DEEPGRAM_MODEL
        self.language = DEEPGRAM_LANGUAGE
        self.service_url = DEEPGRAM_LISTEN_URL
        if not self.api_key:
            logger.warning("STTClient: DEEPGRAM_API_KEY not set. Streamed transcription will not work.")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def build_url(self, encoding: str = None, sample_rate: int = None) -> str:
        params = {
            "model": self.model,
            "language": self.language,
            "smart_format": "true",
            "interim_results": "true",
            "utterance_end_ms": 1000,
            "vad_events": "true",
        }
        # Raw PCM needs explicit encoding; containerized audio is auto-detected
        if encoding:
            params["encoding"] = encoding
            params["channels"] = 1
        if sample_rate:
            params["sample_rate"] = int(sample_rate)
        return f"{self.service_url}?{urlencode(params)}"

    async def open_stream(self, encoding: str = None, sample_rate: int = None) -> DeepgramStream:
        """
        Raises:
            CollaboratorError: key missing or the connection failed
        """
        if not self.api_key:
            raise CollaboratorError("stt", "DEEPGRAM_API_KEY is not configured")

        url = self.build_url(encoding=encoding, sample_rate=sample_rate)
        logger.info(f"STTClient: Connecting to Deepgram ({self.model}, {self.language})")
        try:
            connection = await websockets.connect(
                url,
                additional_headers={"Authorization": f"Token {self.api_key}"},
                ping_interval=20,
                ping_timeout=10,
            )
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.error(f"STTClient: Failed to connect to Deepgram: {e}", exc_info=True)
            raise CollaboratorError("stt", str(e)) from e

        logger.info("STTClient: Deepgram connection opened")
        return DeepgramStream(connection)
