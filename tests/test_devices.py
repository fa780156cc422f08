import asyncio
import json
from unittest.mock import AsyncMock, patch

import numpy as np
import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from cone_trainer.components.errors import ResourceError
from cone_trainer.frontend.devices import (
    WebSocketTranscriptionChannel,
    describe_microphone_error,
    to_pcm16,
)


def test_float_audio_becomes_pcm16():
    samples = np.array([[0.0], [1.0], [-1.0], [2.0]], dtype=np.float32)
    pcm = np.frombuffer(to_pcm16(samples), dtype="<i2")
    assert pcm.tolist() == [0, 32767, -32767, 32767]


def test_first_channel_is_used():
    samples = np.array([[0.5, -0.5], [0.25, 0.0]], dtype=np.float32)
    pcm = np.frombuffer(to_pcm16(samples), dtype="<i2")
    assert len(pcm) == 2
    assert pcm[0] > 0


def test_int16_audio_passes_through():
    samples = np.array([1, -2, 3], dtype=np.int16)
    assert np.frombuffer(to_pcm16(samples), dtype="<i2").tolist() == [1, -2, 3]


def test_microphone_error_messages():
    assert "permission denied" in describe_microphone_error(OSError("Permission denied")).lower()
    assert "no microphone found" in describe_microphone_error(OSError("Error querying device -1: no default input device")).lower()
    assert describe_microphone_error(OSError("weird")).startswith("Could not access microphone")


class FakeConnection:
    def __init__(self, first=None, closed: Exception = None):
        self.first = first
        self.closed = closed
        self.close_calls = 0

    async def recv(self):
        if self.closed is not None:
            raise self.closed
        return self.first

    async def close(self):
        self.close_calls += 1


def _connect(connection):
    channel = WebSocketTranscriptionChannel("ws://trainer.test/ws/transcribe", sample_rate=48000)
    connect = AsyncMock(return_value=connection)
    with patch("cone_trainer.frontend.devices.websockets.connect", new=connect):
        asyncio.run(channel.connect())
    return channel, connect


def test_channel_opens_after_connected_frame():
    connection = FakeConnection(first=json.dumps({"type": "connected"}))
    channel, connect = _connect(connection)

    url = connect.await_args.args[0]
    assert url.startswith("ws://trainer.test/ws/transcribe?")
    assert "sample_rate=48000" in url
    assert "encoding=linear16" in url
    assert connection.close_calls == 0


def test_error_frame_fails_the_connect():
    connection = FakeConnection(first=json.dumps({"type": "error", "message": "stt: upstream refused"}))

    with pytest.raises(ResourceError) as exc_info:
        _connect(connection)

    assert "upstream refused" in exc_info.value.message
    assert connection.close_calls == 1


def test_server_closing_first_fails_the_connect():
    closed = ConnectionClosedError(Close(1008, "Deepgram API key not configured"), None)
    connection = FakeConnection(closed=closed)

    with pytest.raises(ResourceError) as exc_info:
        _connect(connection)

    assert "Deepgram API key not configured" in exc_info.value.message
