import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock

import pytest

from cone_trainer.components.errors import CollaboratorError, ResourceError
from cone_trainer.frontend.speech_capture import SpeechCaptureAdapter
from cone_trainer.frontend.turn_controller import TurnController, TurnState

GREETING = "Hello. I'm Dr. Hayes. I'm pretty busy, so what have you got?"


class FakeCapture:
    def __init__(self, text: str = "", start_error: Exception = None):
        self.text = text
        self.start_error = start_error
        self.listening = False
        self.resets = 0

    async def start_listening(self):
        if self.start_error:
            raise self.start_error
        self.listening = True

    async def stop_listening(self):
        self.listening = False

    def current_transcript(self) -> str:
        return self.text

    def reset_transcript(self):
        self.resets += 1

    def is_listening(self) -> bool:
        return self.listening


class FakePlayer:
    def __init__(self, controller_ref: List):
        self.controller_ref = controller_ref
        self.played: List[str] = []
        self.transcripts_at_play: List = []
        self.states_at_play: List = []
        self.stops = 0

    async def play(self, text: str) -> str:
        controller = self.controller_ref[0]
        self.played.append(text)
        self.transcripts_at_play.append(list(controller.transcripts))
        self.states_at_play.append(controller.state)
        return "audio"

    def stop_current(self):
        self.stops += 1


def make_controller(capture, api_client=None):
    api_client = api_client or MagicMock()
    if not isinstance(getattr(api_client, "chat", None), AsyncMock):
        api_client.chat = AsyncMock(return_value="Why should I switch from Stryker?")
    api_client.get_simulation = AsyncMock(return_value={
        "simulation": {"id": 1, "score": None},
        "transcripts": [{"role": "assistant", "content": GREETING}],
    })
    if not isinstance(getattr(api_client, "score", None), AsyncMock):
        api_client.score = AsyncMock(return_value={"id": 1, "score": 70, "feedback": {"sections": []}})

    ref = []
    player = FakePlayer(ref)
    states, errors = [], []
    controller = TurnController(
        simulation_id=1,
        api_client=api_client,
        capture=capture,
        player=player,
        on_state_change=states.append,
        on_error=errors.append,
    )
    ref.append(controller)
    return controller, api_client, player, states, errors


def test_load_shows_the_greeting():
    controller, _, _, _, _ = make_controller(FakeCapture())
    asyncio.run(controller.load())
    assert controller.transcripts == [{"role": "assistant", "content": GREETING}]
    assert controller.state == TurnState.IDLE


def test_empty_capture_returns_to_idle_without_submitting():
    controller, api_client, player, states, _ = make_controller(FakeCapture(text="   "))

    asyncio.run(controller.press_mic())
    asyncio.run(controller.press_mic())

    assert states == [TurnState.LISTENING, TurnState.IDLE]
    api_client.chat.assert_not_called()
    assert controller.transcripts == []
    assert player.played == []


def test_full_turn():
    capture = FakeCapture(text="Why switch from Stryker?")
    controller, api_client, player, states, errors = make_controller(capture)
    asyncio.run(controller.load())

    asyncio.run(controller.press_mic())
    assert capture.resets == 1
    assert controller.state == TurnState.LISTENING

    asyncio.run(controller.press_mic())

    assert states == [TurnState.LISTENING, TurnState.AWAITING_REPLY, TurnState.SPEAKING, TurnState.IDLE]
    api_client.chat.assert_awaited_once_with(1, "Why switch from Stryker?")
    assert [t["role"] for t in controller.transcripts] == ["assistant", "user", "assistant"]
    assert player.played == ["Why should I switch from Stryker?"]
    assert errors == []


def test_reply_is_displayed_before_playback():
    controller, _, player, _, _ = make_controller(FakeCapture(text="Hi doctor"))

    asyncio.run(controller.press_mic())
    asyncio.run(controller.press_mic())

    assert player.transcripts_at_play[0][-1] == {"role": "assistant", "content": "Why should I switch from Stryker?"}
    assert player.states_at_play == [TurnState.SPEAKING]


def test_failed_reply_returns_to_idle_and_keeps_user_turn():
    api_client = MagicMock()
    api_client.chat = AsyncMock(side_effect=CollaboratorError("llm", "timeout"))
    controller, _, player, states, errors = make_controller(FakeCapture(text="Hi doctor"), api_client)

    asyncio.run(controller.press_mic())
    asyncio.run(controller.press_mic())

    assert controller.state == TurnState.IDLE
    assert states[-1] == TurnState.IDLE
    assert controller.transcripts == [{"role": "user", "content": "Hi doctor"}]
    assert len(errors) == 1 and "timeout" in errors[0]
    assert player.played == []


def test_microphone_failure_stays_idle():
    controller, _, _, states, errors = make_controller(FakeCapture(start_error=ResourceError("No microphone found.")))

    asyncio.run(controller.press_mic())

    assert controller.state == TurnState.IDLE
    assert states == []
    assert errors == ["No microphone found."]


def test_mic_and_end_are_ignored_while_awaiting_reply():
    async def scenario():
        release = asyncio.Event()

        async def slow_chat(simulation_id, message):
            await release.wait()
            return "Go on."

        api_client = MagicMock()
        api_client.chat = AsyncMock(side_effect=slow_chat)
        controller, _, _, _, _ = make_controller(FakeCapture(text="Hello"), api_client)

        await controller.press_mic()
        turn = asyncio.create_task(controller.press_mic())
        await asyncio.sleep(0)
        assert controller.state == TurnState.AWAITING_REPLY
        assert not controller.mic_enabled

        await controller.press_mic()
        ended = await controller.end_simulation(confirmed=True)

        release.set()
        await turn
        return controller, api_client, ended

    controller, api_client, ended = asyncio.run(scenario())

    assert ended is None
    assert api_client.chat.await_count == 1
    api_client.score.assert_not_called()
    assert controller.state == TurnState.IDLE


def test_end_requires_confirmation():
    controller, api_client, _, _, _ = make_controller(FakeCapture())

    assert asyncio.run(controller.end_simulation(confirmed=False)) is None

    assert controller.state == TurnState.IDLE
    api_client.score.assert_not_called()


def test_end_scores_and_blocks_further_turns():
    capture = FakeCapture(text="Hello")
    controller, api_client, player, _, _ = make_controller(capture)

    result = asyncio.run(controller.end_simulation(confirmed=True))

    assert result["score"] == 70
    assert controller.state == TurnState.SCORED
    assert player.stops == 1

    asyncio.run(controller.press_mic())
    assert controller.state == TurnState.SCORED
    assert not capture.listening
    assert asyncio.run(controller.end_simulation(confirmed=True)) is None
    api_client.score.assert_awaited_once()


def test_scoring_failure_returns_to_idle():
    api_client = MagicMock()
    api_client.score = AsyncMock(side_effect=CollaboratorError("judge", "timed out after 90s"))
    controller, _, _, _, errors = make_controller(FakeCapture(), api_client)

    assert asyncio.run(controller.end_simulation(confirmed=True)) is None
    assert controller.state == TurnState.IDLE
    assert len(errors) == 1


def test_reply_arriving_after_scoring_is_ignored():
    async def scenario():
        release = asyncio.Event()

        async def slow_chat(simulation_id, message):
            await release.wait()
            return "Late reply"

        api_client = MagicMock()
        api_client.chat = AsyncMock(side_effect=slow_chat)
        controller, _, player, _, _ = make_controller(FakeCapture(text="Hello"), api_client)

        await controller.press_mic()
        turn = asyncio.create_task(controller.press_mic())
        await asyncio.sleep(0)
        # Scored elsewhere while the reply was in flight
        controller.state = TurnState.SCORED
        release.set()
        await turn
        return controller, player

    controller, player = asyncio.run(scenario())

    assert controller.state == TurnState.SCORED
    assert player.played == []
    assert controller.transcripts == [{"role": "user", "content": "Hello"}]


@pytest.mark.parametrize("state", [TurnState.AWAITING_REPLY, TurnState.SPEAKING, TurnState.SCORED])
def test_mic_press_ignored_outside_idle_and_listening(state):
    capture = FakeCapture(text="Hello")
    controller, api_client, _, _, _ = make_controller(capture)
    controller.state = state

    asyncio.run(controller.press_mic())

    assert controller.state == state
    assert not capture.listening
    api_client.chat.assert_not_called()


class SilentMicrophone:
    def __init__(self):
        self.released = False

    async def open(self):
        pass

    def read_chunk(self) -> bytes:
        return b""

    def stop(self):
        pass

    def close(self):
        self.released = True


class DroppingChannel:
    """Reports an upstream error right after connecting"""

    async def connect(self):
        pass

    async def send(self, chunk: bytes):
        pass

    async def events(self):
        yield {"type": "error", "message": "upstream closed"}

    async def close(self):
        pass


def test_channel_dropping_mid_listen_returns_to_idle():
    microphone = SilentMicrophone()
    capture = SpeechCaptureAdapter.create(
        microphone_factory=lambda: microphone,
        channel_factory=DroppingChannel,
    )
    controller, api_client, _, states, errors = make_controller(capture)
    capture.on_unexpected_stop = controller.handle_capture_stopped

    async def scenario():
        await controller.press_mic()
        await asyncio.sleep(0.05)

    asyncio.run(scenario())

    assert not capture.is_listening()
    assert microphone.released
    assert controller.state == TurnState.IDLE
    assert states == [TurnState.LISTENING, TurnState.IDLE]
    assert len(errors) == 1 and "upstream closed" in errors[0]
    api_client.chat.assert_not_called()


def test_capture_stop_outside_listening_is_ignored():
    controller, _, _, states, errors = make_controller(FakeCapture())
    controller.state = TurnState.AWAITING_REPLY

    controller.handle_capture_stopped(ConnectionError("late"))

    assert controller.state == TurnState.AWAITING_REPLY
    assert states == [] and errors == []
