import asyncio
from unittest.mock import AsyncMock, MagicMock

from cone_trainer.frontend.app import run_commands
from cone_trainer.frontend.turn_controller import TurnController, TurnState


class CountingCapture:
    def __init__(self, text: str):
        self.text = text
        self.listening = False
        self.starts = 0

    async def start_listening(self):
        self.starts += 1
        self.listening = True

    async def stop_listening(self):
        self.listening = False

    def current_transcript(self) -> str:
        return self.text

    def reset_transcript(self):
        pass

    def is_listening(self) -> bool:
        return self.listening


def _controller(capture, chat):
    api_client = MagicMock()
    api_client.chat = AsyncMock(side_effect=chat)
    api_client.score = AsyncMock(return_value={"id": 1, "score": 64, "feedback": {}})
    player = MagicMock()
    player.play = AsyncMock(return_value="audio")
    return TurnController(simulation_id=1, api_client=api_client, capture=capture, player=player), api_client


def test_enter_while_awaiting_reply_is_dropped():
    async def scenario():
        release = asyncio.Event()

        async def slow_chat(simulation_id, message):
            await release.wait()
            return "Go on."

        capture = CountingCapture("One tray for all cone sizes.")
        controller, api_client = _controller(capture, slow_chat)
        commands: asyncio.Queue = asyncio.Queue()
        runner = asyncio.create_task(run_commands(controller, commands))

        await commands.put("")
        await asyncio.sleep(0.01)
        assert controller.state == TurnState.LISTENING

        await commands.put("")
        await asyncio.sleep(0.01)
        assert controller.state == TurnState.AWAITING_REPLY

        # Pressed while Dr. Hayes is thinking
        await commands.put("")
        await asyncio.sleep(0.01)

        release.set()
        await asyncio.sleep(0.01)
        state_after_reply = controller.state

        await commands.put("quit")
        await runner
        return state_after_reply, capture, api_client

    state_after_reply, capture, api_client = asyncio.run(scenario())

    assert state_after_reply == TurnState.IDLE
    assert capture.starts == 1
    assert not capture.listening
    api_client.chat.assert_awaited_once()


def test_end_asks_for_confirmation_then_scores():
    async def quick_chat(simulation_id, message):
        return "Go on."

    async def scenario():
        controller, api_client = _controller(CountingCapture(""), quick_chat)
        commands: asyncio.Queue = asyncio.Queue()
        for command in ("end", "n", "end", "y"):
            commands.put_nowait(command)
        await run_commands(controller, commands)
        return controller, api_client

    controller, api_client = asyncio.run(scenario())

    assert controller.state == TurnState.SCORED
    api_client.score.assert_awaited_once_with(1)
