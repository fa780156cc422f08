"""
Console client for the Universal Cone Challenge.

    python -m cone_trainer.frontend.app --name Jordan

Enter toggles the microphone, "end" scores the simulation, "quit" leaves.
"""
import argparse
import asyncio
import logging
import platform
import sys
import threading
from typing import Dict, List, Optional

from dotenv import load_dotenv, find_dotenv

from .api_client import API_BASE_URL, SimulationClient
from .app_context import AppContext
from .audio_utils import is_constrained_mobile, select_constraints
from .devices import SoundDeviceMicrophone, SoundDeviceOutput, WebSocketTranscriptionChannel
from .speech_capture import SpeechCaptureAdapter
from .turn_controller import TurnController, TurnState

logger = logging.getLogger(__name__)

SPEAKER_LABELS = {"user": "You", "assistant": "Dr. Hayes"}


def print_turn(transcripts: List[Dict[str, str]]):
    if transcripts:
        last = transcripts[-1]
        print(f"\n{SPEAKER_LABELS.get(last['role'], last['role'])}: {last['content']}")


def print_state(state: TurnState):
    hints = {
        TurnState.IDLE: "[Enter] to speak, 'end' to finish",
        TurnState.LISTENING: "Listening... [Enter] to send",
        TurnState.AWAITING_REPLY: "Dr. Hayes is thinking...",
        TurnState.SPEAKING: "Dr. Hayes is speaking...",
        TurnState.SCORED: "Scoring...",
    }
    print(hints[state])


def print_error(message: str):
    print(f"! {message}")


def print_result(simulation: Dict):
    feedback = simulation.get("feedback") or {}
    print(f"\nTotal Score: {simulation.get('score')}/100")
    for section in feedback.get("sections", []):
        print(f"  {section['name']}: {section['score']}/20 - {section.get('feedback', '')}")
    for title, key in (("Strengths", "strengths"), ("Improvements", "improvements"),
                       ("Accuracy Alerts", "incorrectClaims")):
        items = feedback.get(key) or []
        if items:
            print(f"{title}:")
            for item in items:
                print(f"  - {item}")


def start_command_reader(loop: asyncio.AbstractEventLoop, commands: asyncio.Queue) -> threading.Thread:
    """
    Reads stdin lines into the command queue. Daemon thread, so a pending
    read never holds the process open after the session ends.
    """
    def read():
        try:
            for line in sys.stdin:
                loop.call_soon_threadsafe(commands.put_nowait, line.strip().lower())
            loop.call_soon_threadsafe(commands.put_nowait, "quit")
        except RuntimeError:
            # Loop already closed
            return

    reader = threading.Thread(target=read, name="console-input", daemon=True)
    reader.start()
    return reader


async def run_commands(controller: TurnController, commands: asyncio.Queue):
    """
    Dispatches commands as they arrive. A turn runs as a task, so an Enter
    pressed while Dr. Hayes is thinking or speaking reaches the controller
    at once and is dropped instead of starting a turn later.
    """
    turn_task: Optional[asyncio.Task] = None
    try:
        while controller.state != TurnState.SCORED:
            command = await commands.get()
            if turn_task is not None and turn_task.done():
                turn_task.result()
                turn_task = None

            if command == "quit":
                break
            if command == "end":
                if controller.state != TurnState.IDLE:
                    print_error("Finish the current turn before ending the simulation")
                    continue
                print("End the simulation and get your score? [y/N]")
                answer = await commands.get()
                result = await controller.end_simulation(confirmed=answer == "y")
                if result:
                    print_result(result)
                continue

            if turn_task is not None:
                if not controller.mic_enabled:
                    await controller.press_mic()
                else:
                    logger.debug("Console: Mic press dropped, capture is still switching")
                continue
            turn_task = asyncio.create_task(controller.press_mic())
    finally:
        if turn_task is not None and not turn_task.done():
            turn_task.cancel()
            await asyncio.gather(turn_task, return_exceptions=True)


async def run(name: str, api_url: str):
    api_client = SimulationClient(base_url=api_url)
    app_context = AppContext(api_client=api_client, output=SoundDeviceOutput())
    constraints = select_constraints(is_constrained_mobile(platform.platform()))

    # No on-device recognizer on the desktop client: audio is streamed
    capture = SpeechCaptureAdapter.create(
        microphone_factory=lambda: SoundDeviceMicrophone(constraints),
        channel_factory=lambda: WebSocketTranscriptionChannel(
            api_client.transcribe_url, sample_rate=constraints.sample_rate
        ),
    )

    try:
        simulation = await api_client.create_simulation(name)
        controller = TurnController(
            simulation_id=simulation["id"],
            api_client=api_client,
            capture=capture,
            player=app_context.player,
            on_state_change=print_state,
            on_transcript=print_turn,
            on_error=print_error,
        )
        capture.on_unexpected_stop = controller.handle_capture_stopped
        await controller.load()
        if controller.transcripts:
            await app_context.player.play(controller.transcripts[-1]["content"])
        print_state(controller.state)

        commands: asyncio.Queue = asyncio.Queue()
        start_command_reader(asyncio.get_running_loop(), commands)
        await run_commands(controller, commands)
    finally:
        if capture.is_listening():
            await capture.stop_listening()
        await app_context.close()


def main():
    load_dotenv(find_dotenv())
    logging.basicConfig(
        level=logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    parser = argparse.ArgumentParser(description="Universal Cone Challenge console client")
    parser.add_argument("--name", required=True, help="Participant name")
    parser.add_argument("--api-url", default=API_BASE_URL, help="Trainer API base URL")
    args = parser.parse_args()
    asyncio.run(run(args.name, args.api_url))


if __name__ == "__main__":
    main()
