"""
Turn controller: drives one simulation through

    Idle -> Listening -> AwaitingReply -> Speaking -> Idle ... -> Scored

Only one action is in flight at a time; the state guard, not a lock,
enforces it. Mic presses outside Idle/Listening are ignored.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..components.errors import ResourceError, TrainerError
from .playback import AudioPlayer
from .speech_capture import SpeechCaptureAdapter

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_REPLY = "awaiting_reply"
    SPEAKING = "speaking"
    SCORED = "scored"


class TurnController:
    def __init__(
        self,
        simulation_id: int,
        api_client,
        capture: SpeechCaptureAdapter,
        player: AudioPlayer,
        on_state_change: Optional[Callable[[TurnState], None]] = None,
        on_transcript: Optional[Callable[[List[Dict[str, str]]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.simulation_id = simulation_id
        self.api_client = api_client
        self.capture = capture
        self.player = player
        self.on_state_change = on_state_change
        self.on_transcript = on_transcript
        self.on_error = on_error

        self.state = TurnState.IDLE
        self.transcripts: List[Dict[str, str]] = []
        self.result: Optional[Dict[str, Any]] = None

    @property
    def mic_enabled(self) -> bool:
        return self.state in (TurnState.IDLE, TurnState.LISTENING)

    def _set_state(self, state: TurnState):
        if state == self.state:
            return
        logger.info(f"TurnController: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _report_error(self, message: str):
        logger.warning(f"TurnController: {message}")
        if self.on_error is not None:
            self.on_error(message)

    def _append_turn(self, role: str, content: str):
        self.transcripts.append({"role": role, "content": content})
        if self.on_transcript is not None:
            self.on_transcript(list(self.transcripts))

    async def load(self):
        """Fetches the stored turns (the greeting for a new simulation)"""
        detail = await self.api_client.get_simulation(self.simulation_id)
        self.transcripts = [
            {"role": entry["role"], "content": entry["content"]}
            for entry in detail.get("transcripts", [])
        ]
        if detail.get("simulation", {}).get("score") is not None:
            self.result = detail["simulation"]
            self._set_state(TurnState.SCORED)
        if self.on_transcript is not None:
            self.on_transcript(list(self.transcripts))

    async def press_mic(self):
        if self.state == TurnState.IDLE:
            await self._start_listening()
        elif self.state == TurnState.LISTENING:
            await self._finish_turn()
        else:
            logger.debug(f"TurnController: Mic press ignored in {self.state.value}")

    def handle_capture_stopped(self, error: Exception):
        """Capture dropped to Idle on its own (device or channel failure)"""
        if self.state != TurnState.LISTENING:
            logger.debug(f"TurnController: Capture stop in {self.state.value} ignored")
            return
        self._set_state(TurnState.IDLE)
        self._report_error(f"Transcription stopped: {error}")

    async def _start_listening(self):
        self.capture.reset_transcript()
        try:
            await self.capture.start_listening()
        except ResourceError as e:
            self._report_error(e.message)
            return
        self._set_state(TurnState.LISTENING)

    async def _finish_turn(self):
        try:
            await self.capture.stop_listening()
        except Exception as e:
            logger.error(f"TurnController: Error stopping capture: {e}", exc_info=True)

        text = self.capture.current_transcript().strip()
        if not text:
            logger.info("TurnController: Nothing captured, back to idle")
            self._set_state(TurnState.IDLE)
            return

        self._set_state(TurnState.AWAITING_REPLY)
        self._append_turn("user", text)

        try:
            reply = await self.api_client.chat(self.simulation_id, text)
        except TrainerError as e:
            if self.state == TurnState.SCORED:
                return
            self._set_state(TurnState.IDLE)
            self._report_error(f"Could not get a reply: {e.message}")
            return

        if self.state == TurnState.SCORED:
            logger.info("TurnController: Reply arrived after scoring, ignored")
            return

        # Shown before playback starts
        self._append_turn("assistant", reply)
        self._set_state(TurnState.SPEAKING)

        outcome = await self.player.play(reply)
        logger.debug(f"TurnController: Playback finished ({outcome})")
        if self.state == TurnState.SPEAKING:
            self._set_state(TurnState.IDLE)

    async def end_simulation(self, confirmed: bool) -> Optional[Dict[str, Any]]:
        """
        Scores the simulation. Only from Idle and only when the user confirmed.
        Returns the scored simulation, or None when nothing happened.
        """
        if self.state != TurnState.IDLE:
            logger.debug(f"TurnController: End ignored in {self.state.value}")
            return None
        if not confirmed:
            return None

        self._set_state(TurnState.SCORED)
        try:
            self.result = await self.api_client.score(self.simulation_id)
        except TrainerError as e:
            self._set_state(TurnState.IDLE)
            self._report_error(f"Scoring failed: {e.message}")
            return None

        self.player.stop_current()
        logger.info(f"TurnController: Simulation {self.simulation_id} scored {self.result.get('score')}")
        return self.result
