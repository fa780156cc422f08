from typing import Dict, List, Tuple
import asyncio
import logging
import os
import time

from .database import Database, Simulation, Transcript
from .errors import CollaboratorError, NotFoundError
from .persona_prompts import GREETING

logger = logging.getLogger(__name__)

JUDGE_TIMEOUT_SEC = float(os.getenv("JUDGE_TIMEOUT_SEC", "90"))


def _turns(transcripts: List[Transcript]) -> List[Dict[str, str]]:
    return [{"role": entry.role, "content": entry.content} for entry in transcripts]


class Orchestrator:
    """
    Server side of a simulation: session creation, one reply per chat request,
    and the scoring pass.
    """

    def __init__(self, database: Database, llm, judge, report_client=None,
                 judge_timeout_sec: float = None):
        self.database = database
        self.llm = llm
        self.judge = judge
        self.report_client = report_client
        self.judge_timeout_sec = judge_timeout_sec or JUDGE_TIMEOUT_SEC

    async def _require_simulation(self, simulation_id: int) -> Simulation:
        simulation = await self.database.get_simulation(simulation_id)
        if simulation is None:
            raise NotFoundError(f"Simulation {simulation_id} not found")
        return simulation

    async def start_simulation(self, user_name: str) -> Simulation:
        """New simulation whose first turn is the surgeon's greeting"""
        simulation = await self.database.create_simulation(user_name, greeting=GREETING)
        logger.info(f"Orchestrator: Simulation {simulation.id} started for '{simulation.user_name}'")
        return simulation

    async def get_simulation(self, simulation_id: int) -> Tuple[Simulation, List[Transcript]]:
        simulation = await self._require_simulation(simulation_id)
        transcripts = await self.database.get_transcripts(simulation_id)
        return simulation, transcripts

    async def chat(self, simulation_id: int, message: str) -> str:
        """
        Persists the rep's turn, asks the model for the surgeon's reply and
        persists it. A failed reply leaves the rep's turn stored.
        """
        await self._require_simulation(simulation_id)
        await self.database.add_transcript(simulation_id, "user", message)

        history = _turns(await self.database.get_transcripts(simulation_id))
        start = time.time()
        try:
            reply = await self.llm.generate_reply(history)
        except CollaboratorError:
            logger.error(f"Orchestrator: Reply failed for simulation {simulation_id}, user turn kept")
            raise

        await self.database.add_transcript(simulation_id, "assistant", reply)
        logger.info(f"Orchestrator: Simulation {simulation_id} reply in {time.time() - start:.3f}s")
        return reply

    async def score_simulation(self, simulation_id: int) -> Simulation:
        """
        Scores the full ordered transcript and stores score + feedback.
        Calling it again overwrites the previous result.
        """
        simulation = await self._require_simulation(simulation_id)
        turns = _turns(await self.database.get_transcripts(simulation_id))

        start = time.time()
        try:
            feedback = await asyncio.wait_for(
                asyncio.to_thread(self.judge.evaluate, turns),
                timeout=self.judge_timeout_sec,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Orchestrator: Judge timed out after {self.judge_timeout_sec}s for simulation {simulation_id}")
            raise CollaboratorError("judge", f"timed out after {self.judge_timeout_sec:.0f}s") from e

        score = feedback["totalScore"]
        simulation = await self.database.update_simulation_score(simulation_id, score, feedback)
        logger.info(
            f"Orchestrator: Simulation {simulation_id} scored {score} "
            f"in {time.time() - start:.3f}s"
        )

        if self.report_client is not None:
            self.report_client.dispatch_report(simulation.user_name, score, feedback, turns)
        return simulation
