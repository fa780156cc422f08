import json
import logging

from ..rubric import RUBRIC

logger = logging.getLogger(__name__)


class MockBackend:
    """
    Offline backend for local runs: returns a deterministic judge answer.
    """
    def __init__(self, model_name: str = "mock"):
        self.model_name = model_name
        logger.info("MockBackend initialized")

    def generate(self, prompt: str, system_prompt: str = "", max_retries: int = 1) -> str:
        _ = prompt, system_prompt
        sections = [
            {"name": dimension.name, "score": 14, "feedback": f"Acceptable coverage of {dimension.focus}."}
            for dimension in RUBRIC
        ]
        # A JSON string, so the parser goes through the same path as a real answer
        return json.dumps(
            {
                "totalScore": sum(section["score"] for section in sections),
                "sections": sections,
                "strengths": ["Kept the conversation focused on the surgeon's workflow."],
                "improvements": ["Quantify the tray reduction and the per-case savings."],
                "incorrect_or_risky_claims": [],
            }
        )
