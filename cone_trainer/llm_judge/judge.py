import logging
from typing import Any, Dict, List

from ..components.errors import CollaboratorError
from .backends import create_backend
from .parser import parse_llm_response
from .prompt_builder import JUDGE_SYSTEM_PROMPT, build_evaluate_prompt

logger = logging.getLogger(__name__)


class LLMJudge:
    """
    Scores a finished simulation against the truth set and the rubric.

    Important points:
    - The backend computes the per-section scores and the total.
    - This class only validates and normalizes the shape of the answer.
    - A backend failure is raised; a malformed answer is not (it becomes the
      zero feedback).
    """

    def __init__(self, backend=None):
        self.backend = backend or create_backend()
        self.backend_name = type(self.backend).__name__

    def evaluate(self, transcript: List[Dict[str, str]]) -> Dict[str, Any]:
        """
        Args:
            transcript: ordered turns [{"role": "user"|"assistant", "content": "..."}]

        Returns:
            Normalized feedback {totalScore, sections, strengths, improvements, incorrectClaims}
        """
        prompt = build_evaluate_prompt(transcript)

        logger.info(
            f"LLMJudge: Evaluating {len(transcript)} turns with {self.backend_name} "
            f"(model: {getattr(self.backend, 'model_name', 'unknown')})"
        )
        try:
            raw_response = self.backend.generate(prompt, system_prompt=JUDGE_SYSTEM_PROMPT)
        except CollaboratorError:
            raise
        except Exception as e:
            logger.error(f"LLMJudge: Backend failed: {e}", exc_info=True)
            raise CollaboratorError("judge", str(e)) from e

        feedback = parse_llm_response(raw_response)
        parse_error = feedback.pop("error", None)
        if parse_error:
            logger.warning(f"LLMJudge: Answer normalized to defaults ({parse_error})")

        logger.info(
            f"LLMJudge: totalScore={feedback['totalScore']}, "
            f"sections={len(feedback['sections'])}, "
            f"incorrectClaims={len(feedback['incorrectClaims'])}"
        )
        return feedback
