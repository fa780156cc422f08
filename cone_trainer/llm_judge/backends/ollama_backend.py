import logging
import os
import time
from typing import Optional

import ollama

from ...components.errors import CollaboratorError

logger = logging.getLogger(__name__)


class OllamaBackend:
    """
    Judge backend for a local Ollama model.
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        base_url: Optional[str] = None
    ):
        self.model_name = model_name or os.getenv("OLLAMA_MODEL", "llama3.2")
        self.base_url = base_url or os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
        self.client = ollama.Client(host=self.base_url)

        logger.info(f"OllamaBackend: Initialized with model {self.model_name}, base_url: {self.base_url}")

    def generate(self, prompt: str, system_prompt: str = "", max_retries: int = 2) -> str:
        """
        Generates the judge answer through Ollama.

        Args:
            prompt: full scoring prompt
            system_prompt: judge instructions
            max_retries: attempts before giving up

        Returns:
            Raw text answer

        Raises:
            CollaboratorError: if every attempt failed
        """
        for attempt in range(1, max_retries + 1):
            try:
                logger.debug(f"OllamaBackend: Attempt {attempt}, sending prompt")
                response = self.client.generate(
                    model=self.model_name,
                    prompt=prompt,
                    system=system_prompt,
                    format="json",
                    options={
                        "temperature": 0.2,
                        "num_predict": 2048,
                        "top_p": 0.95,
                    }
                )
                raw_text = response["response"].strip()
                logger.debug(f"OllamaBackend: Received answer ({len(raw_text)} chars)")
                return raw_text

            except Exception as e:
                logger.warning(f"OllamaBackend: Error on attempt {attempt}: {e}")
                if attempt == max_retries:
                    raise CollaboratorError("judge", f"Ollama did not answer after {max_retries} attempts") from e
                time.sleep(1)
