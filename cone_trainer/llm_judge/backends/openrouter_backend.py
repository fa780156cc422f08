import logging
import os
from typing import Optional

import httpx

from ...components.errors import CollaboratorError

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")


class OpenRouterBackend:
    """Judge backend calling an OpenRouter chat completion"""

    def __init__(
        self,
        model_name: Optional[str] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.model_name = model_name or os.getenv("OPENROUTER_MODEL", "anthropic/claude-sonnet-4")
        self.api_key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
        self.timeout_sec = float(timeout_sec or os.getenv("JUDGE_TIMEOUT_SEC", "90"))
        logger.info(f"OpenRouterBackend: Initialized with model {self.model_name}")

    def generate(self, prompt: str, system_prompt: str = "", max_retries: int = 2) -> str:
        # Fail fast with a clear message instead of sending an empty key and getting 401
        if not self.api_key:
            raise CollaboratorError("judge", "OPENROUTER_API_KEY is not set")

        url = f"{OPENROUTER_BASE_URL}/chat/completions"

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "Cone Challenge Trainer",
        }

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model_name,
            "messages": messages,
            "temperature": 0.2,
            "max_tokens": 4096,
        }

        last_err = None
        for attempt in range(1, max_retries + 1):
            try:
                with httpx.Client(timeout=self.timeout_sec) as client:
                    r = client.post(url, headers=headers, json=payload)
                r.raise_for_status()
                data = r.json()
                return (data["choices"][0]["message"]["content"] or "").strip()
            except Exception as e:
                last_err = e
                logger.warning("OpenRouter error attempt %s/%s: %s", attempt, max_retries, e)
        raise CollaboratorError("judge", f"OpenRouter failed after {max_retries} attempts: {last_err}")
