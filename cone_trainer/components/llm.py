from typing import Dict, List, Sequence
import logging
import os
from langchain_openai import ChatOpenAI

from .context import Context
from .errors import CollaboratorError
from .persona_prompts import FALLBACK_REPLY, clean_reply

logger = logging.getLogger(__name__)

# LLM Provider configuration
# Set LLM_PROVIDER to "ollama" or "openrouter" (default: "openrouter")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openrouter").lower()

# OpenRouter API configuration
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "anthropic/claude-sonnet-4")
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")

LLM_TIMEOUT_SEC = float(os.getenv("LLM_TIMEOUT_SEC", "30"))


class LLM:
    """Conversation model for the surgeon persona (LangChain, OpenRouter or Ollama)"""

    def __init__(self, context: Context = None):
        self.provider = LLM_PROVIDER
        self.context = context or Context()
        self.llm = None

        if self.provider == "ollama":
            from langchain_community.chat_models import ChatOllama

            self.model = OLLAMA_MODEL
            self.llm = ChatOllama(
                model=self.model,
                base_url=OLLAMA_BASE_URL,
                temperature=0.7,
                num_predict=300,  # Ollama uses num_predict instead of max_tokens
                timeout=LLM_TIMEOUT_SEC,
            )
            logger.info(f"LLM: Initialized with Ollama model {self.model} at {OLLAMA_BASE_URL}")

        elif self.provider == "openrouter":
            self.model = OPENROUTER_MODEL

            if not OPENROUTER_API_KEY:
                logger.warning("LLM: OPENROUTER_API_KEY not set. LLM will not work.")
            else:
                self.llm = ChatOpenAI(
                    model=self.model,
                    openai_api_key=OPENROUTER_API_KEY,
                    openai_api_base=OPENROUTER_BASE_URL,
                    temperature=0.7,
                    max_tokens=300,
                    timeout=LLM_TIMEOUT_SEC,
                    max_retries=1,
                )
                logger.info(f"LLM: Initialized with OpenRouter model {self.model}")
        else:
            raise ValueError(f"LLM: Unknown provider '{self.provider}'. Use 'ollama' or 'openrouter'")

    @property
    def available(self) -> bool:
        return self.llm is not None

    async def generate_reply(self, turns: Sequence[Dict[str, str]]) -> str:
        """
        Next surgeon utterance for the stored history.

        Args:
            turns: ordered [{"role": "user"|"assistant", "content": "..."}]

        Returns:
            Cleaned reply text (the fallback line when the model returns nothing)

        Raises:
            CollaboratorError: model not configured or the request failed
        """
        if not self.llm:
            raise CollaboratorError("llm", "language model is not configured")

        messages = self.context.to_messages(turns)
        logger.info(f"LLM: Generating reply (turns: {len(turns)}, provider: {self.provider})")

        try:
            response = await self.llm.ainvoke(messages)
        except Exception as e:
            logger.error(f"LLM: Error generating reply: {str(e)}", exc_info=True)
            raise CollaboratorError("llm", str(e)) from e

        reply = clean_reply(_message_text(response.content))
        if not reply:
            logger.warning("LLM: Empty reply, using fallback line")
            return FALLBACK_REPLY

        logger.info(f"LLM: Reply ({len(reply)} chars): {reply[:80]}")
        return reply


def _message_text(content) -> str:
    # Some providers return a list of content blocks instead of a string
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)
