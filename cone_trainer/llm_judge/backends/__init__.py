import logging
import os

logger = logging.getLogger(__name__)


def create_backend(name: str = None):
    """
    Builds the judge backend selected by JUDGE_BACKEND
    ("openrouter" when an OpenRouter key is set, otherwise "mock").
    """
    name = (name or os.getenv("JUDGE_BACKEND") or ("openrouter" if os.getenv("OPENROUTER_API_KEY") else "mock")).lower().strip()
    logger.info(f"Judge backend: {name}")

    if name == "openrouter":
        from .openrouter_backend import OpenRouterBackend
        return OpenRouterBackend()
    if name == "ollama":
        from .ollama_backend import OllamaBackend
        return OllamaBackend()
    if name == "mock":
        from .mock_backend import MockBackend
        return MockBackend()
    raise ValueError(f"Unknown judge backend '{name}'. Use 'openrouter', 'ollama' or 'mock'")
