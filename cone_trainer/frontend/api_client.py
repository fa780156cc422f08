import httpx
import logging
import os
from typing import Any, Dict, List

from ..components.errors import CollaboratorError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")


class SimulationClient:
    """HTTP client for the trainer API"""

    def __init__(self, base_url: str = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = (base_url or API_BASE_URL).rstrip("/")
        timeout = httpx.Timeout(120.0, connect=10.0)
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @property
    def transcribe_url(self) -> str:
        """WebSocket URL of the streamed transcription channel"""
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws/transcribe"
        return "ws://" + self.base_url.split("://", 1)[-1] + "/ws/transcribe"

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"SimulationClient: {method} {path} failed: {e}")
            raise CollaboratorError("api", str(e)) from e

        if response.status_code < 400:
            return response

        message = _error_message(response)
        if response.status_code == 404:
            raise NotFoundError(message)
        if response.status_code == 400:
            field = None
            try:
                field = response.json().get("field")
            except ValueError:
                pass
            raise ValidationError(message, field=field)
        logger.error(f"SimulationClient: {method} {path} -> {response.status_code}: {message}")
        raise CollaboratorError("api", message)

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        response = await self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"SimulationClient: {method} {path} returned a non-JSON body")
            raise CollaboratorError("api", f"invalid response from {path}") from e

    async def create_simulation(self, user_name: str) -> Dict[str, Any]:
        return await self._json("POST", "/api/simulations", json={"userName": user_name})

    async def get_simulation(self, simulation_id: int) -> Dict[str, Any]:
        """{"simulation": {...}, "transcripts": [...]}"""
        return await self._json("GET", f"/api/simulations/{simulation_id}")

    async def chat(self, simulation_id: int, message: str) -> str:
        body = await self._json("POST", f"/api/simulations/{simulation_id}/chat", json={"message": message})
        reply = body.get("message") if isinstance(body, dict) else None
        if not isinstance(reply, str):
            logger.error(f"SimulationClient: Chat response without a message: {str(body)[:200]}")
            raise CollaboratorError("api", "chat response without a message")
        return reply

    async def score(self, simulation_id: int) -> Dict[str, Any]:
        return await self._json("POST", f"/api/simulations/{simulation_id}/score")

    async def tts(self, text: str, voice_id: str = None) -> bytes:
        payload = {"text": text}
        if voice_id:
            payload["voiceId"] = voice_id
        response = await self._request("POST", "/api/tts", json=payload)
        return response.content

    async def list_simulations(self) -> List[Dict[str, Any]]:
        return await self._json("GET", "/api/simulations")

    async def export_simulations(self) -> List[Dict[str, Any]]:
        return await self._json("GET", "/api/simulations/export")

    async def top_simulations(self) -> List[Dict[str, Any]]:
        return await self._json("GET", "/api/simulations/top10")

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or f"HTTP {response.status_code}")
    return f"HTTP {response.status_code}"
