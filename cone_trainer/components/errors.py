"""
Error taxonomy shared by the server and the client side.
"""
from typing import Optional


class TrainerError(Exception):
    """Base class for all trainer errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrainerError):
    """Malformed user input (user-correctable, HTTP 400)"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(TrainerError):
    """Unknown simulation id (HTTP 404)"""


class CollaboratorError(TrainerError):
    """LLM / TTS / STT / judge backend failure"""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator


class ResourceError(TrainerError):
    """Microphone or transcription channel could not be acquired"""


class DataShapeError(TrainerError):
    """Scoring collaborator returned malformed or partial JSON"""
