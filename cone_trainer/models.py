from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)


class Section(BaseModel):
    name: str
    score: int
    feedback: str = ""


class Feedback(WireModel):
    total_score: int = Field(alias="totalScore")
    sections: List[Section] = []
    strengths: List[str] = []
    improvements: List[str] = []
    incorrect_claims: List[str] = Field(default_factory=list, alias="incorrectClaims")


class Simulation(WireModel):
    id: int
    user_name: str = Field(alias="userName")
    score: Optional[int] = None
    feedback: Optional[Feedback] = None
    status: str  # "in_progress" | "complete"
    created_at: str = Field(alias="createdAt")


class Transcript(WireModel):
    id: int
    simulation_id: int = Field(alias="simulationId")
    role: str  # "user" | "assistant"
    content: str
    timestamp: str


class SimulationDetail(BaseModel):
    simulation: Simulation
    transcripts: List[Transcript]


class SimulationExport(Simulation):
    transcripts: List[Transcript] = []


class CreateSimulationRequest(WireModel):
    user_name: str = Field(alias="userName", min_length=1)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    message: str


class TTSRequest(WireModel):
    text: str
    voice_id: Optional[str] = Field(default=None, alias="voiceId")
