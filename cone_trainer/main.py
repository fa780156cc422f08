from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.websockets import WebSocketState
from dotenv import load_dotenv, find_dotenv
from typing import List, Optional, Set
import asyncio
import logging
import os

load_dotenv(find_dotenv())

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)

from .components.context import Context
from .components.database import Database
from .components.errors import CollaboratorError, NotFoundError, ValidationError
from .components.llm import LLM
from .components.orchestrator import Orchestrator
from .components.report_client import ReportClient
from .components.stt_client import DeepgramStream, STTClient
from .components.tts_client import TTSClient
from .llm_judge.judge import LLMJudge
from .models import (
    ChatRequest,
    ChatResponse,
    CreateSimulationRequest,
    Simulation,
    SimulationDetail,
    SimulationExport,
    TTSRequest,
)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

app = FastAPI(title="Universal Cone Challenge Trainer")

# CORS middleware for frontend communication
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize components
database = Database()
context = Context()
llm = LLM(context=context)
judge = LLMJudge()
tts = TTSClient()
stt = STTClient()
report_client = ReportClient()
orchestrator = Orchestrator(database=database, llm=llm, judge=judge, report_client=report_client)

# Track active transcription WebSocket connections
active_transcription_sockets: Set[WebSocket] = set()


@app.on_event("startup")
async def startup():
    """Initialize services on startup"""
    logger.info("Starting services...")
    try:
        await database.initialize()
        logger.info(
            f"Services initialized (llm: {llm.provider}, judge: {judge.backend_name}, "
            f"tts: {'on' if tts.configured else 'off'}, stt: {'on' if stt.configured else 'off'})"
        )
    except Exception as e:
        logger.error(f"Error initializing services: {str(e)}", exc_info=True)
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown"""
    await report_client.close()
    await database.close()
    await tts.close()


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    return JSONResponse(
        status_code=400,
        content={"message": first.get("msg", "Invalid request"), "field": ".".join(location) or None},
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"message": exc.message, "field": exc.field})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"message": exc.message})


@app.exception_handler(CollaboratorError)
async def collaborator_error_handler(request: Request, exc: CollaboratorError):
    logger.error(f"Collaborator failure on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=502, content={"message": exc.message})


@app.get("/")
async def root():
    return {"message": "Universal Cone Challenge Trainer API", "status": "running"}


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "database": database._initialized,
        "llm": {"provider": llm.provider, "model": llm.model, "available": llm.available},
        "judge": judge.backend_name,
        "tts": {"configured": tts.configured, "cache_size": len(tts.cache)},
        "stt": {"configured": stt.configured, "active_connections": len(active_transcription_sockets)},
        "reports": report_client.configured,
    }


@app.post("/api/simulations", response_model=Simulation, status_code=201)
async def create_simulation(request: CreateSimulationRequest):
    simulation = await orchestrator.start_simulation(request.user_name)
    return simulation.to_dict()


@app.get("/api/simulations", response_model=List[Simulation])
async def list_simulations():
    return [simulation.to_dict() for simulation in await database.list_simulations()]


# Fixed paths before /api/simulations/{simulation_id}
@app.get("/api/simulations/export", response_model=List[SimulationExport])
async def export_simulations():
    exported = await database.export_simulations()
    return [
        {**simulation.to_dict(), "transcripts": [entry.to_dict() for entry in transcripts]}
        for simulation, transcripts in exported
    ]


@app.get("/api/simulations/top10", response_model=List[Simulation])
async def top_simulations():
    return [simulation.to_dict() for simulation in await database.top_simulations(limit=10)]


@app.get("/api/simulations/{simulation_id}", response_model=SimulationDetail)
async def get_simulation(simulation_id: int):
    simulation, transcripts = await orchestrator.get_simulation(simulation_id)
    return {
        "simulation": simulation.to_dict(),
        "transcripts": [entry.to_dict() for entry in transcripts],
    }


@app.post("/api/simulations/{simulation_id}/chat", response_model=ChatResponse)
async def chat(simulation_id: int, request: ChatRequest):
    reply = await orchestrator.chat(simulation_id, request.message)
    return {"message": reply}


@app.post("/api/simulations/{simulation_id}/score", response_model=Simulation)
async def score_simulation(simulation_id: int):
    simulation = await orchestrator.score_simulation(simulation_id)
    return simulation.to_dict()


@app.post("/api/tts")
async def text_to_speech(request: TTSRequest):
    """MP3 audio for the text"""
    try:
        audio = await tts.synthesize(request.text, voice_id=request.voice_id)
    except CollaboratorError as e:
        logger.error(f"TTS failed: {e.message}")
        return JSONResponse(status_code=500, content={"message": "Failed to generate speech"})
    return Response(content=audio, media_type="audio/mpeg")


@app.delete("/api/tts/cache")
async def clear_tts_cache():
    return {"cleared": tts.clear_cache()}


async def relay_client_to_deepgram(websocket: WebSocket, stream: DeepgramStream):
    """Forward binary audio frames from the client to Deepgram"""
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.info("Transcription client disconnected")
                break
            if message.get("bytes"):
                await stream.send_audio(message["bytes"])
            elif message.get("text"):
                logger.debug(f"Ignoring text frame from transcription client: {message['text'][:100]}")
    except WebSocketDisconnect:
        logger.info("Transcription client disconnected")
    except Exception as e:
        logger.error(f"Error in client->deepgram relay: {e}", exc_info=True)


async def relay_deepgram_to_client(stream: DeepgramStream, websocket: WebSocket):
    """Forward transcript and error events from Deepgram to the client"""
    try:
        async for event in stream.events():
            await websocket.send_json(event)
    except WebSocketDisconnect:
        logger.info("Transcription client gone while relaying")
    except Exception as e:
        logger.error(f"Error in deepgram->client relay: {e}", exc_info=True)


@app.websocket("/ws/transcribe")
async def transcribe_websocket(websocket: WebSocket, encoding: Optional[str] = None,
                               sample_rate: Optional[int] = None):
    """
    Streamed transcription proxy.
    Client frames: raw audio chunks. Server frames: {"type": "connected"},
    {"type": "transcript", "text", "isFinal"}, {"type": "error", "message"}.
    """
    await websocket.accept()

    if not stt.configured:
        logger.error("DEEPGRAM_API_KEY not found")
        await websocket.close(code=1008, reason="Deepgram API key not configured")
        return

    active_transcription_sockets.add(websocket)
    logger.info(f"Transcription client connected (total: {len(active_transcription_sockets)})")
    stream = None
    try:
        try:
            stream = await stt.open_stream(encoding=encoding, sample_rate=sample_rate)
        except CollaboratorError as e:
            await websocket.send_json({"type": "error", "message": e.message})
            return

        await websocket.send_json({"type": "connected"})

        client_task = asyncio.create_task(relay_client_to_deepgram(websocket, stream))
        upstream_task = asyncio.create_task(relay_deepgram_to_client(stream, websocket))

        # Either side finishing ends the session
        done, pending = await asyncio.wait(
            [client_task, upstream_task],
            return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        active_transcription_sockets.discard(websocket)
        if stream is not None:
            try:
                await stream.finish()
            except Exception as e:
                logger.warning(f"Error finishing Deepgram stream: {e}")
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
        logger.info("Transcription connection closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("cone_trainer.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
