from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, ForeignKey, Integer, String, Text, DateTime, JSON, select
from datetime import datetime, timezone
import os
import logging
from typing import Dict, List, Optional, Tuple

from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

Base = declarative_base()

TRANSCRIPT_ROLES = ("user", "assistant")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite drops tzinfo on read; stored values are UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Simulation(Base):
    """One simulation run by one participant"""
    __tablename__ = "simulations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_name = Column(Text, nullable=False)
    score = Column(Integer, nullable=True)
    feedback = Column(JSON, nullable=True)  # Structured feedback, set together with score
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    @property
    def status(self) -> str:
        return "in_progress" if self.score is None else "complete"

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "userName": self.user_name,
            "score": self.score,
            "feedback": self.feedback,
            "status": self.status,
            "createdAt": _isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Simulation(id={self.id}, user_name={self.user_name}, score={self.score})>"


class Transcript(Base):
    """One role-tagged utterance of a simulation"""
    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    simulation_id = Column(Integer, ForeignKey("simulations.id"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # 'user' | 'assistant'
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "simulationId": self.simulation_id,
            "role": self.role,
            "content": self.content,
            "timestamp": _isoformat(self.timestamp),
        }

    def __repr__(self):
        return f"<Transcript(id={self.id}, simulation_id={self.simulation_id}, role={self.role})>"


class Database:
    """Database connection and simulation/transcript operations"""

    def __init__(self, database_url: str = None):
        self.database_url = database_url
        self.engine = None
        self.async_session = None
        self._initialized = False

    async def initialize(self):
        """Initialize database connection and create tables"""
        if self._initialized:
            return

        database_url = self.database_url or os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./cone_trainer.db")

        # Convert postgresql:// to postgresql+asyncpg:// if needed
        if database_url.startswith("postgresql://"):
            database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

        engine_kwargs = {"echo": False}
        if not database_url.startswith("sqlite"):
            engine_kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)

        logger.info("Database: Connecting to database...")
        try:
            self.engine = create_async_engine(database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True
            logger.info("Database: Initialized successfully")
        except Exception as e:
            logger.error(f"Database: Failed to initialize: {str(e)}", exc_info=True)
            raise

    async def close(self):
        """Close database connection"""
        if self.engine:
            await self.engine.dispose()
            self._initialized = False
            logger.info("Database: Connection closed")

    def _require_initialized(self):
        if not self._initialized:
            raise RuntimeError("Database not initialized")

    async def create_simulation(self, user_name: str, greeting: Optional[str] = None) -> Simulation:
        """
        Create a simulation; the greeting, if given, is stored as its first
        (assistant) transcript in the same transaction.
        """
        self._require_initialized()
        if not user_name or not user_name.strip():
            raise ValidationError("userName must not be empty", field="userName")

        async with self.async_session() as session:
            simulation = Simulation(user_name=user_name.strip())
            session.add(simulation)
            await session.flush()
            if greeting:
                session.add(Transcript(simulation_id=simulation.id, role="assistant", content=greeting))
            await session.commit()
            logger.info(f"Database: Created simulation {simulation.id} for '{simulation.user_name}'")
            return simulation

    async def get_simulation(self, simulation_id: int) -> Optional[Simulation]:
        self._require_initialized()
        async with self.async_session() as session:
            return await session.get(Simulation, simulation_id)

    async def add_transcript(self, simulation_id: int, role: str, content: str) -> Transcript:
        """Append one turn to a simulation"""
        self._require_initialized()
        if role not in TRANSCRIPT_ROLES:
            raise ValidationError(f"role must be one of {TRANSCRIPT_ROLES}", field="role")
        if not content or not content.strip():
            raise ValidationError("content must not be empty", field="content")

        async with self.async_session() as session:
            if await session.get(Simulation, simulation_id) is None:
                raise NotFoundError(f"Simulation {simulation_id} not found")
            entry = Transcript(simulation_id=simulation_id, role=role, content=content)
            session.add(entry)
            await session.commit()
            logger.debug(f"Database: Added {role} transcript {entry.id} to simulation {simulation_id}")
            return entry

    async def get_transcripts(self, simulation_id: int) -> List[Transcript]:
        """Turns of a simulation in insertion order"""
        self._require_initialized()
        async with self.async_session() as session:
            query = (
                select(Transcript)
                .where(Transcript.simulation_id == simulation_id)
                .order_by(Transcript.timestamp, Transcript.id)
            )
            result = await session.execute(query)
            return list(result.scalars().all())

    async def update_simulation_score(self, simulation_id: int, score: int, feedback: Dict) -> Simulation:
        """Set score and feedback together; a repeated call overwrites"""
        self._require_initialized()
        async with self.async_session() as session:
            simulation = await session.get(Simulation, simulation_id)
            if simulation is None:
                raise NotFoundError(f"Simulation {simulation_id} not found")
            simulation.score = score
            simulation.feedback = feedback
            await session.commit()
            logger.info(f"Database: Scored simulation {simulation_id}: {score}")
            return simulation

    async def list_simulations(self) -> List[Simulation]:
        self._require_initialized()
        async with self.async_session() as session:
            query = select(Simulation).order_by(Simulation.created_at.desc(), Simulation.id.desc())
            result = await session.execute(query)
            return list(result.scalars().all())

    async def export_simulations(self) -> List[Tuple[Simulation, List[Transcript]]]:
        """Every simulation with its transcripts, newest simulation first"""
        simulations = await self.list_simulations()
        async with self.async_session() as session:
            query = select(Transcript).order_by(Transcript.simulation_id, Transcript.timestamp, Transcript.id)
            result = await session.execute(query)
            by_simulation: Dict[int, List[Transcript]] = {}
            for entry in result.scalars().all():
                by_simulation.setdefault(entry.simulation_id, []).append(entry)
        return [(simulation, by_simulation.get(simulation.id, [])) for simulation in simulations]

    async def top_simulations(self, limit: int = 10) -> List[Simulation]:
        """Scored simulations by score desc; id asc breaks ties"""
        self._require_initialized()
        async with self.async_session() as session:
            query = (
                select(Simulation)
                .where(Simulation.score.is_not(None))
                .order_by(Simulation.score.desc(), Simulation.id.asc())
                .limit(limit)
            )
            result = await session.execute(query)
            return list(result.scalars().all())
