import random
import sys
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from gamemaster.core.config import get_settings
from gamemaster.db.base import create_engine, create_sessionmaker, init_db
from gamemaster.main import create_app
from gamemaster.memory.embedder import DeterministicEmbedder, Embedder, EmbeddingError
from gamemaster.providers.base import LLMResult, ProviderRuntimeConfig
from gamemaster.services.game_tools import GameToolService
from gamemaster.services.memory_service import MemoryService
from gamemaster.workflow.types import Environment, NpcState, SceneSnapshot, TurnContext


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_gamemaster.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("LLM_PROVIDER", "mock")
    monkeypatch.setenv("EMBED_PROVIDER", "deterministic")
    monkeypatch.setenv("DICE_SEED", "7")
    get_settings.cache_clear()
    app = create_app()
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.engine.dispose()


@pytest.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'memory.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def memory_service(sessionmaker):
    return MemoryService(sessionmaker=sessionmaker, embedder=DeterministicEmbedder(dimension=64))


@pytest.fixture
def scene():
    return SceneSnapshot(
        description="A narrow cave mouth",
        player_status=("frightened",),
        npcs=(NpcState(name="Goblin", role="enemy", status=("hostile",)),),
        environment=Environment(location="Cave", time_of_day="dusk", weather="rain"),
    )


@pytest.fixture
def make_context(scene):
    def _make(action: str, campaign_id: str = "camp-1") -> TurnContext:
        return TurnContext(
            campaign_id=campaign_id,
            player_id="player-1",
            action=action,
            scene=scene,
        )

    return _make


class FixedEmbedder(Embedder):
    """Embedder returning hand-picked vectors so similarity is exact in tests."""

    provider = "fixed"

    def __init__(self, vectors: dict[str, list[float]], default: Sequence[float]) -> None:
        self.model_name = "fixed-v1"
        self.dimension = len(default)
        self._vectors = vectors
        self._default = list(default)

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [list(self._vectors.get(text.strip(), self._default)) for text in texts]


class FailingEmbedder(Embedder):
    """Embedder whose provider is always down."""

    provider = "failing"
    model_name = "failing-v1"
    dimension = 8

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        raise EmbeddingError("embedding provider unavailable")


class ScriptedRandom(random.Random):
    """Random whose randint replays a fixed script, then falls back to 1."""

    def __init__(self, values: Sequence[int]) -> None:
        super().__init__(0)
        self._values = list(values)

    def randint(self, a: int, b: int) -> int:
        if self._values:
            return self._values.pop(0)
        return a


class StubAdapter:
    """Adapter stub returning queued responses, or raising queued errors."""

    def __init__(self, responses: Sequence[object] = ()) -> None:
        self._responses = list(responses)
        self.calls: list[list[dict]] = []

    async def generate(self, cfg: ProviderRuntimeConfig, messages: list[dict]) -> LLMResult:
        self.calls.append(messages)
        if not self._responses:
            raise RuntimeError("no scripted response")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResult(
            content=str(response),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=1,
            token_out=1,
        )


@pytest.fixture
def tools_factory(memory_service):
    def _make(rolls: Sequence[int] = (), memory: MemoryService | None = None) -> GameToolService:
        return GameToolService(memory or memory_service, rng=ScriptedRandom(rolls))

    return _make


@pytest.fixture
def make_adapter():
    return StubAdapter


@pytest.fixture
def make_embedder():
    return FixedEmbedder


@pytest.fixture
def offline_memory_service(sessionmaker):
    return MemoryService(sessionmaker=sessionmaker, embedder=FailingEmbedder())
