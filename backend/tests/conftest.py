from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Generator, Optional

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/app` is importable as top-level `app` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import app.models  # noqa: E402,F401
from app.core.base import Base  # noqa: E402
from app.core.db import create_session_factory  # noqa: E402
from app.repositories.ingestion_repo import IngestionRepository  # noqa: E402
from app.security.auth import sign_jwt  # noqa: E402
from app.services.dispatcher import InlineDispatcher  # noqa: E402
from ingestion.core.config import IngestionSettings  # noqa: E402
from ingestion.core.extractor import GeminiClient, ImageSafetyFinder, SlotExtractor  # noqa: E402
from ingestion.core.pipeline import IngestionPipeline  # noqa: E402


GEMINI_HOST = "generativelanguage.googleapis.com"
SEARCH_HOST = "www.google.com"


async def no_sleep(_seconds: float) -> None:
    return None


def gemini_reply(text: str, tokens: int = 42) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "candidates": [{"content": {"parts": [{"text": text}]}}],
            "usageMetadata": {"totalTokenCount": tokens},
        },
    )


class FakeUpstream:
    """Scripted stand-in for Gemini, the image search page and image hosts.

    text_replies: queue of dict (model JSON), str (raw model text) or int
    (HTTP status). An empty queue answers 500.
    vision_replies: queue of verdict dicts; an empty queue answers safe.
    """

    def __init__(self) -> None:
        self.text_replies: list[Any] = []
        self.vision_replies: list[Any] = []
        self.search_html = ""
        self.search_status = 200
        self.images: dict[str, tuple[int, str]] = {}
        self.text_calls: list[dict[str, Any]] = []
        self.vision_calls = 0
        self.search_calls = 0
        self.image_fetches: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == GEMINI_HOST:
            body = json.loads(request.content)
            parts = body["contents"][0]["parts"]
            if any("inlineData" in p for p in parts):
                self.vision_calls += 1
                verdict = self.vision_replies.pop(0) if self.vision_replies else {"safe": True, "reason": "ok"}
                if isinstance(verdict, int):
                    return httpx.Response(verdict, text="vision error")
                return gemini_reply(json.dumps(verdict))

            self.text_calls.append(body)
            reply = self.text_replies.pop(0) if self.text_replies else 500
            if isinstance(reply, int):
                return httpx.Response(reply, text="upstream error")
            return gemini_reply(reply if isinstance(reply, str) else json.dumps(reply))

        if host == SEARCH_HOST:
            self.search_calls += 1
            return httpx.Response(self.search_status, text=self.search_html)

        url = str(request.url)
        self.image_fetches.append(url)
        status, content_type = self.images.get(url, (404, "text/plain"))
        return httpx.Response(status, content=b"\x89PNG\r\n\x1a\n", headers={"content-type": content_type})

    def add_image_candidates(self, urls: list[str], content_type: str = "image/png") -> None:
        self.search_html = "".join(f'["{u}",300,200],' for u in urls)
        for u in urls:
            self.images[u] = (200, content_type)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture()
def settings() -> IngestionSettings:
    return IngestionSettings(gemini_api_key="test-key", batch_delay_seconds=0)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def http_client(upstream: FakeUpstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture()
def repository(session_factory: sessionmaker[Session], settings: IngestionSettings) -> IngestionRepository:
    return IngestionRepository(session_factory, settings)


def build_pipeline(
    repository: IngestionRepository,
    http_client: httpx.AsyncClient,
    settings: IngestionSettings,
    *,
    sleeps: Optional[list[float]] = None,
) -> IngestionPipeline:
    async def _sleep(seconds: float) -> None:
        if sleeps is not None:
            sleeps.append(seconds)

    client = GeminiClient(http_client, settings, sleep=_sleep)
    return IngestionPipeline(
        repository,
        SlotExtractor(client),
        ImageSafetyFinder(http_client, client, settings),
        InlineDispatcher(),
        settings,
        sleep=_sleep,
    )


@pytest.fixture()
def pipeline(
    repository: IngestionRepository, http_client: httpx.AsyncClient, settings: IngestionSettings
) -> IngestionPipeline:
    return build_pipeline(repository, http_client, settings)


def make_jwt(
    sub: str,
    role: str | None,
    secret: str,
    *,
    exp: int | None = None,
    roles: list[str] | None = None,
) -> str:
    """HS256 JWT for API tests."""
    payload: dict[str, Any] = {"sub": sub}
    if role is not None:
        payload["role"] = role
    if roles is not None:
        payload["roles"] = roles
    if exp is not None:
        payload["exp"] = exp
    return sign_jwt(payload, secret)
