"""Shared fixtures: a real SQLite database, fake adapters, and an ASGI client.

The app's lifespan is not run under ASGITransport, so the ``client``
fixture wires ``app.state`` itself with the fakes below.
"""

from __future__ import annotations

from collections.abc import Sequence

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app, init_app_state
from app.models.contracts import ProductFacts, ReviewResult
from app.models.db import Base
from app.utils.database import create_engine, create_sessionmaker

USER_UUID = "7f1c2d9e-4b3a-4e8f-9a61-0c5d2e7b8a10"
OTHER_UUID = "0a9b8c7d-6e5f-4a3b-8c2d-1e0f9a8b7c6d"


class FakeExtractor:
    """Returns ``default`` unless ``results`` has an entry (value or exception) for the URL."""

    def __init__(self) -> None:
        self.default: ProductFacts | None = ProductFacts(
            name="Walnut Standing Desk",
            price="$499.00",
            brand="Deskly",
            color="Walnut",
            dimensions='48" x 30"',
            description="Electric sit-stand desk.",
        )
        self.results: dict[str, ProductFacts | BaseException | None] = {}
        self.calls: list[str] = []

    async def extract(self, url: str) -> ProductFacts | None:
        self.calls.append(url)
        result = self.results.get(url, self.default)
        if isinstance(result, BaseException):
            raise result
        return result


class FakeSearcher:
    def __init__(self) -> None:
        self.reviews: list[ReviewResult] = [
            ReviewResult(
                url="https://www.reddit.com/r/desks/comments/abc",
                title="Six months with the Walnut desk",
                snippet="Sturdy, motor is quiet.",
                source="reddit",
            )
        ]
        self.error: BaseException | None = None
        self.calls: list[str] = []

    async def search(self, product_name: str) -> list[ReviewResult]:
        self.calls.append(product_name)
        if self.error is not None:
            raise self.error
        return list(self.reviews)


class FakeReportGenerator:
    model = "gemini-test"

    def __init__(self) -> None:
        self.content = "<h2>Executive Summary</h2><p>Buy the walnut desk.</p>"
        self.error: BaseException | None = None
        self.calls: list[list[str | None]] = []

    async def generate(self, products: Sequence) -> str:
        self.calls.append([p.name for p in products])
        if self.error is not None:
            raise self.error
        return self.content


@pytest.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine):
    return create_sessionmaker(engine)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def searcher() -> FakeSearcher:
    return FakeSearcher()


@pytest.fixture
def report_generator() -> FakeReportGenerator:
    return FakeReportGenerator()


@pytest.fixture
async def client(engine, extractor, searcher, report_generator):
    init_app_state(
        app,
        engine=engine,
        extractor=extractor,
        searcher=searcher,
        report_generator=report_generator,
    )
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    await app.state.task_runner.drain()


@pytest.fixture
def runner(client):
    """The task runner of the app wired by ``client``; drain it to finish enrichment."""
    return app.state.task_runner


@pytest.fixture
async def headers(client) -> dict[str, str]:
    resp = await client.post("/api/users/init", json={"uuid": USER_UUID})
    assert resp.status_code == 200
    return {"X-User-UUID": USER_UUID}


@pytest.fixture
async def other_headers(client) -> dict[str, str]:
    resp = await client.post("/api/users/init", json={"uuid": OTHER_UUID})
    assert resp.status_code == 200
    return {"X-User-UUID": OTHER_UUID}


@pytest.fixture
async def cart_id(client, headers) -> int:
    resp = await client.post("/api/carts", json={"name": "Desks"}, headers=headers)
    assert resp.status_code == 200
    return resp.json()["data"]["id"]
