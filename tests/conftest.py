"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import AsyncIterator


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where
# ``movie_catalog`` sits at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402

from movie_catalog.config import Settings  # noqa: E402
from movie_catalog.database import Database  # noqa: E402
from movie_catalog.errors import UpstreamUnavailableError  # noqa: E402
from movie_catalog.services.omdb import (  # noqa: E402
    OMDBDetails,
    OMDBSearchItem,
    OMDBSearchPage,
)


class FrozenClock:
    """Deterministic stand-in for ``datetime.utcnow``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeOMDBClient:
    """In-memory upstream that records every call it receives."""

    def __init__(self) -> None:
        self.details: dict[str, OMDBDetails] = {}
        self.failing_ids: set[str] = set()
        self.search_hits: list[str] = []
        self.search_total: int | None = None
        self.search_unavailable = False
        self.detail_calls: list[str] = []
        self.search_calls: list[tuple[str, int]] = []

    def add(
        self,
        imdb_id: str,
        title: str,
        *,
        year: str = "2000",
        runtime: str = "100 min",
        genre: str = "Drama",
        director: str = "Jane Doe",
        poster: str = "N/A",
    ) -> None:
        self.details[imdb_id] = OMDBDetails(
            imdb_id=imdb_id,
            title=title,
            year=year,
            runtime=runtime,
            genre=genre,
            director=director,
            poster=poster,
        )

    async def search_titles(self, query: str, page: int = 1) -> OMDBSearchPage:
        self.search_calls.append((query, page))
        if self.search_unavailable:
            raise UpstreamUnavailableError("Movie metadata service is unavailable")
        items = [
            OMDBSearchItem(
                imdb_id=imdb_id,
                title=self.details[imdb_id].title if imdb_id in self.details else "?",
            )
            for imdb_id in self.search_hits
        ]
        total = self.search_total if self.search_total is not None else len(items)
        return OMDBSearchPage(items=items, total=total)

    async def get_details(self, imdb_id: str) -> OMDBDetails | None:
        self.detail_calls.append(imdb_id)
        if imdb_id in self.failing_ids:
            raise UpstreamUnavailableError("Movie metadata service is unavailable")
        return self.details.get(imdb_id)


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    """Return a settings object with defaults suitable for tests."""

    return Settings(  # type: ignore[call-arg]
        _env_file=None,
        OMDB_API_KEY="test-key",
        OMDB_BACKOFF_BASE=0,
        CACHE_TTL_HOURS=24,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def fake_omdb() -> FakeOMDBClient:
    return FakeOMDBClient()


@pytest.fixture
async def database(tmp_path, anyio_backend) -> AsyncIterator[Database]:
    """Provide a freshly created SQLite database for one test."""

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()
