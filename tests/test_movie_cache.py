"""Upstream lookup cache behaviour tests."""

from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from movie_catalog import db_models
from movie_catalog.config import Settings
from movie_catalog.database import Database
from movie_catalog.errors import UpstreamUnavailableError
from movie_catalog.repository import CatalogRepository
from movie_catalog.services.catalog import CatalogService
from movie_catalog.services.movie_cache import MovieCache
from movie_catalog.services.omdb import OMDBClient


def _cache(settings: Settings, fake_omdb, database: Database, clock) -> MovieCache:
    return MovieCache(
        settings, cast(OMDBClient, fake_omdb), database.session_factory, clock=clock
    )


@pytest.mark.anyio
async def test_get_or_refresh_hits_cache_within_ttl(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt0083658", "Blade Runner", year="1982", genre="Sci-Fi, Thriller")
    cache = _cache(settings, fake_omdb, database, clock)

    first = await cache.get_or_refresh("tt0083658")
    clock.advance(hours=23)
    second = await cache.get_or_refresh("tt0083658")

    assert fake_omdb.detail_calls == ["tt0083658"]
    assert first is not None and second is not None
    assert first.id == second.id
    assert second.normalized_title == "Blade Runner"
    assert second.genre == ["Sci-Fi", "Thriller"]
    assert second.source == "omdb"
    assert second.created_by_user_id is None


@pytest.mark.anyio
async def test_get_or_refresh_refetches_after_ttl(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt0083658", "Blade Runner", poster="https://img.example.com/a.jpg")
    cache = _cache(settings, fake_omdb, database, clock)

    first = await cache.get_or_refresh("tt0083658")
    clock.advance(hours=25)
    fake_omdb.add(
        "tt0083658", "Blade Runner: The Final Cut", poster="https://img.example.com/b.jpg"
    )
    refreshed = await cache.get_or_refresh("tt0083658")

    assert fake_omdb.detail_calls == ["tt0083658", "tt0083658"]
    assert first is not None and refreshed is not None
    assert refreshed.id == first.id
    assert refreshed.updated_at > first.updated_at
    assert refreshed.title == "Blade Runner: The Final Cut"
    assert refreshed.normalized_title == "Blade Runner The Final Cut"
    # The poster is fixed when the row is first created.
    assert refreshed.poster == "https://img.example.com/a.jpg"


@pytest.mark.anyio
async def test_get_or_refresh_returns_none_for_unknown_ids(
    settings, fake_omdb, database, clock
) -> None:
    cache = _cache(settings, fake_omdb, database, clock)

    assert await cache.get_or_refresh("tt9999999") is None


@pytest.mark.anyio
async def test_failed_refresh_keeps_cached_row(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt0083658", "Blade Runner")
    cache = _cache(settings, fake_omdb, database, clock)
    original = await cache.get_or_refresh("tt0083658")

    clock.advance(days=2)
    fake_omdb.failing_ids.add("tt0083658")
    assert await cache.get_or_refresh("tt0083658") is None

    async with database.session_factory() as session:
        stored = await CatalogRepository(session).find_by_omdb_id("tt0083658")
        assert stored is not None
        assert original is not None
        assert stored.id == original.id
        assert stored.updated_at == original.updated_at


@pytest.mark.anyio
async def test_search_drops_items_whose_details_fail(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt1", "Alien")
    fake_omdb.add("tt2", "Aliens")
    fake_omdb.add("tt3", "Alien 3")
    fake_omdb.search_hits = ["tt1", "tt2", "tt3", "tt404"]
    fake_omdb.search_total = 57
    fake_omdb.failing_ids.add("tt2")
    cache = _cache(settings, fake_omdb, database, clock)

    page = await cache.search("alien", 1)

    assert [movie.title for movie in page.items] == ["Alien", "Alien 3"]
    assert page.total == 57
    assert sorted(fake_omdb.detail_calls) == ["tt1", "tt2", "tt3", "tt404"]


@pytest.mark.anyio
async def test_search_propagates_page_level_outage(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.search_unavailable = True
    cache = _cache(settings, fake_omdb, database, clock)

    with pytest.raises(UpstreamUnavailableError):
        await cache.search("alien", 1)


@pytest.mark.anyio
async def test_refresh_renaming_into_a_users_title_still_succeeds(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt1", "Alien Two")
    cache = _cache(settings, fake_omdb, database, clock)
    catalog = CatalogService(database.session_factory, clock=clock)
    cached = await cache.get_or_refresh("tt1")
    assert cached is not None
    custom = await catalog.create_custom_movie(
        "user-a",
        {
            "title": "Alien",
            "year": 1979,
            "runtimeMinutes": 117,
            "genre": ["Horror"],
            "director": ["Ridley Scott"],
        },
    )
    await catalog.set_favorite("user-a", cached.id, True)

    fake_omdb.add("tt1", "Alien")
    clock.advance(hours=25)
    refreshed = await cache.get_or_refresh("tt1")

    assert refreshed is not None
    assert refreshed.id == cached.id
    assert refreshed.title == "Alien"

    listed = {movie.id: movie for movie in await catalog.list_user_movies("user-a")}
    assert listed[custom.id].title == "Alien"
    assert listed[cached.id].title == "Alien Two"
    assert listed[cached.id].overrides.title == "Alien Two"


@pytest.mark.anyio
async def test_concurrent_refreshes_of_one_id_keep_a_single_row(
    settings, fake_omdb, database, clock
) -> None:
    fake_omdb.add("tt1", "Alien")
    cache = _cache(settings, fake_omdb, database, clock)

    first, second = await asyncio.gather(
        cache.get_or_refresh("tt1"), cache.get_or_refresh("tt1")
    )

    assert first is not None and second is not None
    assert first.id == second.id
    async with database.session_factory() as session:
        count = await session.scalar(
            select(func.count()).select_from(db_models.Movie).where(
                db_models.Movie.omdb_id == "tt1"
            )
        )
    assert count == 1

    clock.advance(hours=25)
    again = await cache.get_or_refresh("tt1")
    assert again is not None
    assert again.id == first.id


@pytest.mark.anyio
async def test_store_read_failure_returns_none(
    settings, fake_omdb, database, clock, monkeypatch
) -> None:
    async def _broken_lookup(self: Any, omdb_id: str) -> None:
        raise OperationalError("SELECT movies", {}, Exception("disk I/O error"))

    monkeypatch.setattr(CatalogRepository, "find_by_omdb_id", _broken_lookup)
    fake_omdb.add("tt1", "Alien")
    cache = _cache(settings, fake_omdb, database, clock)

    assert await cache.get_or_refresh("tt1") is None
    assert fake_omdb.detail_calls == []
