"""Store-backed cache of upstream movie lookups."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..errors import ConflictError, UpstreamUnavailableError
from ..models import Movie, SearchPage
from ..repository import CatalogRepository, unit_of_work
from ..utils import is_fresh
from .omdb import OMDBClient

logger = logging.getLogger(__name__)


class MovieCache:
    """Serves upstream movie details, refreshing store rows older than the TTL.

    The persisted ``updated_at`` of each upstream row is the only freshness
    state; nothing is held in process memory.
    """

    def __init__(
        self,
        settings: Settings,
        omdb_client: OMDBClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._settings = settings
        self._omdb = omdb_client
        self._session_factory = session_factory
        self._clock = clock

    @property
    def ttl_hours(self) -> float:
        return self._settings.cache_ttl_hours

    async def search(self, query: str, page: int = 1) -> SearchPage:
        """Search upstream and resolve every hit through the cache.

        Raises :class:`UpstreamUnavailableError` only when the page-level
        search fails; hits whose details cannot be resolved are dropped.
        """

        search_page = await self._omdb.search_titles(query, page)
        if not search_page.items:
            return SearchPage(items=[], total=search_page.total)

        results = await asyncio.gather(
            *(self.get_or_refresh(item.imdb_id) for item in search_page.items),
            return_exceptions=True,
        )
        movies: list[Movie] = []
        for item, result in zip(search_page.items, results):
            if isinstance(result, BaseException):
                logger.warning("Dropping %s from search results: %s", item.imdb_id, result)
                continue
            if result is None:
                continue
            movies.append(result)
        return SearchPage(items=movies, total=search_page.total)

    async def get_or_refresh(self, omdb_id: str) -> Movie | None:
        """Return the cached record for ``omdb_id``, refreshing it when stale.

        Returns ``None`` when upstream does not know the id, cannot be
        reached or the store fails; a failed refresh leaves the stored row
        untouched.
        """

        try:
            async with self._session_factory() as session:
                cached = await CatalogRepository(session).find_by_omdb_id(omdb_id)
                if cached is not None and is_fresh(
                    cached.updated_at, self.ttl_hours, now=self._clock()
                ):
                    logger.debug("Using cached movie %s", omdb_id)
                    return Movie.model_validate(cached)
        except SQLAlchemyError:
            logger.exception("Failed to read cached movie %s", omdb_id)
            return None

        try:
            details = await self._omdb.get_details(omdb_id)
        except UpstreamUnavailableError as exc:
            logger.warning("Could not refresh movie %s: %s", omdb_id, exc)
            return None
        if details is None:
            return None

        try:
            async with unit_of_work(self._session_factory) as repository:
                record = await repository.upsert_from_upstream(
                    details.to_movie_fields(), now=self._clock()
                )
                movie = Movie.model_validate(record)
        except ConflictError:
            logger.warning(
                "Refreshed title for %s collides with a user's entry; keeping cached row",
                omdb_id,
            )
            return None
        except SQLAlchemyError:
            logger.exception("Failed to cache movie %s", omdb_id)
            return None

        logger.info("Cached movie %s (%s)", omdb_id, movie.title)
        return movie
