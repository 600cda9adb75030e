"""Search combining upstream results with the caller's custom movies."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..errors import ValidationError
from ..models import HybridSearchResult, Movie
from ..repository import CatalogRepository
from .movie_cache import MovieCache

logger = logging.getLogger(__name__)


class HybridSearchService:
    """Runs upstream searches and, for known users, blends in their custom titles."""

    def __init__(
        self,
        settings: Settings,
        movie_cache: MovieCache,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._settings = settings
        self._cache = movie_cache
        self._session_factory = session_factory

    async def search_hybrid(
        self, query: str, page: int = 1, user_id: str | None = None
    ) -> HybridSearchResult:
        """Return one page of results for ``query``.

        Anonymous callers (``user_id`` is ``None``) get upstream results
        unchanged. Otherwise the user's matching custom movies come first and
        upstream hits sharing a title with one of them are dropped. ``total``
        adds the custom match count to the upstream total and may therefore
        overcount distinct movies.
        """

        query = (query or "").strip()
        if not query:
            raise ValidationError("Query must be at least 1 character")
        if page < 1:
            raise ValidationError("Page must be a positive integer")

        upstream = await self._cache.search(query, page)
        if user_id is None:
            return HybridSearchResult(
                items=upstream.items,
                page=page,
                total=upstream.total,
                includes_custom_movies=False,
            )

        custom = await self._search_custom(user_id, query)
        custom_titles = {movie.title.casefold() for movie in custom}
        deduplicated = [
            movie for movie in upstream.items if movie.title.casefold() not in custom_titles
        ]
        logger.debug(
            "Hybrid search %r for %s: %s custom, %s upstream (%s dropped)",
            query,
            user_id,
            len(custom),
            len(deduplicated),
            len(upstream.items) - len(deduplicated),
        )
        return HybridSearchResult(
            items=[*custom, *deduplicated],
            page=page,
            total=upstream.total + len(custom),
            includes_custom_movies=True,
        )

    async def _search_custom(self, user_id: str, query: str) -> list[Movie]:
        async with self._session_factory() as session:
            records = await CatalogRepository(session).search_custom_titles(
                user_id,
                query,
                limit=self._settings.custom_search_limit,
                threshold=self._settings.custom_search_similarity,
            )
            return [Movie.model_validate(record) for record in records]
