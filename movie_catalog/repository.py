"""Data access for canonical movies and per-user links.

Every query that serves callers goes through :meth:`CatalogRepository._active_movies`
or :meth:`CatalogRepository._active_links`, which apply the soft-delete filter.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import Movie, UserMovie, new_id
from .errors import DUPLICATE_TITLE_MESSAGE, ConflictError
from .utils import normalize_title, trigram_similarity

logger = logging.getLogger(__name__)

OVERRIDE_COLUMNS: dict[str, str] = {
    "title": "overridden_title",
    "year": "overridden_year",
    "runtime_minutes": "overridden_runtime_minutes",
    "genre": "overridden_genre",
    "director": "overridden_director",
}
UPSTREAM_FIELDS: tuple[str, ...] = (
    "title",
    "normalized_title",
    "year",
    "runtime_minutes",
    "genre",
    "director",
)
EDITABLE_FIELDS: tuple[str, ...] = ("title", "year", "runtime_minutes", "genre", "director")


def effective_title(movie: Movie, override_title: str | None) -> str:
    """Return the normalized title a user link is indexed under."""

    return normalize_title(override_title if override_title is not None else movie.title)


class CatalogRepository:
    """Queries and writes against the ``movies`` and ``user_movies`` tables."""

    def __init__(self, session: AsyncSession):
        self._session = session

    # -- read paths -----------------------------------------------------

    @staticmethod
    def _active_movies() -> Select[tuple[Movie]]:
        return select(Movie).where(Movie.is_deleted.is_(False))

    @staticmethod
    def _active_links() -> Select[tuple[UserMovie]]:
        return (
            select(UserMovie)
            .join(Movie, UserMovie.movie_id == Movie.id)
            .where(UserMovie.is_deleted.is_(False), Movie.is_deleted.is_(False))
        )

    async def find_by_id(self, movie_id: str) -> Movie | None:
        stmt = self._active_movies().where(Movie.id == movie_id)
        return (await self._session.scalars(stmt)).first()

    async def find_by_ids(self, movie_ids: Iterable[str]) -> list[Movie]:
        wanted = list(dict.fromkeys(movie_ids))
        if not wanted:
            return []
        stmt = self._active_movies().where(Movie.id.in_(wanted))
        found = {movie.id: movie for movie in (await self._session.scalars(stmt)).all()}
        return [found[movie_id] for movie_id in wanted if movie_id in found]

    async def find_by_omdb_id(self, omdb_id: str) -> Movie | None:
        stmt = (
            self._active_movies()
            .where(Movie.omdb_id == omdb_id)
            .execution_options(populate_existing=True)
        )
        return (await self._session.scalars(stmt)).first()

    async def find_link(self, user_id: str, movie_id: str) -> UserMovie | None:
        stmt = self._active_links().where(
            UserMovie.user_id == user_id, UserMovie.movie_id == movie_id
        )
        return (await self._session.scalars(stmt)).first()

    async def find_link_by_effective_title(
        self,
        user_id: str,
        normalized_title: str,
        *,
        exclude_movie_id: str | None = None,
    ) -> UserMovie | None:
        """Return a live link of ``user_id`` indexed under ``normalized_title``."""

        stmt = self._active_links().where(
            UserMovie.user_id == user_id,
            func.lower(UserMovie.effective_normalized_title)
            == normalized_title.lower(),
        )
        if exclude_movie_id is not None:
            stmt = stmt.where(UserMovie.movie_id != exclude_movie_id)
        return (await self._session.scalars(stmt.limit(1))).first()

    async def list_user_links(
        self, user_id: str, *, favorites_only: bool = False
    ) -> list[tuple[UserMovie, Movie]]:
        stmt = (
            select(UserMovie, Movie)
            .join(Movie, UserMovie.movie_id == Movie.id)
            .where(
                UserMovie.user_id == user_id,
                UserMovie.is_deleted.is_(False),
                Movie.is_deleted.is_(False),
            )
            .order_by(UserMovie.updated_at.desc(), UserMovie.created_at.desc())
        )
        if favorites_only:
            stmt = stmt.where(UserMovie.is_favorite.is_(True))
        result = await self._session.execute(stmt)
        return [(link, movie) for link, movie in result.all()]

    async def search_custom_titles(
        self,
        user_id: str,
        query: str,
        *,
        limit: int,
        threshold: float,
    ) -> list[Movie]:
        """Fuzzy title search over the custom movies created by ``user_id``.

        A movie matches when the query is a case-insensitive substring of its
        title or their trigram similarity exceeds ``threshold``. Results are
        ordered by similarity, then most recently created.

        Scoring reads only ids, titles and creation times; full rows are
        loaded for the top ``limit`` matches alone.
        """

        needle = query.strip()
        if len(needle) < 2:
            return []
        stmt = (
            self._active_movies()
            .where(Movie.source == "custom", Movie.created_by_user_id == user_id)
            .with_only_columns(Movie.id, Movie.title, Movie.created_at)
        )
        candidates = (await self._session.execute(stmt)).all()

        lowered = needle.casefold()
        scored: list[tuple[float, datetime, str]] = []
        for movie_id, title, created_at in candidates:
            score = trigram_similarity(title, needle)
            if lowered in title.casefold() or score > threshold:
                scored.append((score, created_at, movie_id))
        scored.sort(reverse=True)
        return await self.find_by_ids(movie_id for _, _, movie_id in scored[:limit])

    # -- canonical movie writes ------------------------------------------

    async def create_movie(self, *, now: datetime, **fields: Any) -> Movie:
        values: dict[str, Any] = {
            "omdb_id": None,
            "poster": None,
            "created_by_user_id": None,
            **fields,
        }
        movie = Movie(
            id=new_id(),
            normalized_title=normalize_title(values["title"]),
            is_deleted=False,
            deleted_at=None,
            created_at=now,
            updated_at=now,
            **values,
        )
        self._session.add(movie)
        await self._session.flush()
        return movie

    async def update_movie(
        self, movie: Movie, changes: dict[str, Any], *, now: datetime
    ) -> Movie:
        """Apply editable field changes; the poster is never touched."""

        previous_title = movie.title
        for name, value in changes.items():
            if name not in EDITABLE_FIELDS:
                continue
            setattr(movie, name, value)
        if "title" in changes:
            movie.normalized_title = normalize_title(movie.title)
        movie.updated_at = now
        await self._session.flush()
        if "title" in changes:
            await self._refresh_effective_titles(movie, previous_title)
        return movie

    async def soft_delete_movie(self, movie: Movie, *, now: datetime) -> None:
        """Hide a movie and every link pointing at it from all read paths."""

        movie.is_deleted = True
        movie.deleted_at = now
        movie.updated_at = now
        await self._session.flush()
        await self._session.execute(
            update(UserMovie)
            .where(UserMovie.movie_id == movie.id, UserMovie.is_deleted.is_(False))
            .values(is_deleted=True, deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    async def upsert_from_upstream(
        self, fields: dict[str, Any], *, now: datetime
    ) -> Movie:
        """Insert or refresh an upstream record keyed by its ``omdb_id``.

        On conflict every derived field is overwritten and ``updated_at``
        bumped; the id and the poster set at creation are kept.
        """

        omdb_id = fields["omdb_id"]
        previous = await self.find_by_omdb_id(omdb_id)
        previous_title = previous.title if previous is not None else None
        previous_normalized = previous.normalized_title if previous is not None else None

        insert = self._dialect_insert()
        values = {name: fields.get(name) for name in UPSTREAM_FIELDS}
        stmt = insert(Movie).values(
            id=new_id(),
            omdb_id=omdb_id,
            poster=fields.get("poster"),
            source="omdb",
            created_by_user_id=None,
            is_deleted=False,
            created_at=now,
            updated_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Movie.omdb_id],
            set_={**values, "updated_at": now},
        )
        await self._session.execute(stmt)

        movie = await self.find_by_omdb_id(omdb_id)
        if movie is None:  # pragma: no cover - the row was just written
            raise RuntimeError(f"Upserted movie {omdb_id} could not be reloaded")
        if previous_title is not None and previous_normalized != movie.normalized_title:
            await self._refresh_effective_titles(movie, previous_title)
        return movie

    def _dialect_insert(self):
        dialect = self._session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise RuntimeError(f"Upserts are not supported on {dialect}")

    async def _refresh_effective_titles(self, movie: Movie, previous_title: str) -> None:
        """Re-key the links that follow the canonical title of ``movie``.

        A link whose user already holds another entry under the new title
        keeps ``previous_title`` as its title override instead, so a canonical
        rename never fails because of another user's catalog.
        """

        normalized = normalize_title(movie.title)
        stmt = select(UserMovie).where(
            UserMovie.movie_id == movie.id,
            UserMovie.overridden_title.is_(None),
            UserMovie.is_deleted.is_(False),
        )
        links = (await self._session.scalars(stmt)).all()
        for link in links:
            clash = await self.find_link_by_effective_title(
                link.user_id, normalized, exclude_movie_id=movie.id
            )
            if clash is None:
                link.effective_normalized_title = normalized
                continue
            link.overridden_title = previous_title
            link.effective_normalized_title = normalize_title(previous_title)
            logger.info(
                "Pinned title %r on link %s of user %s after movie %s was renamed",
                previous_title,
                link.id,
                link.user_id,
                movie.id,
            )
        await self._session.flush()

    # -- link writes ------------------------------------------------------

    async def create_link(
        self,
        user_id: str,
        movie: Movie,
        *,
        is_favorite: bool = False,
        overrides: dict[str, Any] | None = None,
        now: datetime,
    ) -> UserMovie:
        link = UserMovie(
            id=new_id(),
            user_id=user_id,
            movie_id=movie.id,
            is_favorite=is_favorite,
            is_deleted=False,
            deleted_at=None,
            created_at=now,
            updated_at=now,
            **{column: None for column in OVERRIDE_COLUMNS.values()},
        )
        for name, value in (overrides or {}).items():
            setattr(link, OVERRIDE_COLUMNS[name], value)
        link.effective_normalized_title = effective_title(movie, link.overridden_title)
        self._session.add(link)
        await self._session.flush()
        return link

    async def update_link_overrides(
        self,
        link: UserMovie,
        movie: Movie,
        overrides: dict[str, Any],
        *,
        now: datetime,
    ) -> UserMovie:
        """Store overrides; an explicit ``None`` clears that override."""

        for name, value in overrides.items():
            column = OVERRIDE_COLUMNS.get(name)
            if column is not None:
                setattr(link, column, value)
        link.effective_normalized_title = effective_title(movie, link.overridden_title)
        link.updated_at = now
        await self._session.flush()
        return link

    async def set_link_favorite(
        self, link: UserMovie, is_favorite: bool, *, now: datetime
    ) -> UserMovie:
        link.is_favorite = is_favorite
        link.updated_at = now
        await self._session.flush()
        return link

    async def upsert_link(
        self,
        user_id: str,
        movie: Movie,
        *,
        is_favorite: bool,
        now: datetime,
    ) -> UserMovie:
        """Create the link or, if a concurrent writer won, update its flag."""

        insert = self._dialect_insert()
        stmt = insert(UserMovie).values(
            id=new_id(),
            user_id=user_id,
            movie_id=movie.id,
            is_favorite=is_favorite,
            effective_normalized_title=normalize_title(movie.title),
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserMovie.user_id, UserMovie.movie_id],
            set_={"is_favorite": is_favorite, "updated_at": now},
        )
        await self._session.execute(stmt)
        link = await self.find_link(user_id, movie.id)
        if link is None:  # pragma: no cover - the row was just written
            raise RuntimeError(f"Link for {user_id}/{movie.id} could not be reloaded")
        await self._session.refresh(link)
        return link

    async def delete_link(self, user_id: str, movie_id: str) -> bool:
        result = await self._session.execute(
            delete(UserMovie)
            .where(UserMovie.user_id == user_id, UserMovie.movie_id == movie_id)
            .execution_options(synchronize_session=False)
        )
        return (result.rowcount or 0) > 0


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[CatalogRepository]:
    """Run a block of repository writes atomically.

    Storage-level uniqueness violations roll the whole block back and surface
    as :class:`ConflictError`.
    """

    async with session_factory() as session:
        repository = CatalogRepository(session)
        try:
            yield repository
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            logger.warning("Rejected write violating a catalog constraint: %s", exc.orig)
            raise ConflictError(DUPLICATE_TITLE_MESSAGE) from exc
