"""Catalog operations: custom movies, per-user overrides and favorites."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import db_models
from ..errors import DUPLICATE_TITLE_MESSAGE, ConflictError, NotFoundError
from ..merge import merge_view
from ..models import (
    EffectiveMovie,
    Movie,
    MovieDraft,
    MoviePatch,
    MovieUpdateResult,
)
from ..repository import CatalogRepository, unit_of_work
from ..utils import normalize_title

logger = logging.getLogger(__name__)

MOVIE_NOT_FOUND = "Movie not found"


@dataclass(slots=True, frozen=True)
class OwnedMovie:
    """A custom movie edited and deleted in place by its creator."""

    record: db_models.Movie


@dataclass(slots=True, frozen=True)
class SharedMovie:
    """A movie the user does not own; changes stay on the user's link."""

    record: db_models.Movie


MovieTarget = OwnedMovie | SharedMovie


def resolve_target(record: db_models.Movie, user_id: str) -> MovieTarget:
    if record.source == "custom" and record.created_by_user_id == user_id:
        return OwnedMovie(record)
    return SharedMovie(record)


class CatalogService:
    """Owns canonical movies and the per-user links layered on top of them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    async def get_movie(self, movie_id: str) -> Movie:
        async with self._session_factory() as session:
            record = await CatalogRepository(session).find_by_id(movie_id)
            if record is None:
                raise NotFoundError(MOVIE_NOT_FOUND)
            return Movie.model_validate(record)

    async def get_movies_by_ids(self, movie_ids: Iterable[str]) -> list[Movie]:
        async with self._session_factory() as session:
            records = await CatalogRepository(session).find_by_ids(movie_ids)
            return [Movie.model_validate(record) for record in records]

    async def create_custom_movie(
        self, user_id: str, draft: Mapping[str, Any] | BaseModel
    ) -> Movie:
        """Create a custom movie owned by ``user_id`` together with its link."""

        validated = MovieDraft.from_payload(draft)
        normalized = normalize_title(validated.title)
        now = self._clock()

        async with unit_of_work(self._session_factory) as repository:
            await self._ensure_title_available(repository, user_id, normalized)
            record = await repository.create_movie(
                title=validated.title,
                year=validated.year,
                runtime_minutes=validated.runtime_minutes,
                genre=validated.genre,
                director=validated.director,
                poster=validated.poster,
                source="custom",
                created_by_user_id=user_id,
                now=now,
            )
            await repository.create_link(user_id, record, now=now)
            movie = Movie.model_validate(record)

        logger.info("User %s created custom movie %s (%s)", user_id, movie.id, movie.title)
        return movie

    async def update_movie(
        self,
        user_id: str,
        movie_id: str,
        patch: Mapping[str, Any] | BaseModel,
    ) -> MovieUpdateResult:
        """Edit an owned custom movie, or store the patch as the user's overrides."""

        validated = MoviePatch.from_payload(patch)
        changes = validated.changes()
        now = self._clock()

        async with unit_of_work(self._session_factory) as repository:
            record = await repository.find_by_id(movie_id)
            if record is None:
                raise NotFoundError(MOVIE_NOT_FOUND)
            target = resolve_target(record, user_id)
            if isinstance(target, OwnedMovie):
                result = await self._edit_owned(repository, user_id, target, changes, now)
            else:
                result = await self._override_shared(
                    repository, user_id, target, changes, now
                )
        return result

    async def set_favorite(
        self, user_id: str, movie_id: str, is_favorite: bool
    ) -> EffectiveMovie:
        now = self._clock()
        async with unit_of_work(self._session_factory) as repository:
            record = await repository.find_by_id(movie_id)
            if record is None:
                raise NotFoundError(MOVIE_NOT_FOUND)
            link = await repository.find_link(user_id, movie_id)
            if link is not None:
                link = await repository.set_link_favorite(link, is_favorite, now=now)
            else:
                await self._ensure_title_available(
                    repository,
                    user_id,
                    normalize_title(record.title),
                    exclude_movie_id=record.id,
                )
                link = await repository.upsert_link(
                    user_id, record, is_favorite=is_favorite, now=now
                )
            view = merge_view(record, link)
        return view

    async def delete_movie(self, user_id: str, movie_id: str) -> None:
        """Soft-delete an owned custom movie or detach the user from any other."""

        now = self._clock()
        async with unit_of_work(self._session_factory) as repository:
            record = await repository.find_by_id(movie_id)
            if record is None:
                raise NotFoundError(MOVIE_NOT_FOUND)
            target = resolve_target(record, user_id)
            if isinstance(target, OwnedMovie):
                await repository.soft_delete_movie(target.record, now=now)
                logger.info("User %s deleted custom movie %s", user_id, movie_id)
            else:
                removed = await repository.delete_link(user_id, movie_id)
                if not removed:
                    raise NotFoundError("Movie is not in this user's catalog")
                logger.info("User %s detached from movie %s", user_id, movie_id)

    async def list_user_movies(
        self, user_id: str, *, favorites_only: bool = False
    ) -> list[EffectiveMovie]:
        async with self._session_factory() as session:
            rows = await CatalogRepository(session).list_user_links(
                user_id, favorites_only=favorites_only
            )
            return [merge_view(movie, link) for link, movie in rows]

    async def _edit_owned(
        self,
        repository: CatalogRepository,
        user_id: str,
        target: OwnedMovie,
        changes: dict[str, Any],
        now: datetime,
    ) -> MovieUpdateResult:
        record = target.record
        edits = {name: value for name, value in changes.items() if value is not None}
        if "title" in edits:
            await self._ensure_title_available(
                repository,
                user_id,
                normalize_title(edits["title"]),
                exclude_movie_id=record.id,
            )
        if edits:
            await repository.update_movie(record, edits, now=now)

        link = await repository.find_link(user_id, record.id)
        if link is None:
            link = await repository.create_link(user_id, record, now=now)
        return MovieUpdateResult(movie=merge_view(record, link), is_override=False)

    async def _override_shared(
        self,
        repository: CatalogRepository,
        user_id: str,
        target: SharedMovie,
        changes: dict[str, Any],
        now: datetime,
    ) -> MovieUpdateResult:
        record = target.record
        link = await repository.find_link(user_id, record.id)
        if "title" in changes:
            override_title = changes["title"]
        else:
            override_title = link.overridden_title if link is not None else None

        if link is None or "title" in changes:
            effective = normalize_title(
                override_title if override_title is not None else record.title
            )
            await self._ensure_title_available(
                repository, user_id, effective, exclude_movie_id=record.id
            )

        if link is None:
            overrides = {name: value for name, value in changes.items() if value is not None}
            link = await repository.create_link(
                user_id, record, overrides=overrides, now=now
            )
        else:
            link = await repository.update_link_overrides(link, record, changes, now=now)
        logger.info("User %s overrode fields %s on movie %s", user_id, sorted(changes), record.id)
        return MovieUpdateResult(movie=merge_view(record, link), is_override=True)

    @staticmethod
    async def _ensure_title_available(
        repository: CatalogRepository,
        user_id: str,
        normalized_title: str,
        *,
        exclude_movie_id: str | None = None,
    ) -> None:
        existing = await repository.find_link_by_effective_title(
            user_id, normalized_title, exclude_movie_id=exclude_movie_id
        )
        if existing is not None:
            logger.warning(
                "User %s already has a movie titled %r", user_id, normalized_title
            )
            raise ConflictError(DUPLICATE_TITLE_MESSAGE)
