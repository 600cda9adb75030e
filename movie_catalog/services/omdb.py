"""Utilities for communicating with the OMDb metadata API."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..config import Settings
from ..errors import UpstreamUnavailableError
from ..utils import (
    NOT_AVAILABLE,
    normalize_title,
    parse_list,
    parse_runtime,
    parse_year,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True)
class OMDBSearchItem:
    """Single hit of an OMDb title search."""

    imdb_id: str
    title: str
    year: str | None = None


@dataclass(slots=True)
class OMDBSearchPage:
    """A page of search hits and the total OMDb reports for the query."""

    items: list[OMDBSearchItem] = field(default_factory=list)
    total: int = 0


@dataclass(slots=True)
class OMDBDetails:
    """Raw detail fields for one title, still in OMDb's text formats."""

    imdb_id: str
    title: str
    year: str | None = None
    runtime: str | None = None
    genre: str | None = None
    director: str | None = None
    poster: str | None = None

    def to_movie_fields(self) -> dict[str, Any]:
        """Convert the text fields into canonical movie columns."""

        poster = self.poster if self.poster and self.poster != NOT_AVAILABLE else None
        return {
            "omdb_id": self.imdb_id,
            "title": self.title,
            "normalized_title": normalize_title(self.title),
            "year": parse_year(self.year),
            "runtime_minutes": parse_runtime(self.runtime),
            "genre": parse_list(self.genre),
            "director": parse_list(self.director),
            "poster": poster,
        }


class OMDBClient:
    """Thin wrapper around the OMDb HTTP API with retries."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        if not settings.omdb_api_key:
            raise ValueError("OMDB API key is required when initialising OMDBClient")
        self._settings = settings
        self._client = http_client
        self._base_url = str(settings.omdb_api_url)
        self._max_retries = settings.omdb_max_retries
        self._backoff_seconds = settings.omdb_backoff_seconds
        self._timeout = httpx.Timeout(settings.omdb_timeout_seconds)

    async def search_titles(self, query: str, page: int = 1) -> OMDBSearchPage:
        """Return one page of title matches for ``query``."""

        logger.debug("Searching OMDb for %r (page %s)", query, page)
        payload = await self._request({"s": query, "page": page, "type": "movie"})
        if payload.get("Response") == "False":
            logger.debug("OMDb search for %r returned nothing: %s", query, payload.get("Error"))
            return OMDBSearchPage()

        items: list[OMDBSearchItem] = []
        for entry in payload.get("Search") or []:
            if not isinstance(entry, dict):
                continue
            imdb_id = str(entry.get("imdbID") or "").strip()
            if not imdb_id:
                continue
            items.append(
                OMDBSearchItem(
                    imdb_id=imdb_id,
                    title=str(entry.get("Title") or ""),
                    year=entry.get("Year"),
                )
            )
        try:
            total = int(payload.get("totalResults") or 0)
        except (TypeError, ValueError):
            total = 0
        return OMDBSearchPage(items=items, total=total)

    async def get_details(self, imdb_id: str) -> OMDBDetails | None:
        """Return detail fields for ``imdb_id`` or ``None`` if OMDb has no such title."""

        payload = await self._request({"i": imdb_id, "plot": "short"})
        if payload.get("Response") == "False":
            logger.warning("OMDb has no details for %s: %s", imdb_id, payload.get("Error"))
            return None
        return OMDBDetails(
            imdb_id=str(payload.get("imdbID") or imdb_id),
            title=str(payload.get("Title") or ""),
            year=payload.get("Year"),
            runtime=payload.get("Runtime"),
            genre=payload.get("Genre"),
            director=payload.get("Director"),
            poster=payload.get("Poster"),
        )

    async def _request(self, params: dict[str, Any]) -> dict[str, Any]:
        query = {"apikey": self._settings.omdb_api_key, **params}
        headers = {
            "Accept": "application/json",
            "User-Agent": f"{self._settings.app_name} (movie-catalog)",
        }
        attempt = 0
        while True:
            try:
                response = await self._client.get(
                    self._base_url, params=query, headers=headers, timeout=self._timeout
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise httpx.HTTPStatusError(
                        f"OMDb responded with {response.status_code}",
                        request=response.request,
                        response=response,
                    )
                if response.status_code >= 400:
                    raise UpstreamUnavailableError(
                        f"OMDb rejected the request with status {response.status_code}"
                    )
                payload = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                attempt += 1
                if attempt > self._max_retries:
                    logger.warning(
                        "OMDb request failed after %s attempts: %s", attempt, exc
                    )
                    raise UpstreamUnavailableError(
                        "Movie metadata service is unavailable"
                    ) from exc
                backoff = self._backoff_seconds * 2 ** (attempt - 1)
                logger.info(
                    "Transient error talking to OMDb (%s). Retrying in %.1fs",
                    exc.__class__.__name__,
                    backoff,
                )
                await asyncio.sleep(backoff)
                continue

            if not isinstance(payload, dict):
                raise UpstreamUnavailableError("OMDb returned an unexpected payload")
            return payload
