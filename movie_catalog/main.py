"""Entry point for the FastAPI-powered movie catalog API."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import Body, FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import settings
from .database import Database
from .errors import CatalogError
from .services.catalog import CatalogService
from .services.movie_cache import MovieCache
from .services.omdb import OMDBClient
from .services.search import HybridSearchService

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app: FastAPI


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    page: int = Field(default=1, ge=1)


class MoviesByIdsRequest(BaseModel):
    ids: list[str]


class FavoriteRequest(BaseModel):
    is_favorite: bool = Field(alias="isFavorite")


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    omdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            timeout=httpx.Timeout(settings.omdb_timeout_seconds, connect=5.0)
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    omdb = OMDBClient(settings, omdb_http_client)
    movie_cache = MovieCache(settings, omdb, database.session_factory)

    fastapi_app.state.database = database
    fastapi_app.state.catalog_service = CatalogService(database.session_factory)
    fastapi_app.state.search_service = HybridSearchService(
        settings, movie_cache, database.session_factory
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie catalog merging OMDb metadata with per-user entries",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_catalog_service(fastapi_app: FastAPI) -> CatalogService:
    service = getattr(fastapi_app.state, "catalog_service", None)
    if not isinstance(service, CatalogService):
        raise RuntimeError("Catalog service not initialised")
    return service


def get_search_service(fastapi_app: FastAPI) -> HybridSearchService:
    service = getattr(fastapi_app.state, "search_service", None)
    if not isinstance(service, HybridSearchService):
        raise RuntimeError("Search service not initialised")
    return service


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.exception_handler(CatalogError)
    async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/movies/search")
    async def search_movies(
        body: SearchRequest,
        x_user_id: str | None = Header(default=None),
    ) -> dict[str, Any]:
        service = get_search_service(fastapi_app)
        result = await service.search_hybrid(body.query, body.page, user_id=x_user_id)
        return result.to_payload()

    @fastapi_app.post("/api/movies/by-ids")
    async def movies_by_ids(body: MoviesByIdsRequest) -> list[dict[str, Any]]:
        service = get_catalog_service(fastapi_app)
        movies = await service.get_movies_by_ids(body.ids)
        return [movie.to_summary() for movie in movies]

    @fastapi_app.get("/api/movies/{movie_id}")
    async def get_movie(movie_id: str) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        movie = await service.get_movie(movie_id)
        return movie.to_summary()

    @fastapi_app.get("/api/users/{user_id}/movies")
    async def list_user_movies(
        user_id: str, favorites: bool = False
    ) -> list[dict[str, Any]]:
        service = get_catalog_service(fastapi_app)
        movies = await service.list_user_movies(user_id, favorites_only=favorites)
        return [_dump(movie) for movie in movies]

    @fastapi_app.post("/api/users/{user_id}/movies", status_code=201)
    async def create_user_movie(
        user_id: str, payload: dict[str, Any] = Body(...)
    ) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        movie = await service.create_custom_movie(user_id, payload)
        return movie.to_summary()

    @fastapi_app.put("/api/users/{user_id}/movies/{movie_id}")
    async def update_user_movie(
        user_id: str, movie_id: str, payload: dict[str, Any] = Body(...)
    ) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        result = await service.update_movie(user_id, movie_id, payload)
        return _dump(result)

    @fastapi_app.put("/api/users/{user_id}/movies/{movie_id}/favorite")
    async def set_favorite(
        user_id: str, movie_id: str, body: FavoriteRequest
    ) -> dict[str, Any]:
        service = get_catalog_service(fastapi_app)
        movie = await service.set_favorite(user_id, movie_id, body.is_favorite)
        return _dump(movie)

    @fastapi_app.delete("/api/users/{user_id}/movies/{movie_id}", status_code=204)
    async def delete_user_movie(user_id: str, movie_id: str) -> Response:
        service = get_catalog_service(fastapi_app)
        await service.delete_movie(user_id, movie_id)
        return Response(status_code=204)


app = create_app()
