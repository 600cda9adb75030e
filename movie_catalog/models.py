"""Pydantic models describing catalog payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError
from .utils import MAX_YEAR, MIN_YEAR

MovieSource = Literal["omdb", "custom"]


class CamelModel(BaseModel):
    """Base model exposing camelCase names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


def _clean_names(values: list[str] | None) -> list[str] | None:
    if values is None:
        return None
    return [value.strip() for value in values]


class Movie(CamelModel):
    """Canonical movie record as stored, independent of any user."""

    id: str
    omdb_id: str | None = None
    title: str
    normalized_title: str
    year: int | None = None
    runtime_minutes: int | None = None
    genre: list[str] | None = None
    director: list[str] | None = None
    poster: str | None = None
    source: MovieSource
    created_by_user_id: str | None = None
    is_deleted: bool = False
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def to_summary(self) -> dict[str, Any]:
        """Return the public listing shape used by search and lookups."""

        return {
            "id": self.id,
            "omdbId": self.omdb_id,
            "title": self.title,
            "year": self.year,
            "runtimeMinutes": self.runtime_minutes,
            "genre": self.genre,
            "director": self.director,
            "poster": self.poster,
            "source": self.source,
        }


class MovieOverrides(CamelModel):
    """Raw per-user override values; ``None`` means not overridden."""

    title: str | None = None
    year: int | None = None
    runtime_minutes: int | None = None
    genre: list[str] | None = None
    director: list[str] | None = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class EffectiveMovie(CamelModel):
    """A movie as one user sees it, overrides layered on the canonical record."""

    id: str
    title: str
    year: int | None = None
    runtime_minutes: int | None = None
    genre: list[str] | None = None
    director: list[str] | None = None
    poster: str | None = None
    is_favorite: bool = False
    overrides: MovieOverrides = Field(default_factory=MovieOverrides)
    source: MovieSource


class MovieUpdateResult(CamelModel):
    """Outcome of an update, flagging whether it landed as overrides."""

    movie: EffectiveMovie
    is_override: bool


class _PayloadModel(CamelModel):
    @classmethod
    def from_payload(cls, data: "Mapping[str, Any] | BaseModel"):
        """Validate ``data`` and surface failures as catalog validation errors."""

        if isinstance(data, cls):
            return data
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return cls.model_validate(data)
        except PydanticValidationError as exc:
            details = [
                {
                    "path": ".".join(str(part) for part in error["loc"]),
                    "message": error["msg"],
                }
                for error in exc.errors()
            ]
            raise ValidationError("Invalid movie payload", details=details) from exc


class MovieDraft(_PayloadModel):
    """Fields required to create a custom movie."""

    title: str = Field(min_length=3)
    year: int = Field(ge=MIN_YEAR, le=MAX_YEAR)
    runtime_minutes: int = Field(ge=1)
    genre: list[str] = Field(min_length=1)
    director: list[str] = Field(min_length=1)
    poster: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("genre", "director", mode="after")
    @classmethod
    def _check_names(cls, values: list[str]) -> list[str]:
        cleaned = _clean_names(values) or []
        if any(len(value) < 3 for value in cleaned):
            raise ValueError("Entries must be at least 3 characters")
        return cleaned

    @field_validator("poster", mode="after")
    @classmethod
    def _check_poster(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("Poster must be an http(s) URL")
        return value


class MoviePatch(_PayloadModel):
    """Partial update; unset fields are left untouched.

    ``poster`` is immutable and silently dropped if supplied.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(default=None, min_length=3)
    year: int | None = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    runtime_minutes: int | None = Field(default=None, ge=1)
    genre: list[str] | None = Field(default=None, min_length=1)
    director: list[str] | None = Field(default=None, min_length=1)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("genre", "director", mode="after")
    @classmethod
    def _check_names(cls, values: list[str] | None) -> list[str] | None:
        cleaned = _clean_names(values)
        if cleaned is not None and any(len(value) < 3 for value in cleaned):
            raise ValueError("Entries must be at least 3 characters")
        return cleaned

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller explicitly supplied."""

        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name in type(self).model_fields
        }


class SearchPage(CamelModel):
    """One page of upstream search results resolved to canonical records."""

    items: list[Movie] = Field(default_factory=list)
    total: int = 0


class HybridSearchResult(CamelModel):
    """Upstream results merged with the caller's matching custom movies."""

    items: list[Movie] = Field(default_factory=list)
    page: int = 1
    total: int = 0
    includes_custom_movies: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.to_summary() for item in self.items],
            "page": self.page,
            "total": self.total,
            "includesCustomMovies": self.includes_custom_movies,
        }
