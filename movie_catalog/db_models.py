"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def new_id() -> str:
    return str(uuid4())


class Movie(Base):
    """Canonical record of a film shared by every user."""

    __tablename__ = "movies"
    __table_args__ = (
        Index("idx_movies_source_creator", "source", "created_by_user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    omdb_id: Mapped[str | None] = mapped_column(
        String(32), unique=True, nullable=True
    )
    title: Mapped[str] = mapped_column(String(512))
    normalized_title: Mapped[str] = mapped_column(String(512))
    year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    runtime_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    genre: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    director: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    poster: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    source: Mapped[str] = mapped_column(String(16))
    created_by_user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    links: Mapped[list["UserMovie"]] = relationship(back_populates="movie")


class UserMovie(Base):
    """Per-user relationship to a movie holding favorites and overrides."""

    __tablename__ = "user_movies"
    __table_args__ = (
        UniqueConstraint("user_id", "movie_id", name="uq_user_movies_user_movie"),
        Index("idx_user_movies_updated", "user_id", "updated_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64))
    movie_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("movies.id", ondelete="CASCADE")
    )
    is_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    overridden_title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    overridden_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    overridden_runtime_minutes: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    overridden_genre: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    overridden_director: Mapped[list[str] | None] = mapped_column(
        JSON, nullable=True
    )
    effective_normalized_title: Mapped[str] = mapped_column(String(512))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    movie: Mapped[Movie] = relationship(back_populates="links")


# Per-user effective title uniqueness among live links.
Index(
    "ux_user_movies_effective_title",
    UserMovie.user_id,
    func.lower(UserMovie.effective_normalized_title),
    unique=True,
    sqlite_where=text("is_deleted = 0"),
    postgresql_where=text("is_deleted = false"),
)
