"""Layering of per-user overrides on top of canonical movie records."""

from __future__ import annotations

from typing import Any

from .models import EffectiveMovie, MovieOverrides


def _pick(override: Any, canonical: Any) -> Any:
    return override if override is not None else canonical


def overrides_from_link(link: Any | None) -> MovieOverrides:
    """Return the raw override values stored on a user link."""

    if link is None:
        return MovieOverrides()
    return MovieOverrides(
        title=link.overridden_title,
        year=link.overridden_year,
        runtime_minutes=link.overridden_runtime_minutes,
        genre=link.overridden_genre,
        director=link.overridden_director,
    )


def merge_view(canonical: Any, link: Any | None) -> EffectiveMovie:
    """Compute the movie as seen by the owner of ``link``.

    Each overridable field prefers the link value; the poster always comes
    from the canonical record. ``canonical`` and ``link`` may be ORM rows or
    any objects exposing the same attribute names.
    """

    overrides = overrides_from_link(link)
    return EffectiveMovie(
        id=canonical.id,
        title=_pick(overrides.title, canonical.title),
        year=_pick(overrides.year, canonical.year),
        runtime_minutes=_pick(overrides.runtime_minutes, canonical.runtime_minutes),
        genre=_pick(overrides.genre, canonical.genre),
        director=_pick(overrides.director, canonical.director),
        poster=canonical.poster,
        is_favorite=bool(link.is_favorite) if link is not None else False,
        overrides=overrides,
        source=canonical.source,
    )
