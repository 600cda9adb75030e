"""Override merge behaviour tests."""

from __future__ import annotations

from types import SimpleNamespace

from movie_catalog.merge import merge_view


def _canonical(**overrides: object) -> SimpleNamespace:
    base = {
        "id": "movie-1",
        "title": "Blade Runner",
        "year": 1982,
        "runtime_minutes": 117,
        "genre": ["Sci-Fi", "Thriller"],
        "director": ["Ridley Scott"],
        "poster": "https://img.example.com/br.jpg",
        "source": "omdb",
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def _link(**overrides: object) -> SimpleNamespace:
    base = {
        "is_favorite": False,
        "overridden_title": None,
        "overridden_year": None,
        "overridden_runtime_minutes": None,
        "overridden_genre": None,
        "overridden_director": None,
    }
    base.update(overrides)
    return SimpleNamespace(**base)


def test_merge_without_overrides_returns_canonical_fields() -> None:
    view = merge_view(_canonical(), _link(is_favorite=True))

    assert view.title == "Blade Runner"
    assert view.year == 1982
    assert view.runtime_minutes == 117
    assert view.genre == ["Sci-Fi", "Thriller"]
    assert view.director == ["Ridley Scott"]
    assert view.poster == "https://img.example.com/br.jpg"
    assert view.is_favorite is True
    assert view.overrides.is_empty()


def test_merge_single_override_changes_only_that_field() -> None:
    view = merge_view(_canonical(), _link(overridden_year=1992))

    assert view.year == 1992
    assert view.overrides.year == 1992
    assert view.title == "Blade Runner"
    assert view.runtime_minutes == 117
    assert view.overrides.title is None
    assert view.overrides.runtime_minutes is None
    assert view.overrides.genre is None
    assert view.overrides.director is None


def test_merge_poster_always_comes_from_canonical() -> None:
    view = merge_view(
        _canonical(poster=None),
        _link(overridden_title="Director's Cut", overridden_genre=["Noir"]),
    )

    assert view.poster is None
    assert view.title == "Director's Cut"
    assert view.genre == ["Noir"]


def test_merge_without_link_is_not_favorite() -> None:
    view = merge_view(_canonical(source="custom"), None)

    assert view.is_favorite is False
    assert view.source == "custom"
    assert view.overrides.is_empty()


def test_merge_serializes_camel_case() -> None:
    payload = merge_view(_canonical(), _link(overridden_runtime_minutes=120)).model_dump(
        by_alias=True
    )

    assert payload["runtimeMinutes"] == 120
    assert payload["isFavorite"] is False
    assert payload["overrides"]["runtimeMinutes"] == 120
