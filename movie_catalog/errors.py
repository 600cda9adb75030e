"""Error taxonomy shared by the catalog services and the HTTP layer."""

from __future__ import annotations

from typing import Any


class CatalogError(RuntimeError):
    """Base class for failures surfaced to catalog callers."""

    status_code = 500

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CatalogError, ValueError):
    """Input was malformed or out of range; nothing was written."""

    status_code = 400


class NotFoundError(CatalogError, LookupError):
    """The referenced movie or link is absent or soft-deleted."""

    status_code = 404


class ConflictError(CatalogError):
    """The user already owns an entry with the same effective title."""

    status_code = 409


class UpstreamUnavailableError(CatalogError):
    """The upstream lookup service could not be reached within the retry budget."""

    status_code = 502


DUPLICATE_TITLE_MESSAGE = "A movie with the same name already exists."
