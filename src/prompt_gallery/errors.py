"""Exceptions raised by the gallery service and the storage layer."""

from __future__ import annotations


class GalleryError(Exception):
    """Base class for classified gallery failures."""


class NotFoundError(GalleryError):
    def __init__(self, generation_id: str = ""):
        self.generation_id = generation_id
        super().__init__(f"generation not found: {generation_id}" if generation_id else "generation not found")


class InvalidInputError(GalleryError, ValueError):
    def __init__(self, message: str = "invalid input"):
        super().__init__(message)


class InvalidRatingError(GalleryError, ValueError):
    def __init__(self, score: int):
        self.score = score
        super().__init__(f"rating must be between 1 and 5, got {score}")


class InvalidSortError(GalleryError, ValueError):
    def __init__(self, sort_by: str):
        self.sort_by = sort_by
        super().__init__(f"invalid sort option: {sort_by!r}")


class RateLimitedError(GalleryError):
    """Raised when the rating limiter refuses a client.

    ``retry_after`` is the number of whole seconds the client should wait.
    """

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"rate limited, retry after {retry_after}s")


class RepositoryError(Exception):
    """Any persistence failure not otherwise classified."""


class RecordNotFoundError(RepositoryError):
    """The store has no row for the requested key."""
