"""Gallery operations: browsing, view tracking, and rating of stored generations."""

from __future__ import annotations

import hashlib
import math
import time
from typing import Any

from prompt_gallery.config import Settings
from prompt_gallery.errors import (
    InvalidInputError,
    InvalidRatingError,
    InvalidSortError,
    NotFoundError,
    RateLimitedError,
    RecordNotFoundError,
)
from prompt_gallery.models import Category, Generation, ListFilter, ListRequest, ListResponse
from prompt_gallery.ratelimit import RateLimiter
from prompt_gallery.store import Repository

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
DEFAULT_SORT = "newest"
VALID_SORT_OPTIONS = frozenset({"newest", "highest_rated", "most_viewed"})

MIN_SCORE = 1
MAX_SCORE = 5


def hash_client_ip(ip: str) -> str:
    """Return the SHA-256 hex digest used as voter and viewer identity."""
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def calculate_total_pages(total: int, page_size: int) -> int:
    """``max(1, ceil(total / page_size))``; an empty gallery still has one page."""
    if page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    if total <= 0:
        return 1
    return math.ceil(total / page_size)


def normalize_page_size(page_size: int, default: int = DEFAULT_PAGE_SIZE) -> int:
    if page_size < 1:
        return default
    if page_size > MAX_PAGE_SIZE:
        return MAX_PAGE_SIZE
    return page_size


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class GalleryService:
    """Stateless orchestrator over a repository and an optional rate limiter.

    The service holds no locks; concurrency safety of counters and rating
    aggregates is the repository's responsibility. A missing ``logger`` or
    ``rate_limiter`` only disables logging or admission control.
    """

    def __init__(
        self,
        repo: Repository,
        rate_limiter: RateLimiter | None = None,
        logger: Any = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        default_sort: str = DEFAULT_SORT,
    ):
        self.repo = repo
        self.rate_limiter = rate_limiter
        self.log = logger
        self.page_size = normalize_page_size(page_size)
        self.default_sort = default_sort if default_sort in VALID_SORT_OPTIONS else DEFAULT_SORT

    @classmethod
    def from_settings(
        cls,
        repo: Repository,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        logger: Any = None,
    ) -> GalleryService:
        return cls(
            repo,
            rate_limiter=rate_limiter,
            logger=logger,
            page_size=settings.page_size,
            default_sort=settings.default_sort,
        )

    def _info(self, event: str, **fields: Any) -> None:
        if self.log is not None:
            self.log.info(event, **fields)

    def _warning(self, event: str, **fields: Any) -> None:
        if self.log is not None:
            self.log.warning(event, **fields)

    def _error(self, event: str, **fields: Any) -> None:
        if self.log is not None:
            self.log.error(event, **fields)

    def _debug(self, event: str, **fields: Any) -> None:
        if self.log is not None:
            self.log.debug(event, **fields)

    def list_generations(self, request: ListRequest) -> ListResponse:
        """Return one page of generations, optionally filtered by category.

        Out-of-range page and page size values are coerced rather than
        rejected; only an unknown sort key is an error.

        Raises:
            InvalidSortError: If the sort key is not one of ``VALID_SORT_OPTIONS``.
        """
        start = time.perf_counter()
        self._info(
            "gallery_list_start",
            sort_by=request.sort_by,
            page=request.page,
            page_size=request.page_size,
            category_id=request.category_id,
        )

        page = max(request.page, 1)
        page_size = normalize_page_size(request.page_size, default=self.page_size)
        sort_by = request.sort_by or self.default_sort
        if sort_by not in VALID_SORT_OPTIONS:
            self._warning("gallery_list_invalid_sort", sort_by=sort_by)
            raise InvalidSortError(sort_by)

        list_filter = ListFilter(
            category_id=request.category_id,
            sort_by=sort_by,
            page=page,
            page_size=page_size,
        )

        try:
            items, total = self.repo.list_generations(list_filter)
        except Exception as exc:
            self._error("gallery_list_failed", error=str(exc), duration_ms=_elapsed_ms(start))
            raise

        total_pages = calculate_total_pages(total, page_size)
        self._info(
            "gallery_list_complete",
            item_count=len(items),
            total=total,
            duration_ms=_elapsed_ms(start),
        )
        return ListResponse(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
        )

    def get_generation(self, generation_id: str) -> Generation:
        """Fetch a generation and bump its view count without deduplication.

        Kept for callers that predate ``get_generation_with_view``.
        """
        if not generation_id:
            raise InvalidInputError("empty generation id")

        generation = self._fetch(generation_id, event_prefix="gallery_get")

        try:
            self.repo.increment_view_count(generation_id)
        except Exception as exc:
            self._warning("gallery_view_increment_failed", generation_id=generation_id, error=str(exc))

        return generation

    def get_generation_with_view(self, generation_id: str, viewer_ip_hash: str) -> Generation:
        """Fetch a generation and record a view deduplicated by viewer hash.

        View recording is best effort: its failure is logged and never
        surfaces to the caller.

        Raises:
            InvalidInputError: If ``generation_id`` is empty.
            NotFoundError: If no such generation exists.
        """
        start = time.perf_counter()
        self._info("gallery_get_start", generation_id=generation_id)

        if not generation_id:
            self._warning("gallery_get_invalid_input", error="empty generation id")
            raise InvalidInputError("empty generation id")

        generation = self._fetch(generation_id, event_prefix="gallery_get")

        new_view = False
        if viewer_ip_hash:
            try:
                new_view = self.repo.record_view(generation_id, viewer_ip_hash)
            except Exception as exc:
                self._warning("gallery_view_record_failed", generation_id=generation_id, error=str(exc))
            else:
                self._debug("gallery_view_recorded", generation_id=generation_id, new_view=new_view)

        self._info(
            "gallery_get_complete",
            generation_id=generation_id,
            new_view=new_view,
            duration_ms=_elapsed_ms(start),
        )
        return generation

    def rate_generation(self, generation_id: str, score: int, voter_hash: str, client_ip: str) -> int:
        """Submit or replace ``voter_hash``'s score for a generation.

        Returns:
            ``0`` on success.

        Raises:
            InvalidInputError: If ``generation_id`` or ``voter_hash`` is empty.
            InvalidRatingError: If ``score`` is outside ``[1, 5]``.
            RateLimitedError: If the limiter refuses ``client_ip``; carries the
                retry-after seconds.
            NotFoundError: If the generation does not exist.
        """
        start = time.perf_counter()
        self._info("gallery_rate_start", generation_id=generation_id, score=score)

        if not generation_id or not voter_hash:
            self._warning("gallery_rate_invalid_input", error="empty generation id or voter hash")
            raise InvalidInputError("empty generation id or voter hash")
        if score < MIN_SCORE or score > MAX_SCORE:
            self._warning("gallery_rate_invalid_score", score=score)
            raise InvalidRatingError(score)

        if self.rate_limiter is not None:
            allowed, retry_after = self.rate_limiter.allow(client_ip)
            if not allowed:
                retry_seconds = max(1, round(retry_after))
                self._warning("gallery_rate_limited", generation_id=generation_id, retry_after=retry_seconds)
                raise RateLimitedError(retry_seconds)
            self._debug("gallery_rate_limit_allowed", generation_id=generation_id)

        self._fetch(generation_id, event_prefix="gallery_rate")

        try:
            self.repo.create_or_update_rating(generation_id, score, voter_hash)
        except Exception as exc:
            self._error("gallery_rate_failed", generation_id=generation_id, error=str(exc))
            raise

        self._info(
            "gallery_rate_complete",
            generation_id=generation_id,
            score=score,
            duration_ms=_elapsed_ms(start),
        )
        return 0

    def get_user_rating(self, generation_id: str, voter_hash: str) -> int:
        """Return the voter's score, or ``0`` when they have not rated."""
        if not generation_id or not voter_hash:
            raise InvalidInputError("empty generation id or voter hash")
        return self.repo.get_user_rating(generation_id, voter_hash)

    def get_categories(self) -> list[Category]:
        return self.repo.get_categories()

    def _fetch(self, generation_id: str, event_prefix: str) -> Generation:
        try:
            return self.repo.get_generation(generation_id)
        except RecordNotFoundError as exc:
            self._warning(f"{event_prefix}_not_found", generation_id=generation_id)
            raise NotFoundError(generation_id) from exc
        except Exception as exc:
            self._error(f"{event_prefix}_failed", generation_id=generation_id, error=str(exc))
            raise
