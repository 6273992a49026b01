from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import structlog

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from prompt_gallery.categories import DEFAULT_CATEGORIES
from prompt_gallery.errors import RecordNotFoundError, RepositoryError
from prompt_gallery.models import Category, Generation, ListFilter
from prompt_gallery.store import Store


class FakeRepository:
    """In-memory repository that records every call it receives."""

    def __init__(self, generations: list[Generation] | None = None) -> None:
        self.generations: dict[str, Generation] = {g.id: g for g in generations or []}
        self.ratings: dict[str, dict[str, int]] = {}
        self.views: set[tuple[str, str]] = set()
        self.calls: list[str] = []
        self.fail_record_view = False
        self.fail_increment = False
        self.fail_list = False
        self.fail_get = False
        self.fail_rating = False
        self.last_filter: ListFilter | None = None

    def list_generations(self, list_filter: ListFilter) -> tuple[list[Generation], int]:
        self.calls.append("list_generations")
        self.last_filter = list_filter
        if self.fail_list:
            raise RepositoryError("list exploded")
        items = [
            g for g in self.generations.values()
            if list_filter.category_id is None or g.category_id == list_filter.category_id
        ]
        start = (list_filter.page - 1) * list_filter.page_size
        return items[start : start + list_filter.page_size], len(items)

    def get_generation(self, generation_id: str) -> Generation:
        self.calls.append("get_generation")
        if self.fail_get:
            raise RepositoryError("connection refused")
        if generation_id not in self.generations:
            raise RecordNotFoundError(generation_id)
        return self.generations[generation_id]

    def increment_view_count(self, generation_id: str) -> None:
        self.calls.append("increment_view_count")
        if self.fail_increment:
            raise RepositoryError("increment exploded")
        gen = self.generations[generation_id]
        self.generations[generation_id] = gen.model_copy(update={"view_count": gen.view_count + 1})

    def record_view(self, generation_id: str, ip_hash: str) -> bool:
        self.calls.append("record_view")
        if self.fail_record_view:
            raise RepositoryError("views table locked")
        if (generation_id, ip_hash) in self.views:
            return False
        self.views.add((generation_id, ip_hash))
        gen = self.generations[generation_id]
        self.generations[generation_id] = gen.model_copy(update={"view_count": gen.view_count + 1})
        return True

    def create_or_update_rating(self, generation_id: str, score: int, voter_hash: str) -> None:
        self.calls.append("create_or_update_rating")
        if self.fail_rating:
            raise RepositoryError("rating exploded")
        votes = self.ratings.setdefault(generation_id, {})
        votes[voter_hash] = score
        gen = self.generations[generation_id]
        self.generations[generation_id] = gen.model_copy(
            update={
                "avg_rating": round(sum(votes.values()) / len(votes), 2),
                "rating_count": len(votes),
            }
        )

    def get_user_rating(self, generation_id: str, voter_hash: str) -> int:
        self.calls.append("get_user_rating")
        return self.ratings.get(generation_id, {}).get(voter_hash, 0)

    def get_categories(self) -> list[Category]:
        self.calls.append("get_categories")
        return list(DEFAULT_CATEGORIES)


class FakeLimiter:
    def __init__(self, allowed: bool = True, retry_after: float = 0.0) -> None:
        self.allowed = allowed
        self.retry_after = retry_after
        self.keys: list[str] = []

    def allow(self, key: str) -> tuple[bool, float]:
        self.keys.append(key)
        return self.allowed, self.retry_after


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_generation(index: int = 1, **overrides: object) -> Generation:
    payload: dict[str, object] = {
        "id": f"gen-{index:04d}",
        "project_idea": f"Project idea number {index}",
        "experience_level": "beginner",
        "hook_preset": "default",
        "files": [{"path": "kickoff.md", "content": "# Kickoff", "type": "kickoff"}],
        "category_id": 5,
        "category_name": "Other",
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=index),
    }
    payload.update(overrides)
    return Generation.model_validate(payload)


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def fake_repo() -> FakeRepository:
    return FakeRepository([make_generation(1), make_generation(2)])


@pytest.fixture
def sample_files() -> list[dict[str, str]]:
    return [
        {"path": "kickoff.md", "content": "# Kickoff\nBuild it.", "type": "kickoff"},
        {"path": ".kiro/steering/tech.md", "content": "Use Python.", "type": "steering"},
        {"path": ".kiro/hooks/lint.kiro.hook", "content": '{"name": "lint"}', "type": "hook"},
    ]


@pytest.fixture
def store(tmp_path) -> Store:
    db = Store(tmp_path / "gallery.db")
    db.init_db()
    return db
