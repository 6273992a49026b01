from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from prompt_gallery.categories import DEFAULT_CATEGORIES, CategoryMatcher
from prompt_gallery.errors import InvalidInputError, RecordNotFoundError, RepositoryError
from prompt_gallery.logger import get_logger
from prompt_gallery.models import Category, GeneratedFile, Generation, ListFilter

logger = get_logger(__name__)


class Repository(Protocol):
    """Persistence operations the gallery service relies on."""

    def list_generations(self, list_filter: ListFilter) -> tuple[list[Generation], int]:
        ...

    def get_generation(self, generation_id: str) -> Generation:
        ...

    def increment_view_count(self, generation_id: str) -> None:
        ...

    def record_view(self, generation_id: str, ip_hash: str) -> bool:
        ...

    def create_or_update_rating(self, generation_id: str, score: int, voter_hash: str) -> None:
        ...

    def get_user_rating(self, generation_id: str, voter_hash: str) -> int:
        ...

    def get_categories(self) -> list[Category]:
        ...


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    keywords TEXT NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS generations (
    id TEXT PRIMARY KEY,
    project_idea TEXT NOT NULL,
    experience_level TEXT NOT NULL,
    hook_preset TEXT NOT NULL,
    files TEXT NOT NULL,
    category_id INTEGER NOT NULL DEFAULT 5 REFERENCES categories(id),
    avg_rating REAL NOT NULL DEFAULT 0,
    rating_count INTEGER NOT NULL DEFAULT 0,
    view_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_generations_category ON generations(category_id);
CREATE INDEX IF NOT EXISTS idx_generations_created_at ON generations(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_generations_avg_rating ON generations(avg_rating DESC);
CREATE INDEX IF NOT EXISTS idx_generations_view_count ON generations(view_count DESC);

CREATE TABLE IF NOT EXISTS ratings (
    generation_id TEXT NOT NULL REFERENCES generations(id) ON DELETE CASCADE,
    voter_hash TEXT NOT NULL,
    score INTEGER NOT NULL CHECK (score >= 1 AND score <= 5),
    created_at TEXT NOT NULL,
    PRIMARY KEY (generation_id, voter_hash)
);

CREATE TABLE IF NOT EXISTS views (
    generation_id TEXT NOT NULL REFERENCES generations(id) ON DELETE CASCADE,
    ip_hash TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (generation_id, ip_hash)
);
"""

GENERATION_COLUMNS = """
    g.id, g.project_idea, g.experience_level, g.hook_preset, g.files,
    g.category_id, COALESCE(c.name, '') AS category_name,
    g.avg_rating, g.rating_count, g.view_count, g.created_at
"""

# rowid breaks ties so equal sort keys still page deterministically.
ORDER_BY = {
    "newest": "g.created_at DESC, g.rowid DESC",
    "highest_rated": "g.avg_rating DESC, g.rating_count DESC, g.created_at DESC, g.rowid DESC",
    "most_viewed": "g.view_count DESC, g.created_at DESC, g.rowid DESC",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Store:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success, rolls back on error and always closes.

        ``sqlite3.Error`` is re-raised as ``RepositoryError``.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=10.0)
        except sqlite3.Error as exc:
            raise RepositoryError(f"cannot open database {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise RepositoryError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(SCHEMA_SQL)
            conn.executemany(
                "INSERT OR IGNORE INTO categories(id, name, keywords) VALUES (?, ?, ?)",
                [(cat.id, cat.name, json.dumps(cat.keywords)) for cat in DEFAULT_CATEGORIES],
            )

    def create_generation(
        self,
        project_idea: str,
        experience_level: str,
        hook_preset: str,
        files: Sequence[GeneratedFile | dict[str, Any]],
        category_id: int | None = None,
    ) -> Generation:
        """Store a new generation and return it as read back from the database.

        When ``category_id`` is omitted the category is detected from the
        project idea.
        """
        if not project_idea.strip():
            raise InvalidInputError("project idea must not be empty")
        if category_id is None:
            category_id = self.get_category_by_keywords(project_idea)

        # Validates enum-like fields and the file payload before touching the database.
        draft = Generation(
            id=uuid.uuid4().hex,
            project_idea=project_idea,
            experience_level=experience_level,
            hook_preset=hook_preset,
            files=[GeneratedFile.model_validate(f) for f in files],
            category_id=category_id,
            created_at=datetime.now(timezone.utc),
        )

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO generations(
                    id, project_idea, experience_level, hook_preset, files, category_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.id,
                    draft.project_idea,
                    draft.experience_level,
                    draft.hook_preset,
                    json.dumps([f.model_dump() for f in draft.files], ensure_ascii=False),
                    draft.category_id,
                    draft.created_at.isoformat(),
                ),
            )

        logger.info("generation_created", generation_id=draft.id, category_id=draft.category_id)
        return self.get_generation(draft.id)

    def get_generation(self, generation_id: str) -> Generation:
        with self._connect() as conn:
            row = conn.execute(
                f"""
                SELECT {GENERATION_COLUMNS}
                FROM generations g
                LEFT JOIN categories c ON g.category_id = c.id
                WHERE g.id = ?
                """,
                (generation_id,),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"generation {generation_id} not found")
        return _row_to_generation(row)

    def list_generations(self, list_filter: ListFilter) -> tuple[list[Generation], int]:
        where = ""
        params: tuple = ()
        if list_filter.category_id is not None:
            where = " WHERE g.category_id = ?"
            params = (list_filter.category_id,)

        order_by = ORDER_BY.get(list_filter.sort_by, ORDER_BY["newest"])
        offset = (list_filter.page - 1) * list_filter.page_size

        with self._connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM generations g{where}", params).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT {GENERATION_COLUMNS}
                FROM generations g
                LEFT JOIN categories c ON g.category_id = c.id
                {where}
                ORDER BY {order_by}
                LIMIT ? OFFSET ?
                """,
                (*params, list_filter.page_size, offset),
            ).fetchall()

        return [_row_to_generation(row) for row in rows], int(total)

    def increment_view_count(self, generation_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE generations SET view_count = view_count + 1 WHERE id = ?",
                (generation_id,),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"generation {generation_id} not found")

    def record_view(self, generation_id: str, ip_hash: str) -> bool:
        """Record a view fact; return ``True`` only when it is the first for this viewer.

        The view count is incremented in the same transaction as the insert,
        so concurrent calls for one (generation, viewer) pair count once.
        """
        if not generation_id or not ip_hash:
            raise InvalidInputError("generation id and ip hash are required")

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            exists = conn.execute("SELECT 1 FROM generations WHERE id = ?", (generation_id,)).fetchone()
            if exists is None:
                raise RecordNotFoundError(f"generation {generation_id} not found")

            cursor = conn.execute(
                "INSERT OR IGNORE INTO views(generation_id, ip_hash, created_at) VALUES (?, ?, ?)",
                (generation_id, ip_hash, _now()),
            )
            is_new = cursor.rowcount == 1
            if is_new:
                conn.execute(
                    "UPDATE generations SET view_count = view_count + 1 WHERE id = ?",
                    (generation_id,),
                )
        return is_new

    def create_or_update_rating(self, generation_id: str, score: int, voter_hash: str) -> None:
        """Insert or replace a voter's score and recompute the generation's aggregates atomically."""
        if score < 1 or score > 5:
            raise InvalidInputError("score must be between 1 and 5")

        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO ratings(generation_id, voter_hash, score, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(generation_id, voter_hash)
                DO UPDATE SET score = excluded.score, created_at = excluded.created_at
                """,
                (generation_id, voter_hash, score, _now()),
            )
            conn.execute(
                """
                UPDATE generations
                SET avg_rating = (
                        SELECT COALESCE(ROUND(AVG(score), 2), 0) FROM ratings WHERE generation_id = ?
                    ),
                    rating_count = (SELECT COUNT(*) FROM ratings WHERE generation_id = ?)
                WHERE id = ?
                """,
                (generation_id, generation_id, generation_id),
            )

    def get_user_rating(self, generation_id: str, voter_hash: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT score FROM ratings WHERE generation_id = ? AND voter_hash = ?",
                (generation_id, voter_hash),
            ).fetchone()
        return int(row["score"]) if row else 0

    def count_ratings(self, generation_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM ratings WHERE generation_id = ?", (generation_id,)
            ).fetchone()
        return int(row[0])

    def get_categories(self) -> list[Category]:
        with self._connect() as conn:
            rows = conn.execute("SELECT id, name, keywords FROM categories ORDER BY id").fetchall()
        return [
            Category(id=row["id"], name=row["name"], keywords=json.loads(row["keywords"] or "[]"))
            for row in rows
        ]

    def get_category_by_keywords(self, text: str) -> int:
        """Detect the category for ``text``, using the default categories if the table is unreadable."""
        try:
            categories = self.get_categories()
        except RepositoryError as exc:
            logger.warning("categories_unavailable_using_defaults", error=str(exc))
            categories = []
        if not categories:
            categories = list(DEFAULT_CATEGORIES)
        return CategoryMatcher(categories).match(text)


def _row_to_generation(row: sqlite3.Row) -> Generation:
    return Generation(
        id=row["id"],
        project_idea=row["project_idea"],
        experience_level=row["experience_level"],
        hook_preset=row["hook_preset"],
        files=json.loads(row["files"]),
        category_id=row["category_id"],
        category_name=row["category_name"],
        avg_rating=float(row["avg_rating"]),
        rating_count=int(row["rating_count"]),
        view_count=int(row["view_count"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
