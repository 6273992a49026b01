"""Keyword-based category detection for project ideas.

Categories are checked in ascending id order and the first category with a
matching keyword wins, so a description mentioning both "api" and "react"
lands in API rather than Web App. The category with no keywords is the
fallback and never takes part in matching.
"""

from __future__ import annotations

from collections.abc import Iterable

from prompt_gallery.models import Category

FALLBACK_CATEGORY_ID = 5

# Trimmed from whitespace-delimited words before an exact token comparison.
WORD_PUNCTUATION = ".,;:!?()[]{}\"'"

DEFAULT_CATEGORIES: tuple[Category, ...] = (
    Category(id=1, name="API", keywords=["api", "rest", "graphql", "endpoint", "backend", "server"]),
    Category(id=2, name="CLI", keywords=["cli", "command", "terminal", "shell", "script", "console"]),
    Category(
        id=3,
        name="Web App",
        keywords=["web", "frontend", "react", "vue", "angular", "website", "webapp"],
    ),
    Category(id=4, name="Mobile", keywords=["mobile", "ios", "android", "react native", "flutter", "app"]),
    Category(id=FALLBACK_CATEGORY_ID, name="Other", keywords=[]),
)


def _is_alnum(ch: str) -> bool:
    return ch.isascii() and ch.isalnum()


def contains_word(text: str, keyword: str) -> bool:
    """Return ``True`` when ``keyword`` occurs in ``text`` as a word or phrase.

    Both arguments are expected to be lower-cased already. Phrases (keywords
    with a space) match by plain containment. Single tokens must sit on a word
    boundary, so "application" does not match "app" while "api-server" and
    "rest_api" do match "api".
    """
    if " " in keyword:
        return keyword in text

    for word in text.split():
        if word.strip(WORD_PUNCTUATION) == keyword:
            return True

    if not keyword:
        return False

    idx = text.find(keyword)
    while idx != -1:
        end = idx + len(keyword)
        at_start = idx == 0 or not _is_alnum(text[idx - 1])
        at_end = end >= len(text) or not _is_alnum(text[end])
        if at_start and at_end:
            return True
        idx = text.find(keyword, idx + 1)

    return False


class CategoryMatcher:
    """Resolve free text to a category id using priority-ordered keywords."""

    def __init__(self, categories: Iterable[Category] = DEFAULT_CATEGORIES):
        self.categories: list[Category] = sorted(categories, key=lambda cat: cat.id)
        self.fallback_id = self._resolve_fallback_id(self.categories)

    @staticmethod
    def _resolve_fallback_id(categories: list[Category]) -> int:
        keywordless = [cat.id for cat in categories if not cat.keywords]
        if keywordless:
            return max(keywordless)
        return FALLBACK_CATEGORY_ID

    def match(self, text: str) -> int:
        if not text:
            return self.fallback_id

        lower_text = text.lower()
        for category in self.categories:
            if category.id == self.fallback_id:
                continue
            for keyword in category.keywords:
                if contains_word(lower_text, keyword.lower()):
                    return category.id

        return self.fallback_id


def match_category(text: str) -> int:
    """Match ``text`` against the default categories."""
    return CategoryMatcher(DEFAULT_CATEGORIES).match(text)
