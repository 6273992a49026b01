"""Pydantic models shared across the store, gallery service, and CLI layers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

SortOption = Literal["newest", "highest_rated", "most_viewed"]
ExperienceLevel = Literal["beginner", "novice", "expert"]
HookPreset = Literal["light", "basic", "default", "strict"]


class GeneratedFile(BaseModel):
    """One file produced by the generation pipeline."""

    path: str
    content: str
    type: Literal["kickoff", "steering", "hook"]


class Category(BaseModel):
    """A gallery category and the keywords used to detect it."""

    id: int = Field(gt=0)
    name: str
    keywords: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class Generation(BaseModel):
    """A stored generation as browsed in the gallery."""

    id: str
    project_idea: str
    experience_level: ExperienceLevel
    hook_preset: HookPreset
    files: list[GeneratedFile] = Field(default_factory=list)
    category_id: int
    category_name: str = ""
    avg_rating: float = Field(default=0.0, ge=0.0, le=5.0)
    rating_count: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    created_at: datetime


class ListFilter(BaseModel):
    """Normalized listing parameters handed to the repository."""

    category_id: int | None = None
    sort_by: SortOption = "newest"
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class ListRequest(BaseModel):
    """Raw listing parameters as supplied by a caller; normalized by the service."""

    category_id: int | None = None
    sort_by: str = ""
    page: int = 1
    page_size: int = 0


class ListResponse(BaseModel):
    """One page of gallery results."""

    items: list[Generation]
    total: int
    page: int
    page_size: int
    total_pages: int
