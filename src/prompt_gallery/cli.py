"""Typer-based CLI for storing, browsing, and rating gallery generations."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import ValidationError

from prompt_gallery.categories import match_category
from prompt_gallery.config import load_settings
from prompt_gallery.errors import GalleryError, RateLimitedError, RecordNotFoundError, RepositoryError
from prompt_gallery.exporter import export_generation
from prompt_gallery.logger import get_logger, setup_logging
from prompt_gallery.models import Generation, ListRequest
from prompt_gallery.ratelimit import RateLimiter
from prompt_gallery.service import GalleryService, hash_client_ip
from prompt_gallery.store import Store

app = typer.Typer(add_completion=False, help="prompt-gallery: browse, view, and rate stored generations")

DEFAULT_OUTPUT_ROOT = Path("exports")
DEFAULT_CLIENT_IP = "127.0.0.1"


def _open_store(db_path: Path | None) -> Store:
    store = Store(db_path or load_settings().db_path)
    store.init_db()
    return store


def _build_service(store: Store) -> GalleryService:
    """Wire the service the same way for every command."""
    settings = load_settings()
    setup_logging(settings.log_level)
    return GalleryService.from_settings(
        store,
        settings,
        rate_limiter=RateLimiter.for_ratings(settings.rating_limit_per_hour),
        logger=get_logger("prompt_gallery.service"),
    )


def _echo_generation_line(generation: Generation) -> None:
    preview = generation.project_idea.replace("\n", " ")
    if len(preview) > 60:
        preview = preview[:57] + "..."
    typer.echo(
        f"{generation.id}  [{generation.category_name or generation.category_id}] "
        f"rating={generation.avg_rating:.2f} ({generation.rating_count}) "
        f"views={generation.view_count}  {preview}"
    )


@app.command("init-db")
def init_db(
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Initialize the SQLite schema and seed the default categories."""
    store = _open_store(db_path)
    typer.echo(f"DB initialized: {store.db_path}")


@app.command("add")
def add(
    project_idea: str = typer.Argument(..., help="Free-text project description"),
    files_path: Path = typer.Option(..., "--files", help="JSON file with a list of {path, content, type}"),
    experience_level: str = typer.Option("beginner", "--level", help="beginner, novice, or expert"),
    hook_preset: str = typer.Option("default", "--preset", help="light, basic, default, or strict"),
    category_id: int | None = typer.Option(None, "--category", help="Override automatic categorisation"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Store a generation; its category is detected from the project idea unless given."""
    try:
        files = json.loads(files_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise typer.BadParameter(f"Cannot read files JSON: {exc}") from exc

    store = _open_store(db_path)
    try:
        generation = store.create_generation(
            project_idea=project_idea,
            experience_level=experience_level,
            hook_preset=hook_preset,
            files=files,
            category_id=category_id,
        )
    except (ValidationError, GalleryError, RepositoryError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    typer.echo(f"Generation stored. id={generation.id} category={generation.category_name}")


@app.command("list")
def list_generations(
    category_id: int | None = typer.Option(None, "--category", help="Only show this category"),
    sort_by: str = typer.Option("", "--sort", help="newest, highest_rated, or most_viewed"),
    page: int = typer.Option(1, help="Page number"),
    page_size: int = typer.Option(0, "--page-size", help="Items per page (0 uses the default)"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """List one page of the gallery."""
    service = _build_service(_open_store(db_path))
    try:
        response = service.list_generations(
            ListRequest(category_id=category_id, sort_by=sort_by, page=page, page_size=page_size)
        )
    except GalleryError as exc:
        raise typer.BadParameter(str(exc)) from exc

    for generation in response.items:
        _echo_generation_line(generation)
    typer.echo(
        f"page {response.page}/{response.total_pages} "
        f"page_size={response.page_size} total={response.total}"
    )


@app.command("show")
def show(
    generation_id: str = typer.Argument(..., help="Generation ID"),
    client_ip: str = typer.Option(DEFAULT_CLIENT_IP, "--ip", help="Viewer address used for view deduplication"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Show a generation, counting a view once per viewer."""
    service = _build_service(_open_store(db_path))
    ip_hash = hash_client_ip(client_ip)
    try:
        generation = service.get_generation_with_view(generation_id, ip_hash)
        user_rating = service.get_user_rating(generation_id, ip_hash)
    except GalleryError as exc:
        raise typer.BadParameter(str(exc)) from exc

    typer.echo(generation.model_dump_json(indent=2))
    typer.echo(f"Your rating: {user_rating or 'not rated'}")


@app.command("rate")
def rate(
    generation_id: str = typer.Argument(..., help="Generation ID"),
    score: int = typer.Argument(..., help="Score from 1 to 5"),
    client_ip: str = typer.Option(DEFAULT_CLIENT_IP, "--ip", help="Voter address; one vote per address"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Rate a generation; rating again replaces the previous score."""
    service = _build_service(_open_store(db_path))
    try:
        service.rate_generation(generation_id, score, hash_client_ip(client_ip), client_ip)
    except RateLimitedError as exc:
        typer.echo(f"Rate limited. Retry after {exc.retry_after}s", err=True)
        raise typer.Exit(code=2) from exc
    except GalleryError as exc:
        raise typer.BadParameter(str(exc)) from exc

    typer.echo(f"Rating saved. id={generation_id} score={score}")


@app.command("categories")
def categories(
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Print the categories in priority order."""
    service = _build_service(_open_store(db_path))
    for category in service.get_categories():
        keywords = ", ".join(category.keywords) or "(fallback)"
        typer.echo(f"{category.id}  {category.name}: {keywords}")


@app.command("classify")
def classify(
    text: str = typer.Argument(..., help="Project description to categorise"),
) -> None:
    """Print the default category id detected for a description."""
    typer.echo(str(match_category(text)))


@app.command("export")
def export(
    generation_id: str = typer.Argument(..., help="Generation ID"),
    output_root: Path = typer.Option(DEFAULT_OUTPUT_ROOT, help="Export output directory"),
    db_path: Path | None = typer.Option(None, "--db", help="SQLite database path"),
) -> None:
    """Write a generation's files, manifest, and summary to disk."""
    store = _open_store(db_path)
    try:
        generation = store.get_generation(generation_id)
    except RecordNotFoundError as exc:
        raise typer.BadParameter(f"Generation not found: {generation_id}") from exc

    try:
        out_dir = export_generation(generation, output_root=output_root)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(f"Exported generation to: {out_dir}")


if __name__ == "__main__":
    app()
