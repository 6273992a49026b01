"""Write a stored generation's files to disk with a JSON manifest and Markdown summary."""

from __future__ import annotations

import json
from pathlib import Path, PurePosixPath

from prompt_gallery.models import Generation


def export_generation(generation: Generation, output_root: Path) -> Path:
    """Write a generation package to disk and return its directory.

    Layout::

        <output_root>/<generation id>/
            generation.json
            README.md
            files/<file path>...

    Args:
        generation: Generation to export.
        output_root: Root directory where generation folders are created.

    Returns:
        The generation-specific directory.

    Raises:
        ValueError: If a generated file path is absolute or escapes ``files/``.
    """
    target_dir = Path(output_root) / generation.id
    files_dir = target_dir / "files"

    # Validate every path before writing anything.
    destinations = [(files_dir / _safe_relative_path(f.path), f.content) for f in generation.files]

    files_dir.mkdir(parents=True, exist_ok=True)
    for destination, content in destinations:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(content, encoding="utf-8")

    manifest = generation.model_dump(mode="json")
    (target_dir / "generation.json").write_text(
        json.dumps(manifest, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    (target_dir / "README.md").write_text(_render_markdown(generation), encoding="utf-8")

    return target_dir


def _safe_relative_path(raw: str) -> PurePosixPath:
    path = PurePosixPath(raw.replace("\\", "/"))
    if path.is_absolute() or not path.parts or ".." in path.parts:
        raise ValueError(f"Refusing to export file outside the package: {raw!r}")
    return path


def _render_markdown(generation: Generation) -> str:
    """Render a human-readable summary of a generation."""
    lines = [
        f"# {generation.category_name or 'Generation'}: {_first_line(generation.project_idea)}",
        "",
        f"- Generation ID: `{generation.id}`",
        f"- Created: `{generation.created_at.isoformat()}`",
        f"- Experience level: `{generation.experience_level}`",
        f"- Hook preset: `{generation.hook_preset}`",
        f"- Rating: `{generation.avg_rating:.2f}` ({generation.rating_count} votes)",
        f"- Views: `{generation.view_count}`",
        "",
        "## Project Idea",
        "",
        generation.project_idea,
        "",
        "## Files",
        "",
    ]

    for item in generation.files:
        lines.append(f"- `files/{item.path}` ({item.type})")

    lines.append("")
    return "\n".join(lines)


def _first_line(text: str, max_len: int = 80) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    if len(line) <= max_len:
        return line
    return line[: max_len - 3] + "..."
