from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from prompt_gallery.cli import app
from prompt_gallery.models import ListFilter
from prompt_gallery.store import Store

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch: pytest.MonkeyPatch, sample_files):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GALLERY_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("GALLERY_LOG_LEVEL", "ERROR")
    files_path = tmp_path / "files.json"
    files_path.write_text(json.dumps(sample_files), encoding="utf-8")
    return tmp_path, files_path


def _only_generation_id(db_path) -> str:
    items, total = Store(db_path).list_generations(ListFilter())
    assert total == 1
    return items[0].id


def test_add_and_list_given_new_generation_when_listed_then_it_appears_with_detected_category(cli_env) -> None:
    # Given
    tmp_path, files_path = cli_env

    # When
    added = runner.invoke(app, ["add", "A GraphQL gateway", "--files", str(files_path), "--level", "expert"])
    listed = runner.invoke(app, ["list", "--sort", "newest"])

    # Then
    assert added.exit_code == 0, added.output
    assert "category=API" in added.output
    assert listed.exit_code == 0, listed.output
    assert "[API]" in listed.output
    assert "page 1/1 page_size=20 total=1" in listed.output


def test_list_given_invalid_sort_when_listed_then_command_fails(cli_env) -> None:
    # When
    result = runner.invoke(app, ["list", "--sort", "alphabetical"])

    # Then
    assert result.exit_code != 0
    assert "invalid sort option" in result.output


def test_show_and_rate_given_same_client_when_repeated_then_view_counts_once_and_rating_is_replaced(
    cli_env,
) -> None:
    # Given
    tmp_path, files_path = cli_env
    runner.invoke(app, ["add", "A flutter journal", "--files", str(files_path)])
    generation_id = _only_generation_id(tmp_path / "cli.db")

    # When
    runner.invoke(app, ["show", generation_id, "--ip", "10.0.0.5"])
    runner.invoke(app, ["rate", generation_id, "5", "--ip", "10.0.0.5"])
    rated = runner.invoke(app, ["rate", generation_id, "2", "--ip", "10.0.0.5"])
    shown = runner.invoke(app, ["show", generation_id, "--ip", "10.0.0.5"])

    # Then
    assert rated.exit_code == 0, rated.output
    assert shown.exit_code == 0, shown.output
    assert '"view_count": 1' in shown.output
    assert '"rating_count": 1' in shown.output
    assert "Your rating: 2" in shown.output


def test_rate_given_out_of_range_score_when_rated_then_command_fails(cli_env) -> None:
    # Given
    tmp_path, files_path = cli_env
    runner.invoke(app, ["add", "A shell helper", "--files", str(files_path)])
    generation_id = _only_generation_id(tmp_path / "cli.db")

    # When
    result = runner.invoke(app, ["rate", generation_id, "6"])

    # Then
    assert result.exit_code != 0
    assert "between 1 and 5" in result.output


def test_show_given_unknown_id_when_shown_then_command_fails(cli_env) -> None:
    # When
    result = runner.invoke(app, ["show", "missing-id"])

    # Then
    assert result.exit_code != 0
    assert "generation not found" in result.output


def test_categories_and_classify_given_defaults_when_invoked_then_priority_order_is_printed(cli_env) -> None:
    # When
    categories = runner.invoke(app, ["categories"])
    classified = runner.invoke(app, ["classify", "Build an api-server"])

    # Then
    assert categories.exit_code == 0, categories.output
    lines = [line for line in categories.output.splitlines() if line.strip()]
    assert lines[0].startswith("1  API:")
    assert lines[-1] == "5  Other: (fallback)"
    assert classified.output.strip() == "1"


def test_export_given_stored_generation_when_exported_then_files_are_written(cli_env) -> None:
    # Given
    tmp_path, files_path = cli_env
    runner.invoke(app, ["add", "A vue storefront", "--files", str(files_path)])
    generation_id = _only_generation_id(tmp_path / "cli.db")

    # When
    result = runner.invoke(app, ["export", generation_id, "--output-root", str(tmp_path / "out")])

    # Then
    assert result.exit_code == 0, result.output
    assert (tmp_path / "out" / generation_id / "files" / "kickoff.md").exists()
    assert (tmp_path / "out" / generation_id / "generation.json").exists()
