import json

import pytest
from typer.testing import CliRunner

from activity_tracker.cli import app

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path):
    config_dir = tmp_path / "home"

    def _invoke(*args, **kwargs):
        return runner.invoke(app, ["--config-dir", str(config_dir), *args], **kwargs)

    return _invoke


def test_activities_lists_defaults(invoke):
    result = invoke("activities")
    assert result.exit_code == 0, result.output
    for name in ("Work", "Learning", "Exercise"):
        assert name in result.output
    assert "No sessions yet" in result.output


def test_add_and_duplicate(invoke):
    result = invoke("add", "Reading", "--color", "#ddA0dd")
    assert result.exit_code == 0, result.output
    assert "Added Reading" in result.output

    duplicate = invoke("add", "reading")
    assert duplicate.exit_code == 1
    assert "already exists" in duplicate.output


def test_timer_lifecycle_across_invocations(invoke):
    started = invoke("start", "work")
    assert started.exit_code == 0, started.output
    assert "Started Work" in started.output

    assert "Work" in invoke("status").output
    again = invoke("start", "Learning")
    assert again.exit_code == 1
    assert "already running" in again.output

    stopped = invoke("stop")
    assert stopped.exit_code == 0, stopped.output
    assert "Stopped Work" in stopped.output
    assert "Idle" in invoke("status").output
    assert "Work" in invoke("sessions").output

    idle_stop = invoke("stop")
    assert idle_stop.exit_code == 1


def test_start_unknown_activity(invoke):
    result = invoke("start", "Juggling")
    assert result.exit_code == 1
    assert "No activity found" in result.output


def test_delete_by_name(invoke):
    result = invoke("delete", "Exercise", "--yes")
    assert result.exit_code == 0, result.output
    assert "Exercise" not in invoke("activities").output


def test_export_import_and_clear(invoke, tmp_path):
    backup = tmp_path / "backup.json"
    assert invoke("export", str(backup)).exit_code == 0
    data = json.loads(backup.read_text(encoding="utf-8"))
    assert {a["name"] for a in data["activities"]} == {"Work", "Learning", "Exercise"}

    cleared = invoke("clear", "--yes")
    assert cleared.exit_code == 0, cleared.output

    imported = invoke("import", str(backup))
    assert imported.exit_code == 0, imported.output
    assert "Imported 3 activities" in imported.output

    missing = invoke("import", str(tmp_path / "nope.json"))
    assert missing.exit_code == 1


def test_clear_requires_confirmation(invoke):
    result = invoke("clear", input="n\n")
    assert result.exit_code != 0
    assert "Work" in invoke("activities").output


def test_stats(invoke):
    result = invoke("stats")
    assert result.exit_code == 0, result.output
    assert "Today:" in result.output
    assert "Sessions today: 0" in result.output


def test_mirror_without_backend(invoke):
    connect = invoke("mirror", "connect")
    assert connect.exit_code == 1
    assert "No mirror backend configured" in connect.output

    sync = invoke("mirror", "sync")
    assert sync.exit_code == 0
    assert "Mirror status: off" in sync.output


def test_add_help_lists_swatches(invoke):
    result = invoke("add", "--help")
    assert result.exit_code == 0, result.output
    assert "#FFEAA7" in result.output
