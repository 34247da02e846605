from __future__ import annotations

import io

from rich.console import Console

from conftest import FakeOrchestrator, write_artifact
from tubescribe.jobs import Failed, Log, Progress, Status
from tubescribe.screens import BROWSE_FIRST_ROW, App
from tubescribe.services import Storage
from tubescribe.terminal import KeyEvent
from tubescribe.ui import build_screen


def draw(app: App, width: int = 80, height: int = 24) -> list[str]:
    console = Console(file=io.StringIO(), width=width, height=height, record=True, color_system=None)
    console.print(build_screen(app, width, height))
    return console.export_text().splitlines()


def press(app: App, *keys: str) -> None:
    for key in keys:
        app.handle_event(KeyEvent(key))


def test_home_menu(app: App) -> None:
    screen = "\n".join(draw(app))
    for label in ("New transcript", "Browse transcripts", "Browse reports", "Settings"):
        assert label in screen
    assert "q quit" in screen


def test_frame_fills_the_terminal(app: App) -> None:
    assert len(draw(app, 80, 24)) == 24


def test_form_shows_fields_and_errors(app: App) -> None:
    press(app, "ENTER", "TAB", "TAB", "TAB", "ENTER")
    screen = "\n".join(draw(app))
    assert "Languages: en,es" in screen
    assert "[x] Preserve formatting" in screen
    assert "Error:" in screen


def test_processing_shows_status_progress_and_logs(app: App, orchestrator: FakeOrchestrator) -> None:
    press(app, "ENTER", *"abc", "TAB", "TAB", "TAB", "ENTER")
    job_id = app.screen.job_id
    orchestrator.send(Progress(job_id, 0.25), Status(job_id, "Fetching transcript"), Log(job_id, "Fetching transcript"))
    app.handle_tick()
    screen = "\n".join(draw(app))
    assert "Processing abc" in screen
    assert "Fetching transcript" in screen
    assert "25%" in screen


def test_failed_run_log_is_visible_on_the_form(app: App, orchestrator: FakeOrchestrator) -> None:
    press(app, "ENTER", *"abc", "TAB", "TAB", "TAB", "ENTER")
    orchestrator.send(Failed(app.screen.job_id, "network error"))
    app.handle_tick()
    screen = "\n".join(draw(app, 100, 30))
    assert "Error: network error" in screen
    assert "Failed: network error" in screen


def test_browse_rows_line_up_with_mouse_geometry(app: App, storage: Storage) -> None:
    write_artifact(storage.transcript_path("first"), "x", age_seconds=10)
    write_artifact(storage.transcript_path("second"), "y", age_seconds=20)
    press(app, "DOWN", "ENTER")
    lines = draw(app)
    assert "transcript_first.txt" in lines[BROWSE_FIRST_ROW]
    assert "transcript_second.txt" in lines[BROWSE_FIRST_ROW + 1]


def test_empty_browse_list(app: App) -> None:
    press(app, "DOWN", "ENTER")
    assert "No artifacts match." in "\n".join(draw(app))


def test_viewer_shows_rendered_report(app: App, storage: Storage) -> None:
    write_artifact(storage.report_path("abc"), "# Heading\n\n| a | b |\n|---|---|\n| 1 | 2 |\n")
    press(app, "DOWN", "DOWN", "ENTER", "ENTER")
    screen = "\n".join(draw(app))
    assert "Heading" in screen
    assert "┌───┬───┐" in screen
    assert "# Heading" not in screen


def test_settings_lists_configuration(app: App) -> None:
    press(app, "4", "ENTER")
    screen = "\n".join(draw(app, 120, 30))
    assert "llama3.1" in screen
    assert "TUBESCRIBE_ALLOW_REPORTS" in screen


def test_notice_replaces_help_line(app: App) -> None:
    app.notice = "Deleted 2 file(s)."
    assert "Deleted 2 file(s)." in "\n".join(draw(app))
