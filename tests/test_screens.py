from __future__ import annotations

from pathlib import Path

from conftest import FakeOrchestrator, write_artifact
from tubescribe.jobs import Complete, Failed, Log, Progress, Status
from tubescribe.screens import (
    App,
    ArtifactFilter,
    BrowseScreen,
    HomeScreen,
    InputField,
    NewRequestScreen,
    ProcessingScreen,
    SettingsScreen,
    ViewScreen,
    browser_rows,
    viewer_geometry,
)
from tubescribe.services import ArtifactEntry, ArtifactKind, Storage
from tubescribe.terminal import KeyEvent, MouseEvent, Tick


def press(app: App, *keys: str) -> None:
    for key in keys:
        app.handle_event(KeyEvent(key))


def type_text(app: App, text: str) -> None:
    press(app, *list(text))


def submit(app: App, identifier: str) -> None:
    press(app, "ENTER")
    type_text(app, identifier)
    press(app, "TAB", "TAB", "TAB", "ENTER")


def seed(storage: Storage) -> None:
    write_artifact(storage.transcript_path("alpha"), "[0.0-1.0s] alpha line", age_seconds=300)
    write_artifact(storage.transcript_path("beta"), "[0.0-1.0s] beta line", age_seconds=200)
    write_artifact(storage.report_path("alpha"), "# Alpha report\n\nBody text.", age_seconds=100)


def test_starts_on_home(app: App) -> None:
    assert isinstance(app.screen, HomeScreen)
    assert app.screen.selected_option == 0


def test_home_selection_is_clamped(app: App) -> None:
    press(app, "UP")
    assert app.screen.selected_option == 0
    press(app, "DOWN", "DOWN", "DOWN", "DOWN", "DOWN")
    assert app.screen.selected_option == 3
    press(app, "2")
    assert app.screen.selected_option == 1


def test_entering_the_form_resets_it(app: App) -> None:
    press(app, "ENTER")
    type_text(app, "xyz")
    press(app, "ESC", "ENTER")
    screen = app.screen
    assert isinstance(screen, NewRequestScreen)
    assert screen.form.identifier.value == ""
    assert screen.form.languages.value == "en,es"
    assert screen.form.preserve_formatting and screen.form.generate_report
    assert screen.form.focus == 0


def test_focus_cycles_modulo_four(app: App) -> None:
    press(app, "ENTER")
    form = app.screen.form
    press(app, "TAB", "TAB", "TAB", "TAB")
    assert form.focus == 0
    press(app, "SHTAB")
    assert form.focus == 3
    press(app, "ENTER")
    assert isinstance(app.screen, NewRequestScreen)


def test_toggles_only_respond_when_focused(app: App) -> None:
    press(app, "ENTER")
    form = app.screen.form
    press(app, " ")
    assert form.identifier.value == " "
    press(app, "TAB", "TAB", " ")
    assert form.preserve_formatting is False
    press(app, "TAB", " ")
    assert form.generate_report is False
    assert form.identifier.value == " "


def test_q_is_text_while_typing(app: App) -> None:
    press(app, "ENTER", "q")
    assert not app.should_quit
    assert app.screen.form.identifier.value == "q"
    press(app, "TAB", "TAB", "q")
    assert app.should_quit


def test_ctrl_c_always_quits(app: App) -> None:
    press(app, "ENTER", "QUIT")
    assert app.should_quit


def test_valid_submission_spawns_one_job(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc_DEF-123")

    screen = app.screen
    assert isinstance(screen, ProcessingScreen)
    assert len(orchestrator.spawned) == 1
    job_id, request = orchestrator.spawned[0]
    assert screen.job_id == job_id
    assert request.identifier == "abc_DEF-123"
    assert request.languages == ("en", "es")
    assert request.preserve_formatting and request.generate_report


def test_failed_job_returns_to_form_with_error(app: App, orchestrator: FakeOrchestrator, storage: Storage) -> None:
    submit(app, "abc_DEF-123")
    job_id = app.screen.job_id

    orchestrator.send(Status(job_id, "Fetching"), Log(job_id, "Fetching"), Failed(job_id, "network error"))
    app.handle_tick()

    screen = app.screen
    assert isinstance(screen, NewRequestScreen)
    assert screen.form.error == "network error"
    assert screen.form.identifier.value == "abc_DEF-123"
    assert app.last_run is not None
    assert any("network error" in line for line in app.last_run.logs)
    assert storage.list_artifacts() == []


def test_path_traversal_is_rejected_at_input(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "../etc/passwd")
    screen = app.screen
    assert isinstance(screen, NewRequestScreen)
    assert screen.form.error
    assert orchestrator.spawned == []


def test_empty_identifier_does_not_transition(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "")
    assert isinstance(app.screen, NewRequestScreen)
    assert orchestrator.spawned == []


def test_progress_is_clamped_on_receipt(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc")
    screen = app.screen
    orchestrator.send(Progress(screen.job_id, -0.5))
    app.handle_tick()
    assert screen.progress == 0.0
    orchestrator.send(Progress(screen.job_id, 1.7))
    app.handle_tick()
    assert screen.progress == 1.0


def test_messages_from_other_jobs_are_ignored(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc")
    screen = app.screen
    orchestrator.send(Progress(99, 0.5), Status(99, "other"), Complete(99))
    app.handle_tick()
    assert app.screen is screen
    assert screen.progress == 0.0
    assert screen.status != "other"


def test_unrelated_events_do_not_leave_processing(app: App) -> None:
    submit(app, "abc")
    screen = app.screen
    press(app, "ENTER", "DOWN", "x")
    app.handle_event(Tick())
    app.handle_tick()
    assert app.screen is screen


def test_log_ring_is_bounded(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc")
    screen = app.screen
    orchestrator.send(*[Log(screen.job_id, f"line {index}") for index in range(25)])
    app.handle_tick()
    assert len(screen.logs) == 10
    assert screen.logs[-1].endswith("line 24")
    assert screen.logs[0].startswith("[")


def test_messages_are_folded_in_order(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc")
    job_id = app.screen.job_id
    orchestrator.send(Progress(job_id, 0.5), Status(job_id, "Almost"), Progress(job_id, 1.0), Complete(job_id))
    app.handle_tick()
    assert isinstance(app.screen, HomeScreen)
    assert app.last_run is not None
    assert app.last_run.progress == 1.0
    assert app.last_run.status == "Almost"
    assert "abc" in app.notice


def test_escape_cancels_the_job_and_keeps_the_form(app: App, orchestrator: FakeOrchestrator) -> None:
    submit(app, "abc")
    job_id = app.screen.job_id
    press(app, "ESC")
    assert orchestrator.cancelled == [job_id]
    screen = app.screen
    assert isinstance(screen, NewRequestScreen)
    assert screen.form.identifier.value == "abc"

    orchestrator.send(Failed(job_id, "Cancelled"))
    app.handle_tick()
    assert app.screen is screen
    assert screen.form.error == ""


def test_browse_lists_and_filters(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER")
    screen = app.screen
    assert isinstance(screen, BrowseScreen)
    assert screen.filter is ArtifactFilter.TRANSCRIPTS
    assert [entry.name for entry in screen.window.items] == ["transcript_beta.txt", "transcript_alpha.txt"]

    press(app, "1")
    assert len(screen.window.items) == 3
    press(app, "3")
    assert [entry.kind for entry in screen.window.items] == [ArtifactKind.REPORT]


def test_search_combines_with_filter(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER", "1", "/")
    screen = app.screen
    assert app.capturing_text()
    type_text(app, "ALPHA")
    assert {entry.name for entry in screen.window.items} == {"transcript_alpha.txt", "report_alpha.md"}
    press(app, "ENTER")
    assert not screen.searching
    press(app, "2")
    assert [entry.name for entry in screen.window.items] == ["transcript_alpha.txt"]

    press(app, "/", "q")
    assert not app.should_quit
    assert screen.window.items == []
    press(app, "ESC")
    assert screen.search.value == ""
    assert len(screen.window.items) == 2


def test_browse_sees_new_files_on_refresh(app: App, storage: Storage) -> None:
    press(app, "DOWN", "ENTER")
    screen = app.screen
    assert screen.window.items == []
    storage.save_transcript("fresh", ["[0.0-1.0s] new"])
    press(app, "r")
    assert [entry.identifier for entry in screen.window.items] == ["fresh"]


def test_delete_selected_entry(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER")
    screen = app.screen
    target = screen.window.selected_item()
    press(app, "d")
    assert not target.path.exists()
    assert target.name not in [entry.name for entry in screen.window.items]
    assert "Deleted 1" in app.notice


def test_delete_marked_entries(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER", "1", " ", "DOWN", " ", "DELETE")
    screen = app.screen
    assert [entry.name for entry in screen.window.items] == ["transcript_alpha.txt"]
    assert screen.window.marks == set()


def test_delete_outside_managed_directories_is_refused(app: App, storage: Storage, tmp_path: Path) -> None:
    seed(storage)
    outside = write_artifact(tmp_path / "outside.txt", "keep me")
    press(app, "DOWN", "ENTER", "1")
    screen = app.screen
    before = [entry.name for entry in screen.window.items]
    stat = outside.stat()
    rogue = ArtifactEntry(outside, "transcript_rogue.txt", ArtifactKind.TRANSCRIPT, stat.st_size, screen.window.items[0].modified)
    screen.window.replace_items([rogue])

    press(app, "d")

    assert outside.read_text(encoding="utf-8") == "keep me"
    assert "Refusing" in app.notice
    assert [entry.name for entry in screen.window.items] == before


def test_view_report_and_back(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "DOWN", "ENTER")
    browse = app.screen
    assert browse.filter is ArtifactFilter.REPORTS
    press(app, "ENTER")

    view = app.screen
    assert isinstance(view, ViewScreen)
    width, rows = viewer_geometry(80, 24)
    assert view.render_width == width
    assert view.window.viewport_size == rows
    assert view.lines[0].plain == "Alpha report"

    press(app, "ESC")
    assert app.screen is browse
    assert browse.filter is ArtifactFilter.REPORTS


def test_view_relayouts_on_resize(app: App, storage: Storage) -> None:
    write_artifact(storage.transcript_path("long"), "\n".join(f"[{i}.0-{i + 1}.0s] words " * 4 for i in range(60)))
    press(app, "DOWN", "ENTER", "ENTER")
    view = app.screen
    assert isinstance(view, ViewScreen)
    press(app, "END")
    assert view.window.offset == len(view.lines) - view.window.viewport_size

    app.resize(30, 12)
    width, rows = viewer_geometry(30, 12)
    assert view.render_width == width
    assert all(line.width <= width for line in view.lines)
    window = view.window
    assert window.offset + window.viewport_size <= max(len(window.items), window.viewport_size)
    assert window.viewport_size == rows


def test_view_scroll_keys(app: App, storage: Storage) -> None:
    write_artifact(storage.transcript_path("long"), "\n".join(f"line {i}" for i in range(100)))
    press(app, "DOWN", "ENTER", "ENTER")
    window = app.screen.window
    press(app, "DOWN", "DOWN")
    assert window.offset == 2
    press(app, "PGDN")
    assert window.offset == 2 + window.viewport_size
    press(app, "g")
    assert window.offset == 0
    press(app, "G")
    assert window.offset == 100 - window.viewport_size
    app.handle_event(MouseEvent("SCROLL_UP", 0, 10))
    assert window.offset == 97 - window.viewport_size


def test_browse_mouse_support(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER", "1")
    window = app.screen.window
    app.handle_event(MouseEvent("SCROLL_DOWN", 0, 0))
    assert window.selected == 1
    app.handle_event(MouseEvent("CLICK", 10, 5 + 2))
    assert window.selected == 2
    app.handle_event(MouseEvent("CLICK", 10, 0))
    assert window.selected == 2


def test_browse_viewport_follows_resize(app: App, storage: Storage) -> None:
    seed(storage)
    press(app, "DOWN", "ENTER")
    app.resize(80, 40)
    assert app.screen.window.viewport_size == browser_rows(40)


def test_settings_round_trip(app: App) -> None:
    press(app, "4", "ENTER")
    assert isinstance(app.screen, SettingsScreen)
    press(app, "ESC")
    assert isinstance(app.screen, HomeScreen)


def test_input_field_editing() -> None:
    text_field = InputField("Name")
    for key in "helo":
        text_field.handle_key(key)
    text_field.handle_key("LEFT")
    text_field.handle_key("l")
    assert text_field.value == "hello"
    text_field.handle_key("HOME")
    text_field.handle_key("DELETE")
    assert text_field.value == "ello"
    text_field.handle_key("END")
    text_field.handle_key("BACKSPACE")
    assert (text_field.value, text_field.cursor) == ("ell", 3)
    assert text_field.handle_key("PGUP") is False
    assert text_field.is_valid()
    text_field.clear()
    assert not text_field.is_valid()
