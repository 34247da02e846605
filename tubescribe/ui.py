from __future__ import annotations

from typing import Any

from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from . import __version__
from .screens import (
    FOOTER_ROWS,
    HEADER_ROWS,
    HOME_OPTIONS,
    App,
    BrowseScreen,
    HomeScreen,
    InputField,
    NewRequestScreen,
    ProcessingScreen,
    SettingsScreen,
    ViewScreen,
)
from .util import human_age, humanize_bytes, truncate

SELECTED_STYLE = "bold bright_white on rgb(28,28,28)"

HELP = {
    "home": "↑/↓ or 1-4 choose | Enter open | q quit",
    "form": "Tab/Shift+Tab move | Space toggle | Enter next/submit | Esc back | Ctrl+C quit",
    "processing": "Esc cancel and return to form | q quit",
    "browse": "↑/↓ move | Space mark | d delete | / search | 1 all 2 transcripts 3 reports | r refresh | Enter open | Esc back",
    "search": "Type to filter | Enter keep | Esc clear",
    "view": "↑/↓ scroll | PgUp/PgDn page | g/G top/bottom | Esc back",
    "settings": "Esc back | q quit",
}


def screen_title(app: App) -> str:
    screen = app.screen
    if isinstance(screen, NewRequestScreen):
        return "New transcript"
    if isinstance(screen, ProcessingScreen):
        return f"Processing {screen.identifier}"
    if isinstance(screen, BrowseScreen):
        return f"Browse {screen.filter.value.lower()}"
    if isinstance(screen, ViewScreen):
        return screen.entry.name
    if isinstance(screen, SettingsScreen):
        return "Settings"
    return "Home"


def help_key(app: App) -> str:
    screen = app.screen
    if isinstance(screen, NewRequestScreen):
        return "form"
    if isinstance(screen, ProcessingScreen):
        return "processing"
    if isinstance(screen, BrowseScreen):
        return "search" if screen.searching else "browse"
    if isinstance(screen, ViewScreen):
        return "view"
    if isinstance(screen, SettingsScreen):
        return "settings"
    return "home"


def render_header(app: App, width: int) -> Panel:
    title = truncate(f"tubescribe {__version__} | {screen_title(app)}", max(width - 4, 1))
    return Panel(Text(title, style="bold", no_wrap=True, overflow="ellipsis"), border_style="bright_blue")


def render_footer(app: App, width: int) -> Panel:
    max_chars = max(width - 4, 1)
    if app.notice:
        line = Text(truncate(app.notice, max_chars), style="bold yellow", no_wrap=True)
    else:
        line = Text(truncate(HELP[help_key(app)], max_chars), style="magenta", no_wrap=True)
    return Panel(line, border_style="blue")


def render_home(screen: HomeScreen, app: App) -> Panel:
    table = Table(box=None, show_header=False, expand=True, padding=(0, 1))
    table.add_column("Sel", width=2)
    table.add_column("#", justify="right", style="dim", width=2)
    table.add_column("Option")
    for index, label in enumerate(HOME_OPTIONS):
        is_selected = index == screen.selected_option
        table.add_row(
            ">" if is_selected else "",
            str(index + 1),
            label,
            style=SELECTED_STYLE if is_selected else "",
        )

    parts: list[Any] = [table]
    if app.last_run is not None:
        run = app.last_run
        outcome = f"failed: {run.failure}" if run.failure else run.status
        parts.append(Text(""))
        parts.append(Text(f"Last run: {run.identifier} ({outcome})", style="dim"))
    return Panel(Group(*parts), title="Menu", border_style="cyan")


def render_input(text_field: InputField, focused: bool) -> Text:
    text = Text()
    text.append(f"{text_field.label}: ", style="bold" if focused else "")
    if not text_field.value and not focused:
        text.append(text_field.placeholder, style="dim")
        return text
    if not focused:
        text.append(text_field.value)
        return text
    before = text_field.value[: text_field.cursor]
    at_cursor = text_field.value[text_field.cursor : text_field.cursor + 1] or " "
    after = text_field.value[text_field.cursor + 1 :]
    text.append(before, style="bright_white")
    text.append(at_cursor, style="reverse")
    text.append(after, style="bright_white")
    return text


def render_toggle(label: str, value: bool, focused: bool) -> Text:
    mark = "[x]" if value else "[ ]"
    return Text(f"{mark} {label}", style="bold bright_white" if focused else "")


def render_form(screen: NewRequestScreen, app: App) -> Panel:
    form = screen.form
    parts: list[Any] = [
        render_input(form.identifier, form.focus == 0),
        render_input(form.languages, form.focus == 1),
        render_toggle("Preserve formatting", form.preserve_formatting, form.focus == 2),
        render_toggle("Generate report (Enter submits)", form.generate_report, form.focus == 3),
    ]
    if form.error:
        parts.append(Text(""))
        parts.append(Text(f"Error: {form.error}", style="bold red"))
    if app.last_run is not None and app.last_run.logs:
        parts.append(Text(""))
        parts.append(Text("Last run", style="dim bold"))
        parts.extend(Text(line, style="dim") for line in app.last_run.logs)
    return Panel(Group(*parts), title="Request", border_style="cyan")


def render_processing(screen: ProcessingScreen) -> Panel:
    bar = ProgressBar(total=100.0, completed=screen.progress * 100.0)
    logs: list[Any] = [Text(line, style="dim") for line in screen.logs] or [Text("Waiting for job...", style="dim")]
    parts: list[Any] = [
        Text(f"Job {screen.job_id}: {screen.identifier}", style="bold"),
        Text(screen.status, style="cyan"),
        bar,
        Text(f"{screen.progress * 100:.0f}%", style="bold"),
        Text(""),
        *logs,
    ]
    return Panel(Group(*parts), title="Processing", border_style="green")


def render_browse(screen: BrowseScreen) -> Panel:
    table = Table(box=None, show_header=True, expand=True, padding=(0, 1), show_edge=False)
    table.add_column("", width=3)
    table.add_column("Kind", width=10)
    table.add_column("Name", ratio=1, no_wrap=True, overflow="ellipsis")
    table.add_column("Size", justify="right", width=9)
    table.add_column("Age", justify="right", width=5)

    window = screen.window
    for index, entry in window.visible():
        is_selected = index == window.selected
        marker = "[x]" if index in window.marks else "[ ]"
        table.add_row(
            marker,
            entry.kind.value,
            entry.name,
            humanize_bytes(entry.size),
            human_age(entry.modified),
            style=SELECTED_STYLE if is_selected else "",
        )
    if not window.items:
        table.add_row("", "-", "No artifacts match.", "-", "-")

    search = screen.search.value
    if screen.searching:
        subtitle = f"search: {search}▏"
    elif search:
        subtitle = f"search: {search}"
    else:
        subtitle = f"{len(window.items)} item(s)"
    return Panel(
        table,
        title=f"{screen.filter.value} ({len(window.items)})",
        subtitle=subtitle,
        border_style="bright_cyan" if screen.searching else "cyan",
    )


def render_view(screen: ViewScreen) -> Panel:
    window = screen.window
    lines = [line.to_text() for _, line in window.visible()] or [Text("(empty)", style="dim")]
    total = len(window.items)
    position = f"{min(window.offset + 1, total)}-{min(window.offset + window.viewport_size, total)}/{total}"
    return Panel(
        Group(*lines),
        title=screen.entry.name,
        subtitle=position,
        border_style="cyan",
    )


def render_settings(app: App) -> Panel:
    config = app.config
    table = Table(box=None, show_header=True, expand=True, padding=(0, 1))
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_row("Data directory", str(app.storage.root.resolve()))
    table.add_row("Transcripts", str(app.storage.transcripts_dir))
    table.add_row("Reports", str(app.storage.reports_dir))
    table.add_row("Ollama host", config.ollama_host)
    table.add_row("Ollama model", config.ollama_model)
    table.add_row("Generation timeout", f"{config.ollama_timeout_seconds}s")
    table.add_row("Reports allowed", "yes" if config.allow_reports else "no (set TUBESCRIBE_ALLOW_REPORTS=1)")
    table.add_row("Default languages", ",".join(config.languages))
    table.add_row("Mouse", "on" if config.mouse else "off")
    table.add_row("Log file", config.log_file or "-")
    return Panel(table, title="Settings (read-only)", border_style="cyan")


def render_body(app: App) -> Panel:
    screen = app.screen
    if isinstance(screen, NewRequestScreen):
        return render_form(screen, app)
    if isinstance(screen, ProcessingScreen):
        return render_processing(screen)
    if isinstance(screen, BrowseScreen):
        return render_browse(screen)
    if isinstance(screen, ViewScreen):
        return render_view(screen)
    if isinstance(screen, SettingsScreen):
        return render_settings(app)
    return render_home(screen, app)


def build_screen(app: App, width: int, height: int) -> Layout:
    root = Layout(name="root")
    root.split_column(
        Layout(render_header(app, width), name="header", size=HEADER_ROWS),
        Layout(render_body(app), name="body"),
        Layout(render_footer(app, width), name="footer", size=FOOTER_ROWS),
    )
    return root
