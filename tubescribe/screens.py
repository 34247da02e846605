from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .config import DEFAULT_LANGUAGES, AppConfig, parse_languages
from .errors import StorageError, ValidationError
from .jobs import Complete, Failed, JobRequest, Log, Progress, ProgressMessage, Status, TaskOrchestrator
from .markdown_render import render, render_plain
from .scroll import ScrollWindow
from .services import ArtifactEntry, ArtifactKind, Storage, normalize_identifier
from .terminal import InputEvent, KeyEvent, MouseEvent, Tick
from .util import now_utc

logger = logging.getLogger(__name__)

HOME_OPTIONS = ("New transcript", "Browse transcripts", "Browse reports", "Settings")
FORM_FOCUSABLE = 4
LOG_RING_SIZE = 10
HEADER_ROWS = 3
FOOTER_ROWS = 3
BROWSE_FIRST_ROW = HEADER_ROWS + 2
WHEEL_STEP = 3


def body_rows(height: int) -> int:
    return max(height - HEADER_ROWS - FOOTER_ROWS, 3)


def browser_rows(height: int) -> int:
    return max(body_rows(height) - 3, 1)


def viewer_geometry(width: int, height: int) -> tuple[int, int]:
    return max(width - 4, 1), max(body_rows(height) - 2, 1)


def clamp_fraction(value: float) -> float:
    return max(0.0, min(1.0, value))


class ArtifactFilter(Enum):
    ALL = "All"
    TRANSCRIPTS = "Transcripts"
    REPORTS = "Reports"

    def matches(self, entry: ArtifactEntry) -> bool:
        if self is ArtifactFilter.TRANSCRIPTS:
            return entry.kind is ArtifactKind.TRANSCRIPT
        if self is ArtifactFilter.REPORTS:
            return entry.kind is ArtifactKind.REPORT
        return True


@dataclass
class InputField:
    label: str
    value: str = ""
    cursor: int = 0
    placeholder: str = ""

    def handle_key(self, key: str) -> bool:
        if key == "BACKSPACE":
            if self.cursor > 0:
                self.value = self.value[: self.cursor - 1] + self.value[self.cursor :]
                self.cursor -= 1
        elif key == "DELETE":
            self.value = self.value[: self.cursor] + self.value[self.cursor + 1 :]
        elif key == "LEFT":
            self.cursor = max(self.cursor - 1, 0)
        elif key == "RIGHT":
            self.cursor = min(self.cursor + 1, len(self.value))
        elif key == "HOME":
            self.cursor = 0
        elif key == "END":
            self.cursor = len(self.value)
        elif len(key) == 1 and key.isprintable():
            self.value = self.value[: self.cursor] + key + self.value[self.cursor :]
            self.cursor += 1
        else:
            return False
        return True

    def is_valid(self) -> bool:
        return bool(self.value.strip())

    def clear(self) -> None:
        self.value = ""
        self.cursor = 0


def identifier_field() -> InputField:
    return InputField("Video URL or ID", placeholder="https://www.youtube.com/watch?v=...")


def languages_field() -> InputField:
    return InputField("Languages", value=DEFAULT_LANGUAGES, cursor=len(DEFAULT_LANGUAGES), placeholder="en,es")


@dataclass
class RequestForm:
    identifier: InputField = field(default_factory=identifier_field)
    languages: InputField = field(default_factory=languages_field)
    preserve_formatting: bool = True
    generate_report: bool = True
    focus: int = 0
    error: str = ""

    def focused_field(self) -> InputField | None:
        if self.focus == 0:
            return self.identifier
        if self.focus == 1:
            return self.languages
        return None

    def focus_next(self) -> None:
        self.focus = (self.focus + 1) % FORM_FOCUSABLE

    def focus_previous(self) -> None:
        self.focus = (self.focus - 1) % FORM_FOCUSABLE

    def to_request(self) -> JobRequest:
        if not self.identifier.is_valid():
            raise ValidationError("Enter a video URL or identifier.")
        identifier = normalize_identifier(self.identifier.value)
        languages = tuple(parse_languages(self.languages.value)) or tuple(parse_languages(DEFAULT_LANGUAGES))
        return JobRequest(
            identifier=identifier,
            languages=languages,
            preserve_formatting=self.preserve_formatting,
            generate_report=self.generate_report,
        )


@dataclass
class HomeScreen:
    selected_option: int = 0


@dataclass
class NewRequestScreen:
    form: RequestForm = field(default_factory=RequestForm)


@dataclass
class ProcessingScreen:
    job_id: int
    identifier: str
    form: RequestForm = field(default_factory=RequestForm)
    progress: float = 0.0
    status: str = "Starting..."
    logs: deque[str] = field(default_factory=lambda: deque(maxlen=LOG_RING_SIZE))
    failure: str = ""


@dataclass
class BrowseScreen:
    filter: ArtifactFilter = ArtifactFilter.ALL
    search: InputField = field(default_factory=lambda: InputField("Search"))
    searching: bool = False
    window: ScrollWindow = field(default_factory=ScrollWindow)
    listing: list[ArtifactEntry] = field(default_factory=list)


@dataclass
class ViewScreen:
    entry: ArtifactEntry
    content: str
    window: ScrollWindow = field(default_factory=ScrollWindow)
    render_width: int = 0
    browse: BrowseScreen | None = None

    @property
    def lines(self) -> list:
        return self.window.items


@dataclass
class SettingsScreen:
    pass


Screen = Union[HomeScreen, NewRequestScreen, ProcessingScreen, BrowseScreen, ViewScreen, SettingsScreen]


def stamp(message: str) -> str:
    return f"[{now_utc().strftime('%H:%M:%S')}] {message}"


class App:
    def __init__(
        self,
        config: AppConfig,
        storage: Storage,
        orchestrator: TaskOrchestrator,
        width: int = 80,
        height: int = 24,
    ) -> None:
        self.config = config
        self.storage = storage
        self.orchestrator = orchestrator
        self.width = width
        self.height = height
        self.screen: Screen = HomeScreen()
        self.should_quit = False
        self.notice = ""
        self.last_run: ProcessingScreen | None = None

    def capturing_text(self) -> bool:
        screen = self.screen
        if isinstance(screen, NewRequestScreen):
            return screen.form.focused_field() is not None
        if isinstance(screen, BrowseScreen):
            return screen.searching
        return False

    def resize(self, width: int, height: int) -> None:
        self.width = max(width, 1)
        self.height = max(height, 1)
        screen = self.screen
        if isinstance(screen, BrowseScreen):
            screen.window.set_viewport_size(browser_rows(self.height))
        elif isinstance(screen, ViewScreen):
            self._layout_view(screen)

    def handle_event(self, event: InputEvent) -> None:
        if isinstance(event, Tick):
            return
        if isinstance(event, MouseEvent):
            self._handle_mouse(event)
            return
        if not isinstance(event, KeyEvent):
            return

        key = event.key
        if key == "QUIT" or (key == "q" and not self.capturing_text()):
            self.should_quit = True
            return
        self.notice = ""

        screen = self.screen
        if isinstance(screen, HomeScreen):
            self._home_key(screen, key)
        elif isinstance(screen, NewRequestScreen):
            self._form_key(screen, key)
        elif isinstance(screen, ProcessingScreen):
            self._processing_key(screen, key)
        elif isinstance(screen, BrowseScreen):
            self._browse_key(screen, key)
        elif isinstance(screen, ViewScreen):
            self._view_key(screen, key)
        elif isinstance(screen, SettingsScreen):
            if key == "ESC":
                self.screen = HomeScreen(selected_option=3)

    def handle_tick(self) -> None:
        for message in self.orchestrator.drain():
            self._ingest(message)

    def _ingest(self, message: ProgressMessage) -> None:
        screen = self.screen
        if not isinstance(screen, ProcessingScreen) or message.job_id != screen.job_id:
            logger.debug("discarding message from job %s: %r", message.job_id, message)
            return

        if isinstance(message, Progress):
            screen.progress = clamp_fraction(message.fraction)
        elif isinstance(message, Status):
            screen.status = message.text
        elif isinstance(message, Log):
            screen.logs.append(stamp(message.text))
        elif isinstance(message, Complete):
            self.last_run = screen
            self.notice = f"Finished {screen.identifier}."
            self.screen = HomeScreen()
        elif isinstance(message, Failed):
            screen.failure = message.message
            screen.status = "Failed"
            screen.logs.append(stamp(f"Failed: {message.message}"))
            self.last_run = screen
            screen.form.error = message.message
            self.screen = NewRequestScreen(form=screen.form)

    def _home_key(self, screen: HomeScreen, key: str) -> None:
        last = len(HOME_OPTIONS) - 1
        if key in {"UP", "k"}:
            screen.selected_option = max(screen.selected_option - 1, 0)
        elif key in {"DOWN", "j"}:
            screen.selected_option = min(screen.selected_option + 1, last)
        elif key in {"1", "2", "3", "4"}:
            screen.selected_option = int(key) - 1
        elif key == "ENTER":
            self._activate_home(screen.selected_option)

    def _activate_home(self, option: int) -> None:
        if option == 0:
            self.screen = NewRequestScreen(form=RequestForm())
        elif option == 1:
            self._open_browse(BrowseScreen(filter=ArtifactFilter.TRANSCRIPTS))
        elif option == 2:
            self._open_browse(BrowseScreen(filter=ArtifactFilter.REPORTS))
        else:
            self.screen = SettingsScreen()

    def _form_key(self, screen: NewRequestScreen, key: str) -> None:
        form = screen.form
        if key == "ESC":
            self.screen = HomeScreen()
        elif key in {"TAB", "DOWN"}:
            form.focus_next()
        elif key in {"SHTAB", "UP"}:
            form.focus_previous()
        elif key == "ENTER":
            if form.focus < FORM_FOCUSABLE - 1:
                form.focus_next()
            else:
                self._submit(form)
        elif key == " " and form.focus == 2:
            form.preserve_formatting = not form.preserve_formatting
        elif key == " " and form.focus == 3:
            form.generate_report = not form.generate_report
        else:
            text_field = form.focused_field()
            if text_field is not None and text_field.handle_key(key):
                form.error = ""

    def _submit(self, form: RequestForm) -> None:
        try:
            request = form.to_request()
        except ValidationError as exc:
            form.error = str(exc)
            logger.info("rejected request: %s", exc)
            return
        form.error = ""
        job_id = self.orchestrator.spawn(request)
        processing = ProcessingScreen(job_id=job_id, identifier=request.identifier, form=form)
        processing.logs.append(stamp(f"Queued {request.identifier}."))
        self.screen = processing

    def _processing_key(self, screen: ProcessingScreen, key: str) -> None:
        if key != "ESC":
            return
        self.orchestrator.cancel(screen.job_id)
        screen.logs.append(stamp("Cancelled by user."))
        self.last_run = screen
        self.screen = NewRequestScreen(form=screen.form)

    def _open_browse(self, browse: BrowseScreen) -> None:
        self.screen = browse
        self._refresh_browse(browse)

    def _refresh_browse(self, browse: BrowseScreen) -> None:
        try:
            browse.listing = self.storage.list_artifacts()
        except StorageError as exc:
            logger.warning("listing failed: %s", exc)
            self.notice = str(exc)
        needle = browse.search.value.strip().lower()
        browse.window.replace_items(
            entry
            for entry in browse.listing
            if browse.filter.matches(entry) and needle in entry.name.lower()
        )
        browse.window.set_viewport_size(browser_rows(self.height))

    def _browse_key(self, browse: BrowseScreen, key: str) -> None:
        window = browse.window
        if browse.searching:
            if key == "ENTER":
                browse.searching = False
            elif key == "ESC":
                browse.searching = False
                browse.search.clear()
                self._refresh_browse(browse)
            elif key == "UP":
                window.select_previous()
            elif key == "DOWN":
                window.select_next()
            elif browse.search.handle_key(key):
                self._refresh_browse(browse)
            return

        if key == "ESC":
            self.screen = HomeScreen()
        elif key == "/":
            browse.searching = True
        elif key in {"1", "2", "3"}:
            browse.filter = list(ArtifactFilter)[int(key) - 1]
            self._refresh_browse(browse)
        elif key in {"UP", "k"}:
            window.select_previous()
        elif key in {"DOWN", "j"}:
            window.select_next()
        elif key == "PGUP":
            window.page_up()
        elif key == "PGDN":
            window.page_down()
        elif key in {"HOME", "g"}:
            window.home()
        elif key in {"END", "G"}:
            window.end()
        elif key == " ":
            window.toggle_mark()
        elif key in {"DELETE", "d"}:
            self._delete_entries(browse)
        elif key == "r":
            self._refresh_browse(browse)
        elif key == "ENTER":
            self._open_view(browse)

    def _delete_entries(self, browse: BrowseScreen) -> None:
        targets = browse.window.marked_items()
        if not targets:
            selected = browse.window.selected_item()
            targets = [selected] if selected is not None else []
        if not targets:
            return

        deleted = 0
        errors: list[str] = []
        for entry in targets:
            try:
                self.storage.delete(entry.path)
                deleted += 1
            except StorageError as exc:
                logger.warning("delete failed: %s", exc)
                errors.append(str(exc))
        self._refresh_browse(browse)
        self.notice = errors[0] if errors else f"Deleted {deleted} file(s)."

    def _open_view(self, browse: BrowseScreen) -> None:
        entry = browse.window.selected_item()
        if entry is None:
            return
        try:
            content = self.storage.read_artifact(entry.path)
        except StorageError as exc:
            self.notice = str(exc)
            return
        view = ViewScreen(entry=entry, content=content, browse=browse)
        self._layout_view(view)
        self.screen = view

    def _layout_view(self, view: ViewScreen) -> None:
        width, rows = viewer_geometry(self.width, self.height)
        if width != view.render_width:
            if view.entry.kind is ArtifactKind.REPORT:
                lines = render(view.content, width)
            else:
                lines = render_plain(view.content, width)
            view.window.replace_items(lines)
            view.render_width = width
        view.window.set_viewport_size(rows)

    def _view_key(self, view: ViewScreen, key: str) -> None:
        window = view.window
        if key == "ESC":
            browse = view.browse or BrowseScreen()
            self._open_browse(browse)
        elif key in {"UP", "k"}:
            window.scroll_by(-1)
        elif key in {"DOWN", "j"}:
            window.scroll_by(1)
        elif key in {"PGUP", "b"}:
            window.scroll_by(-window.viewport_size)
        elif key in {"PGDN", " "}:
            window.scroll_by(window.viewport_size)
        elif key in {"HOME", "g"}:
            window.scroll_by(-len(window))
        elif key in {"END", "G"}:
            window.scroll_by(len(window))

    def _handle_mouse(self, event: MouseEvent) -> None:
        screen = self.screen
        if isinstance(screen, BrowseScreen):
            if event.kind == "SCROLL_UP":
                screen.window.scroll_up()
            elif event.kind == "SCROLL_DOWN":
                screen.window.scroll_down()
            elif event.kind == "CLICK":
                row = event.y - BROWSE_FIRST_ROW
                if 0 <= row < screen.window.viewport_size:
                    index = screen.window.offset + row
                    if index < len(screen.window):
                        screen.window.select(index)
        elif isinstance(screen, ViewScreen):
            if event.kind == "SCROLL_UP":
                screen.window.scroll_by(-WHEEL_STEP)
            elif event.kind == "SCROLL_DOWN":
                screen.window.scroll_by(WHEEL_STEP)
