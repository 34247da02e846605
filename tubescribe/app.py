from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .config import (
    DEFAULT_LANGUAGES,
    DEFAULT_OLLAMA_HOST,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_TIMEOUT_SECONDS,
    AppConfig,
    env_default,
    parse_languages,
    reports_allowed_from_env,
)
from .errors import TubescribeError
from .jobs import Failed, JobRequest, Log, ProgressMessage, TaskOrchestrator, generate_report_for, run_pipeline
from .screens import App
from .services import ReportGenerator, Storage, TranscriptFetcher, normalize_identifier
from .terminal import InputSource
from .ui import build_screen
from .util import human_age, humanize_bytes

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
POLL_SECONDS = 0.1


def parse_args(argv: list[str]) -> AppConfig:
    parser = argparse.ArgumentParser(
        prog="tubescribe",
        description="Fetch video transcripts, generate reports with Ollama and browse them in the terminal.",
    )
    parser.add_argument("--cli", action="store_true", help="Never start the interactive UI.")
    parser.add_argument("--data-dir", default=env_default("TUBESCRIBE_DATA_DIR", "."))
    parser.add_argument("--ollama-host", default=env_default("OLLAMA_HOST", DEFAULT_OLLAMA_HOST))
    parser.add_argument("--ollama-model", default=env_default("OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL))
    parser.add_argument("--ollama-timeout-seconds", type=int, default=DEFAULT_OLLAMA_TIMEOUT_SECONDS)
    parser.add_argument("--log-file", default=env_default("TUBESCRIBE_LOG_FILE", ""))
    parser.add_argument("--no-mouse", action="store_true", help="Disable mouse wheel and click support.")

    subparsers = parser.add_subparsers(dest="command")
    get_parser = subparsers.add_parser("get", help="Fetch a transcript and optionally generate a report.")
    get_parser.add_argument("identifier", help="Video URL or identifier.")
    get_parser.add_argument("--languages", default=DEFAULT_LANGUAGES, help="Comma-separated, in order of preference.")
    get_parser.add_argument("--preserve-formatting", action="store_true")
    get_parser.add_argument("--report", action="store_true", help="Also generate a report.")
    report_parser = subparsers.add_parser("report", help="Generate a report from a stored transcript.")
    report_parser.add_argument("identifier", help="Video URL or identifier.")
    subparsers.add_parser("list", help="List stored transcripts and reports.")
    subparsers.add_parser("tui", help="Start the interactive UI (default).")

    args = parser.parse_args(argv)

    if args.ollama_timeout_seconds < 10:
        raise ValueError("--ollama-timeout-seconds must be >= 10")
    command = args.command or ""
    if not command:
        if args.cli:
            raise ValueError("--cli needs a command: get, report or list")
        command = "tui"
    if command == "tui" and args.cli:
        raise ValueError("--cli cannot be combined with the tui command")

    languages = parse_languages(getattr(args, "languages", DEFAULT_LANGUAGES))
    if not languages:
        raise ValueError("--languages must name at least one language")

    return AppConfig(
        command=command,
        identifier=getattr(args, "identifier", ""),
        languages=languages,
        preserve_formatting=getattr(args, "preserve_formatting", False),
        generate_report=getattr(args, "report", False),
        data_dir=Path(args.data_dir),
        ollama_host=args.ollama_host,
        ollama_model=args.ollama_model,
        ollama_timeout_seconds=args.ollama_timeout_seconds,
        allow_reports=reports_allowed_from_env(),
        log_file=args.log_file,
        mouse=not args.no_mouse,
    )


def configure_logging(log_file: str, interactive: bool) -> None:
    handlers: list[logging.Handler] = []
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    elif interactive:
        handlers.append(logging.NullHandler())
    else:
        handlers.append(logging.StreamHandler(sys.stderr))
    logging.basicConfig(
        level=logging.INFO if log_file else logging.WARNING,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def make_fetcher(config: AppConfig) -> TranscriptFetcher:
    return TranscriptFetcher()


def make_generator(config: AppConfig) -> ReportGenerator:
    return ReportGenerator(
        ollama_host=config.ollama_host,
        ollama_model=config.ollama_model,
        timeout_seconds=config.ollama_timeout_seconds,
        allowed=config.allow_reports,
    )


def run_cli_get(config: AppConfig, console: Console) -> int:
    storage = Storage(config.data_dir)
    identifier = normalize_identifier(config.identifier)
    request = JobRequest(
        identifier=identifier,
        languages=tuple(config.languages),
        preserve_formatting=config.preserve_formatting,
        generate_report=config.generate_report,
    )
    failures: list[str] = []

    def emit(message: ProgressMessage) -> None:
        if isinstance(message, Log):
            console.print(Text(message.text, style="dim"))
        elif isinstance(message, Failed):
            failures.append(message.message)

    run_pipeline(0, request, make_fetcher(config), make_generator(config), storage, emit)
    if failures:
        raise TubescribeError(failures[0])

    console.print(f"Transcript: {storage.transcript_path(identifier)}", highlight=False)
    if config.generate_report:
        console.print(f"Report: {storage.report_path(identifier)}", highlight=False)
    return 0


def run_cli_report(config: AppConfig, console: Console) -> int:
    storage = Storage(config.data_dir)
    path = generate_report_for(config.identifier, make_generator(config), storage)
    console.print(f"Report: {path}", highlight=False)
    return 0


def run_cli_list(config: AppConfig, console: Console) -> int:
    entries = Storage(config.data_dir).list_artifacts()
    if not entries:
        console.print("No transcripts or reports yet.")
        return 0
    table = Table(title="Artifacts", expand=False)
    table.add_column("Kind", width=10)
    table.add_column("Identifier")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("Age", justify="right")
    for entry in entries:
        table.add_row(
            entry.kind.value,
            entry.identifier,
            entry.name,
            humanize_bytes(entry.size),
            human_age(entry.modified),
        )
    console.print(table)
    return 0


def run_tui(config: AppConfig, console: Console) -> int:
    if not sys.stdin.isatty() or not console.is_terminal:
        raise TubescribeError("The interactive UI needs a terminal; use --cli with get, report or list.")

    storage = Storage(config.data_dir)
    storage.ensure_directories()
    orchestrator = TaskOrchestrator(
        storage,
        lambda: make_fetcher(config),
        lambda: make_generator(config),
    )
    width, height = console.size
    app = App(config, storage, orchestrator, width=width, height=height)
    source = InputSource(output=console.file, enable_mouse=config.mouse)
    logger.info("starting interactive UI in %s", storage.root.resolve())

    source.start()
    try:
        with Live(
            build_screen(app, width, height),
            console=console,
            auto_refresh=False,
            screen=True,
            vertical_overflow="crop",
        ) as live:
            while not app.should_quit:
                event = source.poll(POLL_SECONDS)
                width, height = console.size
                app.resize(width, height)
                app.handle_event(event)
                app.handle_tick()
                live.update(build_screen(app, width, height), refresh=True)
    finally:
        source.stop()
        orchestrator.shutdown()
    return 0


def run(config: AppConfig, console: Console) -> int:
    if config.command == "get":
        return run_cli_get(config, console)
    if config.command == "report":
        return run_cli_report(config, console)
    if config.command == "list":
        return run_cli_list(config, console)
    return run_tui(config, console)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    console = Console()
    error_console = Console(stderr=True)
    try:
        config = parse_args(argv if argv is not None else sys.argv[1:])
        configure_logging(config.log_file, interactive=config.command == "tui")
    except Exception as exc:
        error_console.print(f"[red]Configuration error:[/red] {exc}", highlight=False)
        return 2

    try:
        return run(config, console)
    except TubescribeError as exc:
        error_console.print(Text.assemble(("Error: ", "red"), str(exc)))
        return 1
    except KeyboardInterrupt:
        console.print("\n[bold]Stopped.[/bold]")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
