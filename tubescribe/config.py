from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_OLLAMA_HOST = "http://127.0.0.1:11434"
DEFAULT_OLLAMA_MODEL = "llama3.1"
DEFAULT_LANGUAGES = "en,es"
DEFAULT_OLLAMA_TIMEOUT_SECONDS = 600
REPORT_OPT_IN_ENV = "TUBESCRIBE_ALLOW_REPORTS"


@dataclass
class AppConfig:
    command: str = "tui"
    identifier: str = ""
    languages: list[str] = field(default_factory=lambda: parse_languages(DEFAULT_LANGUAGES))
    preserve_formatting: bool = False
    generate_report: bool = False
    data_dir: Path = Path(".")
    ollama_host: str = DEFAULT_OLLAMA_HOST
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    ollama_timeout_seconds: int = DEFAULT_OLLAMA_TIMEOUT_SECONDS
    allow_reports: bool = False
    log_file: str = ""
    mouse: bool = True


def parse_bool_arg(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off", ""}:
        return False
    raise ValueError("expected boolean: true|false|1|0|yes|no|on|off")


def parse_languages(raw: str) -> list[str]:
    return [piece.strip() for piece in raw.split(",") if piece.strip()]


def env_default(name: str, fallback: str) -> str:
    value = os.getenv(name, "").strip()
    return value or fallback


def reports_allowed_from_env() -> bool:
    raw = os.getenv(REPORT_OPT_IN_ENV, "")
    try:
        return parse_bool_arg(raw)
    except ValueError:
        return False
