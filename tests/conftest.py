from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any

import pytest

from tubescribe.config import AppConfig
from tubescribe.screens import App
from tubescribe.services import Storage, TranscriptSnippet


class FakeFetcher:
    def __init__(self, snippets: list[TranscriptSnippet] | None = None, error: Exception | None = None) -> None:
        self.snippets = snippets if snippets is not None else [
            TranscriptSnippet(start=0.0, duration=1.5, text="hello there"),
            TranscriptSnippet(start=1.5, duration=2.0, text="general remarks"),
        ]
        self.error = error
        self.calls: list[tuple[str, list[str], bool]] = []

    def fetch(self, identifier: str, preferred_languages: list[str], preserve_formatting: bool) -> list[TranscriptSnippet]:
        self.calls.append((identifier, preferred_languages, preserve_formatting))
        if self.error is not None:
            raise self.error
        return self.snippets


class FakeGenerator:
    def __init__(self, report: str = "# Report\n\nAll good.", error: Exception | None = None) -> None:
        self.report = report
        self.error = error
        self.calls: list[str] = []

    def generate(self, transcript_text: str) -> str:
        self.calls.append(transcript_text)
        if self.error is not None:
            raise self.error
        return self.report


class FakeOrchestrator:
    def __init__(self) -> None:
        self.spawned: list[tuple[int, Any]] = []
        self.cancelled: list[int] = []
        self.pending: list[Any] = []
        self._next_id = 1

    def spawn(self, request: Any) -> int:
        job_id = self._next_id
        self._next_id += 1
        self.spawned.append((job_id, request))
        return job_id

    def cancel(self, job_id: int) -> bool:
        self.cancelled.append(job_id)
        return True

    def send(self, *messages: Any) -> None:
        self.pending.extend(messages)

    def drain(self) -> list[Any]:
        messages = self.pending
        self.pending = []
        return messages


def write_artifact(path: Path, content: str, age_seconds: int = 0) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    moment = time.time() - age_seconds
    os.utime(path, (moment, moment))
    return path


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    store = Storage(tmp_path / "data")
    store.ensure_directories()
    return store


@pytest.fixture
def orchestrator() -> FakeOrchestrator:
    return FakeOrchestrator()


@pytest.fixture
def app(storage: Storage, orchestrator: FakeOrchestrator) -> App:
    config = AppConfig(data_dir=storage.root)
    return App(config, storage, orchestrator, width=80, height=24)
